from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from promptops.schemas.auth import TokenData
from promptops.schemas.ai_model import ModelListResponse
from promptops.schemas.entitlement import ActionType, Decision
from promptops.core.auth import get_current_user
from promptops.core.database import get_db
from promptops.core.entitlement_middleware import EntitlementDependency, get_entitlement_service
from promptops.services.entitlement_service import EntitlementService

router = APIRouter()


@router.get("", response_model=ModelListResponse)
async def list_models(
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """
    All registered models, flagged with whether the caller's plan may use them.
    Drives the model selector.
    """
    plan, models = await service.available_models(db, current_user.user_id)
    return ModelListResponse(success=True, plan=plan, models=models)


@router.get("/{model_id}/access", response_model=Decision)
async def check_model_access(
    model_id: str,
    decision: Decision = Depends(EntitlementDependency(ActionType.INVOKE_MODEL))
):
    """
    200 when the caller may invoke the model.
    403 when the plan lacks the model's tier, 503 when the model is disabled.
    """
    return decision
