import logging
from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from promptops.schemas.auth import TokenData
from promptops.schemas.ai_model import AIModelResponse, AIModelUpdate
from promptops.schemas.entitlement import (
    ProvisionUserRequest,
    RolloverSweepResponse,
    SetPlanRequest,
    UsageRecordResponse,
    UsageSummaryResponse,
)
from promptops.core.auth import require_admin
from promptops.core.database import get_db
from promptops.core.entitlement_middleware import get_entitlement_service
from promptops.core.exceptions import NotFoundError, UserNotFoundError
from promptops.crud.ai_model import ai_model_crud
from promptops.services.entitlement_service import EntitlementService

logger = logging.getLogger(__name__)

router = APIRouter()


# Usage records

@router.get("/users/{user_id}/usage", response_model=UsageSummaryResponse)
async def get_user_usage(
    user_id: str,
    admin: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    return await service.get_usage_summary(db, user_id)


@router.post("/users/{user_id}/usage", response_model=UsageRecordResponse, status_code=status.HTTP_201_CREATED)
async def provision_user(
    user_id: str,
    request: ProvisionUserRequest,
    admin: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """
    Create the usage record for an account (normally done by the signup hook).
    Returns the existing record if one is already there.
    """
    return await service.provision_user(db, user_id, plan=request.plan, signup_at=request.signup_at)


@router.delete("/users/{user_id}/usage", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user_usage(
    user_id: str,
    admin: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    if not await service.delete_user(db, user_id):
        raise UserNotFoundError(user_id)


@router.post("/users/{user_id}/plan", response_model=UsageRecordResponse)
async def set_user_plan(
    user_id: str,
    request: SetPlanRequest,
    admin: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """Manual plan override. Counters carry over."""
    logger.info(f"🔧 Admin {admin.user_id} setting plan {request.plan} for user {user_id}")
    return await service.set_plan(db, user_id, request.plan)


@router.post("/users/{user_id}/reset-usage", response_model=UsageRecordResponse)
async def reset_user_usage(
    user_id: str,
    admin: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    return await service.reset_usage(db, user_id)


@router.post("/usage/rollover", response_model=RolloverSweepResponse)
async def rollover_expired_periods(
    batch_size: int = 500,
    admin: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """Sweep job: roll over records whose period ended while the user was inactive"""
    rolled = await service.rollover_expired(db, batch_size=batch_size)
    return RolloverSweepResponse(success=True, rolled_over=rolled)


# Model registry

@router.get("/ai-models", response_model=List[AIModelResponse])
async def list_ai_models(
    admin: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await ai_model_crud.list_models(db)


@router.patch("/ai-models/{model_id}", response_model=AIModelResponse)
async def update_ai_model(
    model_id: str,
    model_update: AIModelUpdate,
    admin: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Enable, disable or retier a model. Takes effect on the next access check."""
    update_data = model_update.model_dump(exclude_unset=True)
    if set(update_data) == {"enabled"}:
        model = await ai_model_crud.set_enabled(db, model_id, update_data["enabled"])
    else:
        model = await ai_model_crud.get_model(db, model_id)
        if model is None:
            raise NotFoundError("AI model")
        model = await ai_model_crud.update_model(db, model, update_data)

    logger.info(f"🔧 Admin {admin.user_id} updated AI model {model_id}: {update_data}")
    return model
