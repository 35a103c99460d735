import logging
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from promptops.core.auth import get_current_user
from promptops.core.database import get_db
from promptops.models.usage_record import UsageRecord
from promptops.schemas.auth import TokenData
from promptops.schemas.entitlement import Action, ActionType, Decision, DenialReason
from promptops.services.entitlement_service import EntitlementService

logger = logging.getLogger(__name__)

DENIAL_STATUS = {
    DenialReason.QUOTA_EXCEEDED: status.HTTP_402_PAYMENT_REQUIRED,
    DenialReason.PLAN_TIER_INSUFFICIENT: status.HTTP_403_FORBIDDEN,
    DenialReason.MODEL_DISABLED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_entitlement_service(request: Request) -> EntitlementService:
    """The process-wide engine built in create_app"""
    service: Optional[EntitlementService] = getattr(request.app.state, "entitlement_service", None)
    if service is None:
        raise RuntimeError("Entitlement service not initialized. Was the app created with create_app()?")
    return service


async def check_entitlement(
    service: EntitlementService,
    db: AsyncSession,
    user_id: str,
    action: Action
) -> Decision:
    """
    Gate an action before doing the work.
    Raises HTTPException when the decision is a denial.
    """
    decision = await service.can_perform(db, user_id, action)

    if not decision.allowed:
        raise HTTPException(
            status_code=DENIAL_STATUS[decision.reason],
            detail={
                "error": decision.reason.value,
                "message": decision.message,
                "decision": decision.model_dump(mode="json")
            }
        )

    return decision


async def record_entitlement_usage(
    service: EntitlementService,
    db: AsyncSession,
    user_id: str,
    action: Action
) -> UsageRecord:
    """Count a gated action once the provider call has succeeded"""
    return await service.record_usage(db, user_id, action)


class EntitlementDependency:
    """
    FastAPI dependency gating an endpoint on an action.

    Usage in router:
    @router.post("/test-prompt")
    async def test_prompt(
        decision: Decision = Depends(EntitlementDependency(ActionType.TEST_PROMPT)),
        ...
    ):
        # call the provider, then record_entitlement_usage(...) on success
        pass

    For invoke_model the model id is read from the ``model_id`` path or query parameter.
    """
    def __init__(self, action_type: ActionType):
        self.action_type = action_type

    async def __call__(
        self,
        request: Request,
        current_user: TokenData = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        service: EntitlementService = Depends(get_entitlement_service)
    ) -> Decision:
        """Check entitlement and return the decision"""
        model_id = None
        if self.action_type == ActionType.INVOKE_MODEL:
            model_id = request.path_params.get("model_id") or request.query_params.get("model_id")
            if not model_id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="model_id is required"
                )

        return await check_entitlement(
            service,
            db,
            current_user.user_id,
            Action(type=self.action_type, model_id=model_id)
        )
