from fastapi import APIRouter, Depends

from promptops.models.ai_model import ModelTier
from promptops.schemas.entitlement import PlanLimitsResponse, PlanListResponse
from promptops.core.entitlement_middleware import get_entitlement_service
from promptops.services.entitlement_service import EntitlementService, limit_value

router = APIRouter()


@router.get("", response_model=PlanListResponse)
async def list_plans(service: EntitlementService = Depends(get_entitlement_service)):
    """
    All plans with their limits, cheapest first.
    Public endpoint - no authentication required.
    """
    return PlanListResponse(
        success=True,
        plans=[
            PlanLimitsResponse(
                plan=limits.plan.value,
                rank=limits.plan.rank,
                prompts_per_period=limit_value(limits.prompts_per_period),
                enhancements_per_period=limit_value(limits.enhancements_per_period),
                max_saved_prompts=limit_value(limits.max_saved_prompts),
                allowed_model_tiers=[t.value for t in sorted(limits.allowed_model_tiers, key=list(ModelTier).index)]
            )
            for limits in service.catalog.list_plans()
        ]
    )
