from fastapi import APIRouter, HTTPException, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from promptops.schemas.auth import TokenData
from promptops.schemas.entitlement import (
    CheckEntitlementRequest,
    Decision,
    RecordUsageRequest,
    RecordUsageResponse,
    UsageRecordResponse,
    UsageSummaryResponse,
)
from promptops.core.auth import get_current_user
from promptops.core.database import get_db
from promptops.core.entitlement_middleware import get_entitlement_service, record_entitlement_usage
from promptops.services.entitlement_service import EntitlementService

router = APIRouter()


@router.get("", response_model=UsageSummaryResponse)
async def get_usage(
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """
    Usage for the current period with limits and percentages.
    Polled by the usage widgets; read-only.
    """
    try:
        return await service.get_usage_summary(db, current_user.user_id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to get usage: {str(e)}"
        )


@router.get("/record", response_model=UsageRecordResponse)
async def get_usage_record(
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """Raw usage record for the current user"""
    return await service.period_rollover(db, current_user.user_id)


@router.post("/check", response_model=Decision)
async def check_entitlement(
    request: CheckEntitlementRequest,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """
    Ask whether an action is allowed right now.
    Denials come back as a 200 with allowed=false and a reason.
    """
    return await service.can_perform(db, current_user.user_id, request)


@router.post("/record", response_model=RecordUsageResponse)
async def record_usage(
    request: RecordUsageRequest,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """
    Count one successful action.
    Call only after the AI provider returned a response.
    """
    record = await record_entitlement_usage(service, db, current_user.user_id, request)
    return RecordUsageResponse(
        success=True,
        message="Usage recorded",
        usage=UsageRecordResponse.model_validate(record)
    )


@router.post("/prompts/release", response_model=RecordUsageResponse)
async def release_saved_prompt(
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """Free a saved prompt slot after the prompt was deleted"""
    record = await service.release_saved_prompt(db, current_user.user_id)
    return RecordUsageResponse(
        success=True,
        message="Saved prompt slot released",
        usage=UsageRecordResponse.model_validate(record)
    )
