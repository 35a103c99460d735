from pydantic import BaseModel, Field
from typing import Optional, List, Union
from datetime import datetime
from uuid import UUID
from enum import Enum

# Enums
class ActionType(str, Enum):
    TEST_PROMPT = "test_prompt"
    RUN_ENHANCEMENT = "run_enhancement"
    SAVE_NEW_PROMPT = "save_new_prompt"
    INVOKE_MODEL = "invoke_model"

class DenialReason(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    PLAN_TIER_INSUFFICIENT = "plan_tier_insufficient"
    MODEL_DISABLED = "model_disabled"

class UsageCounter(str, Enum):
    """Counter columns on the usage record"""
    PROMPTS_USED = "prompts_used"
    ENHANCEMENTS_USED = "enhancements_used"
    PROMPTS_SAVED = "prompts_saved"

LimitValue = Union[int, str]

# Actions and decisions
class Action(BaseModel):
    type: ActionType
    model_id: Optional[str] = Field(None, description="Required for invoke_model")

    class Config:
        protected_namespaces = ()

    @classmethod
    def test_prompt(cls) -> "Action":
        return cls(type=ActionType.TEST_PROMPT)

    @classmethod
    def run_enhancement(cls) -> "Action":
        return cls(type=ActionType.RUN_ENHANCEMENT)

    @classmethod
    def save_new_prompt(cls) -> "Action":
        return cls(type=ActionType.SAVE_NEW_PROMPT)

    @classmethod
    def invoke_model(cls, model_id: str) -> "Action":
        return cls(type=ActionType.INVOKE_MODEL, model_id=model_id)

class Decision(BaseModel):
    allowed: bool
    reason: Optional[DenialReason] = None
    message: str
    plan: str
    limit: Optional[LimitValue] = Field(None, description="Numeric quota or 'unlimited'; None for model checks")
    used: Optional[int] = None
    remaining: Optional[int] = Field(None, description="None when unlimited")

# Usage record schemas
class UsageRecordResponse(BaseModel):
    id: UUID
    supabase_user_id: str
    plan: str
    prompts_used: int
    enhancements_used: int
    prompts_saved: int
    period_start: datetime
    period_end: datetime
    period_anchor: datetime
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class CounterSummary(BaseModel):
    used: int
    limit: LimitValue
    remaining: Optional[int] = None
    percentage: float = Field(..., description="0-100, always 0 for unlimited")

class UsageSummaryResponse(BaseModel):
    """Read-only view for the usage widgets in the UI"""
    plan: str
    prompts: CounterSummary
    enhancements: CounterSummary
    saved_prompts: CounterSummary
    period_start: datetime
    period_end: datetime
    days_remaining: int

# Plan catalog schemas
class PlanLimitsResponse(BaseModel):
    plan: str
    rank: int
    prompts_per_period: LimitValue
    enhancements_per_period: LimitValue
    max_saved_prompts: LimitValue
    allowed_model_tiers: List[str]

class PlanListResponse(BaseModel):
    success: bool
    plans: List[PlanLimitsResponse]

# Request/Response Schemas for API endpoints
class CheckEntitlementRequest(Action):
    pass

class RecordUsageRequest(Action):
    pass

class RecordUsageResponse(BaseModel):
    success: bool
    message: str
    usage: Optional[UsageRecordResponse] = None

class SetPlanRequest(BaseModel):
    plan: str = Field(..., description="free, pro, team or enterprise")

class ProvisionUserRequest(BaseModel):
    plan: str = "free"
    signup_at: Optional[datetime] = None

class RolloverSweepResponse(BaseModel):
    success: bool
    rolled_over: int
