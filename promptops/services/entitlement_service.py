import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from datetime import datetime
from dateutil.relativedelta import relativedelta
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from promptops.core.exceptions import ProtocolError, UserNotFoundError, ValidationError
from promptops.crud.usage_record import usage_record, CRUDUsageRecord
from promptops.models.usage_record import UsageRecord
from promptops.models.ai_model import AIModel
from promptops.services.model_registry import ModelRegistry
from promptops.services.plan_catalog import (
    Limit,
    Plan,
    PlanCatalog,
    PlanLimits,
    Unlimited,
    is_upgrade,
    plan_catalog,
)
from promptops.schemas.ai_model import AvailableModelResponse
from promptops.schemas.entitlement import (
    Action,
    ActionType,
    CounterSummary,
    Decision,
    DenialReason,
    UsageCounter,
    UsageSummaryResponse,
)

logger = logging.getLogger(__name__)

ActionLike = Union[Action, ActionType, str, Dict[str, Any]]

# Counter consumed by each metered action, and the PlanLimits attribute that caps it
METERED_ACTIONS: Dict[ActionType, Tuple[UsageCounter, str]] = {
    ActionType.TEST_PROMPT: (UsageCounter.PROMPTS_USED, "prompts_per_period"),
    ActionType.RUN_ENHANCEMENT: (UsageCounter.ENHANCEMENTS_USED, "enhancements_per_period"),
    ActionType.SAVE_NEW_PROMPT: (UsageCounter.PROMPTS_SAVED, "max_saved_prompts"),
}

DENIAL_MESSAGES = {
    DenialReason.QUOTA_EXCEEDED: "Limit reached for your plan. Please upgrade to continue.",
    DenialReason.PLAN_TIER_INSUFFICIENT: "This model is not included in your plan. Upgrade to unlock it.",
    DenialReason.MODEL_DISABLED: "This model is temporarily unavailable.",
}


def limit_value(limit: Limit) -> Union[int, str]:
    return "unlimited" if isinstance(limit, Unlimited) else limit.value


def usage_percentage(used: int, limit: Limit) -> float:
    if isinstance(limit, Unlimited) or limit.value <= 0:
        return 0.0
    return round(min(100.0, used / limit.value * 100), 2)


class EntitlementService:
    """
    Decides whether a user may perform an action right now and records the
    consumption once the action has actually succeeded.

    Checking and recording are separate calls: a failed provider call must not
    cost the user quota. The gap between them is accepted; two simultaneous
    requests can both pass can_perform and end one over the limit.
    try_consume is the strict alternative that checks and increments in one
    statement.

    One instance is built per process (see main.create_app) and shared by
    all requests; it holds no per-request state.
    """

    def __init__(
        self,
        store: CRUDUsageRecord = usage_record,
        registry: Optional[ModelRegistry] = None,
        catalog: PlanCatalog = plan_catalog,
        clock: Callable[[], datetime] = datetime.utcnow,
        period_length: relativedelta = relativedelta(months=1)
    ):
        self.store = store
        self.registry = registry or ModelRegistry()
        self.catalog = catalog
        self.clock = clock
        self.period_length = period_length

    @staticmethod
    def _coerce_action(action: ActionLike) -> Action:
        try:
            if isinstance(action, Action):
                parsed = action
            elif isinstance(action, dict):
                parsed = Action(**action)
            elif isinstance(action, str):
                parsed = Action(type=ActionType(action))
            else:
                raise ProtocolError(f"Unknown action: {action!r}")
        except (ValueError, PydanticValidationError):
            raise ProtocolError(f"Unknown action: {action!r}")

        if parsed.type == ActionType.INVOKE_MODEL and not parsed.model_id:
            raise ProtocolError("invoke_model requires a model_id")
        return parsed

    async def _load(self, db: AsyncSession, user_id: str) -> UsageRecord:
        try:
            return await self.store.load(db, user_id)
        except UserNotFoundError:
            logger.error(f"❌ No usage record for user {user_id}; accounts must be provisioned before use")
            raise

    def _parse_plan(self, plan: Union[Plan, str]) -> Plan:
        parsed = Plan.parse(plan)
        if parsed is None:
            raise ValidationError(f"Unknown plan: {plan}")
        return parsed

    # Period handling

    def _window_containing(self, anchor: datetime, now: datetime) -> Tuple[datetime, datetime]:
        """The period (start, end] containing now. Both boundaries are anchor + k periods."""
        k = 1
        while anchor + self.period_length * k < now:
            k += 1
        return anchor + self.period_length * (k - 1), anchor + self.period_length * k

    async def _rollover(self, db: AsyncSession, record: UsageRecord) -> UsageRecord:
        now = self.clock()
        if now <= record.period_end:
            return record

        new_start, new_end = self._window_containing(record.period_anchor, now)

        updated = await self.store.reset_period(
            db,
            record.supabase_user_id,
            new_start,
            new_end,
            expected_period_end=record.period_end
        )
        if updated is None:
            # A concurrent request already moved the window
            return await self._load(db, record.supabase_user_id)

        logger.info(
            f"🔄 Usage period rolled over for user {record.supabase_user_id}: "
            f"{new_start.isoformat()} -> {new_end.isoformat()}"
        )
        return updated

    async def period_rollover(self, db: AsyncSession, user_id: str) -> UsageRecord:
        """Reset the period counters if the current window has ended. No-op otherwise."""
        record = await self._load(db, user_id)
        return await self._rollover(db, record)

    async def rollover_expired(self, db: AsyncSession, batch_size: int = 500) -> int:
        """Roll over every record whose window has ended. Returns the number of users processed."""
        user_ids = await self.store.list_expired(db, self.clock(), limit=batch_size)
        rolled = 0
        for user_id in user_ids:
            try:
                await self.period_rollover(db, user_id)
                rolled += 1
            except UserNotFoundError:
                # Account deleted between listing and rollover
                continue
        if rolled:
            logger.info(f"🔄 Rolled over {rolled} expired usage periods")
        return rolled

    # Decisions

    def _decide_counter(self, record: UsageRecord, limits: PlanLimits, action_type: ActionType) -> Decision:
        counter, limit_attr = METERED_ACTIONS[action_type]
        limit: Limit = getattr(limits, limit_attr)
        used = getattr(record, counter.value)

        if limit.permits(used):
            return Decision(
                allowed=True,
                message="Request allowed",
                plan=limits.plan.value,
                limit=limit_value(limit),
                used=used,
                remaining=limit.remaining(used)
            )

        logger.info(f"Quota reached for user {record.supabase_user_id}: {action_type.value} {used}/{limit}")
        return Decision(
            allowed=False,
            reason=DenialReason.QUOTA_EXCEEDED,
            message=DENIAL_MESSAGES[DenialReason.QUOTA_EXCEEDED],
            plan=limits.plan.value,
            limit=limit_value(limit),
            used=used,
            remaining=0
        )

    @staticmethod
    def _model_denial(model: Optional[AIModel], limits: PlanLimits) -> Optional[DenialReason]:
        # Both conditions are evaluated; an unavailable model is reported before a tier upsell
        available = model is not None and bool(model.enabled)
        tier_allowed = model is not None and limits.allows_tier(model.tier)
        if not available:
            return DenialReason.MODEL_DISABLED
        if not tier_allowed:
            return DenialReason.PLAN_TIER_INSUFFICIENT
        return None

    async def _decide_model(self, db: AsyncSession, limits: PlanLimits, model_id: str) -> Decision:
        model = await self.registry.lookup(db, model_id)
        reason = self._model_denial(model, limits)
        if reason is None:
            return Decision(allowed=True, message="Request allowed", plan=limits.plan.value)
        return Decision(
            allowed=False,
            reason=reason,
            message=DENIAL_MESSAGES[reason],
            plan=limits.plan.value
        )

    async def can_perform(self, db: AsyncSession, user_id: str, action: ActionLike) -> Decision:
        """
        Check whether the user may perform the action now.

        Denials are returned as a Decision, never raised. Raises
        UserNotFoundError, ProtocolError or StoreUnavailableError.
        """
        action = self._coerce_action(action)
        record = await self.period_rollover(db, user_id)
        limits = self.catalog.get_limits(record.plan)

        if action.type == ActionType.INVOKE_MODEL:
            return await self._decide_model(db, limits, action.model_id)
        return self._decide_counter(record, limits, action.type)

    async def record_usage(self, db: AsyncSession, user_id: str, action: ActionLike) -> UsageRecord:
        """
        Count one successful action. Call only after the gated work succeeded.
        invoke_model has no counter and returns the record unchanged.
        """
        action = self._coerce_action(action)
        record = await self.period_rollover(db, user_id)

        if action.type == ActionType.INVOKE_MODEL:
            return record

        counter, _ = METERED_ACTIONS[action.type]
        return await self.store.increment(db, user_id, counter)

    async def try_consume(self, db: AsyncSession, user_id: str, action: ActionLike) -> Decision:
        """
        Check and count in a single conditional UPDATE, closing the gap between
        can_perform and record_usage. Quota is spent even if the caller's work fails later.
        """
        action = self._coerce_action(action)
        if action.type == ActionType.INVOKE_MODEL:
            return await self.can_perform(db, user_id, action)

        record = await self.period_rollover(db, user_id)
        limits = self.catalog.get_limits(record.plan)
        counter, limit_attr = METERED_ACTIONS[action.type]
        limit: Limit = getattr(limits, limit_attr)

        if isinstance(limit, Unlimited):
            updated = await self.store.increment(db, user_id, counter)
        else:
            updated = await self.store.increment_if_below(db, user_id, counter, limit.value)

        if updated is None:
            return self._decide_counter(await self._load(db, user_id), limits, action.type)

        used = getattr(updated, counter.value)
        return Decision(
            allowed=True,
            message="Usage recorded",
            plan=limits.plan.value,
            limit=limit_value(limit),
            used=used,
            remaining=limit.remaining(used)
        )

    # Saved prompt slots

    async def release_saved_prompt(self, db: AsyncSession, user_id: str) -> UsageRecord:
        """A saved prompt was deleted: free its slot (never below zero)"""
        return await self.store.adjust_saved_count(db, user_id, -1)

    # Account and plan lifecycle

    async def provision_user(
        self,
        db: AsyncSession,
        user_id: str,
        plan: Union[Plan, str] = Plan.FREE,
        signup_at: Optional[datetime] = None
    ) -> UsageRecord:
        """Create the zeroed usage record for a new account. Idempotent."""
        parsed = self._parse_plan(plan)
        existing = await self.store.get_by_user_id(db, user_id)
        if existing:
            return existing

        period_start = signup_at or self.clock()
        record = await self.store.create_for_user(
            db,
            user_id,
            plan=parsed.value,
            period_start=period_start,
            period_end=period_start + self.period_length,
            period_anchor=period_start
        )
        if record is None:
            logger.info(f"Usage record for user {user_id} was provisioned concurrently")
            return await self._load(db, user_id)

        logger.info(f"✅ Usage record created for user {user_id} on plan {parsed.value}")
        return record

    async def delete_user(self, db: AsyncSession, user_id: str) -> bool:
        deleted = await self.store.delete_for_user(db, user_id)
        if deleted:
            logger.info(f"🗑️ Usage record deleted for user {user_id}")
        return deleted

    async def set_plan(self, db: AsyncSession, user_id: str, plan: Union[Plan, str]) -> UsageRecord:
        """Apply a plan change. Takes effect immediately; counters are not reset."""
        new_plan = self._parse_plan(plan)
        record = await self._load(db, user_id)
        old_plan = Plan.parse(record.plan) or Plan.FREE

        updated = await self.store.set_plan(db, user_id, new_plan.value)
        if new_plan != old_plan:
            direction = "upgraded" if is_upgrade(old_plan, new_plan) else "downgraded"
            logger.info(f"💳 User {user_id} {direction}: {old_plan.value} -> {new_plan.value}")
        return updated

    async def reset_usage(self, db: AsyncSession, user_id: str) -> UsageRecord:
        """Administrative reset of the current period's counters"""
        record = await self.store.reset_counters(db, user_id)
        logger.info(f"🔧 Usage counters reset for user {user_id}")
        return record

    # Read-only views

    def _counter_summary(self, used: int, limit: Limit) -> CounterSummary:
        return CounterSummary(
            used=used,
            limit=limit_value(limit),
            remaining=limit.remaining(used),
            percentage=usage_percentage(used, limit)
        )

    async def get_usage_summary(self, db: AsyncSession, user_id: str) -> UsageSummaryResponse:
        record = await self.period_rollover(db, user_id)
        limits = self.catalog.get_limits(record.plan)
        now = self.clock()
        days_remaining = (record.period_end - now).days if record.period_end >= now else 0

        return UsageSummaryResponse(
            plan=limits.plan.value,
            prompts=self._counter_summary(record.prompts_used, limits.prompts_per_period),
            enhancements=self._counter_summary(record.enhancements_used, limits.enhancements_per_period),
            saved_prompts=self._counter_summary(record.prompts_saved, limits.max_saved_prompts),
            period_start=record.period_start,
            period_end=record.period_end,
            days_remaining=days_remaining
        )

    async def available_models(self, db: AsyncSession, user_id: str) -> Tuple[str, List[AvailableModelResponse]]:
        """Every registered model with whether this user's plan may invoke it"""
        record = await self._load(db, user_id)
        limits = self.catalog.get_limits(record.plan)
        models = await self.registry.list_models(db)

        result = []
        for model in models:
            reason = self._model_denial(model, limits)
            result.append(AvailableModelResponse(
                id=model.id,
                name=model.name,
                provider=model.provider,
                description=model.description,
                tier=model.tier.value,
                coming_soon=model.coming_soon,
                max_prompt_length=model.max_prompt_length,
                available=reason is None,
                reason=reason.value if reason else None
            ))
        return limits.plan.value, result
