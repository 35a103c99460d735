import asyncio
import logging
from datetime import datetime

import pytest

from promptops.core.database import create_session_factory
from promptops.core.exceptions import ProtocolError, UserNotFoundError, ValidationError
from promptops.crud.ai_model import ai_model_crud
from promptops.crud.usage_record import usage_record, CRUDUsageRecord
from promptops.models.usage_record import UsageRecord
from promptops.schemas.entitlement import Action, ActionType, DenialReason, UsageCounter
from promptops.services.entitlement_service import EntitlementService
from promptops.services.model_registry import ModelRegistry
from promptops.services.plan_catalog import Plan

from tests.conftest import SIGNUP, USER_ID, FrozenClock


async def _use(db, service, action, times):
    for _ in range(times):
        await service.record_usage(db, USER_ID, action)


# Counter limits

async def test_free_user_gets_exactly_the_quota(db, service, provisioned):
    for i in range(15):
        decision = await service.can_perform(db, USER_ID, Action.test_prompt())
        assert decision.allowed, f"prompt {i + 1} should be allowed"
        await service.record_usage(db, USER_ID, Action.test_prompt())

    decision = await service.can_perform(db, USER_ID, Action.test_prompt())
    assert not decision.allowed
    assert decision.reason == DenialReason.QUOTA_EXCEEDED
    assert decision.used == 15
    assert decision.limit == 15
    assert decision.remaining == 0


async def test_last_prompt_of_the_period(db, service, provisioned):
    await usage_record.increment(db, USER_ID, UsageCounter.PROMPTS_USED, amount=14)

    decision = await service.can_perform(db, USER_ID, "test_prompt")
    assert decision.allowed
    assert decision.remaining == 1

    record = await service.record_usage(db, USER_ID, "test_prompt")
    assert record.prompts_used == 15
    assert not (await service.can_perform(db, USER_ID, "test_prompt")).allowed


async def test_counters_are_independent(db, service, provisioned):
    await _use(db, service, Action.run_enhancement(), 5)
    assert not (await service.can_perform(db, USER_ID, Action.run_enhancement())).allowed
    assert (await service.can_perform(db, USER_ID, Action.test_prompt())).allowed


async def test_enterprise_is_never_denied(db, service, seeded_models):
    await service.provision_user(db, USER_ID, plan=Plan.ENTERPRISE, signup_at=SIGNUP)
    await usage_record.increment(db, USER_ID, UsageCounter.PROMPTS_USED, amount=1_000_000)

    decision = await service.can_perform(db, USER_ID, Action.test_prompt())
    assert decision.allowed
    assert decision.limit == "unlimited"
    assert decision.remaining is None


async def test_team_saved_prompts_are_unlimited(db, service, seeded_models):
    await service.provision_user(db, USER_ID, plan="team", signup_at=SIGNUP)
    await usage_record.increment(db, USER_ID, UsageCounter.PROMPTS_SAVED, amount=10_000)
    assert (await service.can_perform(db, USER_ID, Action.save_new_prompt())).allowed


async def test_save_then_release_frees_a_slot(db, service, provisioned):
    await _use(db, service, Action.save_new_prompt(), 25)
    assert not (await service.can_perform(db, USER_ID, Action.save_new_prompt())).allowed

    record = await service.release_saved_prompt(db, USER_ID)
    assert record.prompts_saved == 24
    assert (await service.can_perform(db, USER_ID, Action.save_new_prompt())).allowed


async def test_release_with_no_saved_prompts_stays_at_zero(db, service, provisioned):
    record = await service.release_saved_prompt(db, USER_ID)
    assert record.prompts_saved == 0


async def test_can_perform_does_not_count(db, service, provisioned):
    for _ in range(20):
        await service.can_perform(db, USER_ID, Action.test_prompt())
    assert (await usage_record.load(db, USER_ID)).prompts_used == 0


# Model access

async def test_free_user_can_invoke_free_model(db, service, provisioned):
    decision = await service.can_perform(db, USER_ID, Action.invoke_model("gpt-4o-mini"))
    assert decision.allowed
    assert decision.limit is None


async def test_free_user_denied_pro_model(db, service, provisioned):
    decision = await service.can_perform(db, USER_ID, Action.invoke_model("gpt-4o"))
    assert not decision.allowed
    assert decision.reason == DenialReason.PLAN_TIER_INSUFFICIENT


async def test_disabled_model_denied_even_when_tier_allows(db, service, provisioned):
    decision = await service.can_perform(db, USER_ID, Action.invoke_model("claude-3-haiku"))
    assert not decision.allowed
    assert decision.reason == DenialReason.MODEL_DISABLED


async def test_disabled_reported_before_tier(db, service, provisioned):
    # claude-4-sonnet is both disabled and above the free tier
    decision = await service.can_perform(db, USER_ID, Action.invoke_model("claude-4-sonnet"))
    assert decision.reason == DenialReason.MODEL_DISABLED


async def test_unknown_model_is_unavailable(db, service, provisioned):
    decision = await service.can_perform(db, USER_ID, Action.invoke_model("no-such-model"))
    assert decision.reason == DenialReason.MODEL_DISABLED


async def test_model_switch_applies_without_restart(db, service, provisioned):
    await ai_model_crud.set_enabled(db, "gpt-4o-mini", False)
    assert (await service.can_perform(db, USER_ID, Action.invoke_model("gpt-4o-mini"))).reason == DenialReason.MODEL_DISABLED
    await ai_model_crud.set_enabled(db, "gpt-4o-mini", True)
    assert (await service.can_perform(db, USER_ID, Action.invoke_model("gpt-4o-mini"))).allowed


async def test_enterprise_reaches_every_tier(db, service, seeded_models):
    await service.provision_user(db, USER_ID, plan=Plan.ENTERPRISE, signup_at=SIGNUP)
    for model_id in ("gpt-4o-mini", "gpt-4o", "claude-3-opus", "command-r-plus"):
        assert (await service.can_perform(db, USER_ID, Action.invoke_model(model_id))).allowed


async def test_invoke_model_records_nothing(db, service, provisioned):
    record = await service.record_usage(db, USER_ID, Action.invoke_model("gpt-4o-mini"))
    assert (record.prompts_used, record.enhancements_used, record.prompts_saved) == (0, 0, 0)


async def test_available_models_flags_each_model(db, service, provisioned):
    plan, models = await service.available_models(db, USER_ID)
    by_id = {m.id: m for m in models}
    assert plan == "free"
    assert by_id["gpt-4o-mini"].available
    assert by_id["gpt-4o"].reason == DenialReason.PLAN_TIER_INSUFFICIENT.value
    assert by_id["claude-3-haiku"].reason == DenialReason.MODEL_DISABLED.value


async def test_seed_is_idempotent(db, seeded_models):
    assert await ModelRegistry().seed_defaults(db) == 0


# Actions and errors

async def test_unknown_action_is_protocol_error(db, service, provisioned):
    with pytest.raises(ProtocolError):
        await service.can_perform(db, USER_ID, "delete_everything")
    with pytest.raises(ProtocolError):
        await service.record_usage(db, USER_ID, {"type": "delete_everything"})


async def test_invoke_model_requires_model_id(db, service, provisioned):
    with pytest.raises(ProtocolError):
        await service.can_perform(db, USER_ID, ActionType.INVOKE_MODEL)


async def test_missing_record_is_never_created(db, service, caplog):
    with caplog.at_level(logging.ERROR):
        with pytest.raises(UserNotFoundError):
            await service.can_perform(db, "ghost", Action.test_prompt())
    assert "ghost" in caplog.text
    assert await usage_record.get_by_user_id(db, "ghost") is None


# Periods

async def test_no_rollover_inside_the_period(db, service, clock, provisioned):
    await _use(db, service, Action.test_prompt(), 3)
    clock.now = provisioned.period_end
    record = await service.period_rollover(db, USER_ID)
    assert record.prompts_used == 3
    assert record.period_end == provisioned.period_end


async def test_rollover_resets_counters_and_keeps_saved(db, service, clock, provisioned):
    await _use(db, service, Action.test_prompt(), 15)
    await _use(db, service, Action.run_enhancement(), 2)
    await _use(db, service, Action.save_new_prompt(), 4)

    clock.now = datetime(2026, 2, 10, 12, 0, 1)
    decision = await service.can_perform(db, USER_ID, Action.test_prompt())
    assert decision.allowed

    record = await usage_record.load(db, USER_ID)
    assert (record.prompts_used, record.enhancements_used, record.prompts_saved) == (0, 0, 4)
    assert record.period_start == datetime(2026, 2, 10, 12, 0, 0)
    assert record.period_end == datetime(2026, 3, 10, 12, 0, 0)


async def test_rollover_skips_missed_periods(db, service, clock, provisioned):
    clock.now = datetime(2026, 5, 1)
    record = await service.period_rollover(db, USER_ID)
    assert record.period_start == datetime(2026, 4, 10, 12, 0, 0)
    assert record.period_end == datetime(2026, 5, 10, 12, 0, 0)


async def test_rollover_keeps_month_end_boundaries(db, service, clock, seeded_models):
    await service.provision_user(db, USER_ID, signup_at=datetime(2026, 1, 31, 12, 0, 0))
    await _use(db, service, Action.test_prompt(), 15)

    expected = [
        (datetime(2026, 3, 1), datetime(2026, 2, 28, 12, 0, 0), datetime(2026, 3, 31, 12, 0, 0)),
        (datetime(2026, 4, 1), datetime(2026, 3, 31, 12, 0, 0), datetime(2026, 4, 30, 12, 0, 0)),
        (datetime(2026, 5, 1), datetime(2026, 4, 30, 12, 0, 0), datetime(2026, 5, 31, 12, 0, 0)),
        (datetime(2026, 6, 1), datetime(2026, 5, 31, 12, 0, 0), datetime(2026, 6, 30, 12, 0, 0)),
    ]
    for now, start, end in expected:
        clock.now = now
        record = await service.period_rollover(db, USER_ID)
        assert (record.period_start, record.period_end) == (start, end)
        assert record.prompts_used == 0

    assert record.period_anchor == datetime(2026, 1, 31, 12, 0, 0)


async def test_rollover_is_applied_once(db, service, clock, provisioned):
    await _use(db, service, Action.test_prompt(), 2)
    clock.now = datetime(2026, 2, 11)
    first = await service.period_rollover(db, USER_ID)
    await service.record_usage(db, USER_ID, Action.test_prompt())
    second = await service.period_rollover(db, USER_ID)
    assert first.period_end == second.period_end
    assert second.prompts_used == 1


async def test_rollover_expired_sweep(db, service, clock, provisioned):
    await service.provision_user(db, "later-user", signup_at=datetime(2026, 2, 5))
    clock.now = datetime(2026, 2, 11)
    assert await service.rollover_expired(db) == 1
    assert (await usage_record.load(db, USER_ID)).period_start == datetime(2026, 2, 10, 12, 0, 0)
    assert (await usage_record.load(db, "later-user")).period_start == datetime(2026, 2, 5)


# Plan changes

async def test_upgrade_keeps_counters_and_applies_new_limits(db, service, provisioned, caplog):
    await _use(db, service, Action.test_prompt(), 15)
    assert not (await service.can_perform(db, USER_ID, Action.test_prompt())).allowed

    with caplog.at_level(logging.INFO):
        record = await service.set_plan(db, USER_ID, "pro")
    assert record.prompts_used == 15
    assert "upgraded" in caplog.text

    decision = await service.can_perform(db, USER_ID, Action.test_prompt())
    assert decision.allowed
    assert decision.remaining == 985
    assert (await service.can_perform(db, USER_ID, Action.invoke_model("gpt-4o"))).allowed


async def test_downgrade_over_quota_denies_immediately(db, service, seeded_models):
    await service.provision_user(db, USER_ID, plan=Plan.PRO, signup_at=SIGNUP)
    await _use(db, service, Action.run_enhancement(), 40)
    await service.set_plan(db, USER_ID, Plan.FREE)
    decision = await service.can_perform(db, USER_ID, Action.run_enhancement())
    assert decision.reason == DenialReason.QUOTA_EXCEEDED
    assert decision.used == 40


async def test_set_unknown_plan_is_rejected(db, service, provisioned):
    with pytest.raises(ValidationError):
        await service.set_plan(db, USER_ID, "platinum")
    assert (await usage_record.load(db, USER_ID)).plan == "free"


async def test_legacy_plan_name_resolves(db, service, provisioned):
    record = await service.set_plan(db, USER_ID, "premium")
    assert record.plan == "pro"


async def test_stored_unknown_plan_uses_free_limits(db, service, provisioned):
    await usage_record.set_plan(db, USER_ID, "trial")
    decision = await service.can_perform(db, USER_ID, Action.test_prompt())
    assert decision.plan == "free"
    assert decision.limit == 15


# Provisioning and admin

async def test_provision_is_idempotent(db, service, provisioned):
    await _use(db, service, Action.test_prompt(), 2)
    again = await service.provision_user(db, USER_ID, plan="pro")
    assert again.id == provisioned.id
    assert again.plan == "free"
    assert again.prompts_used == 2


async def test_provision_defaults_to_clock(db, service, clock, seeded_models):
    record = await service.provision_user(db, "fresh")
    assert record.period_start == clock.now
    assert record.period_end == datetime(2026, 2, 10, 12, 0, 0)


class _LateVisibleStore(CRUDUsageRecord):
    """Misses the existing row on the first lookup, like a provision racing another one"""

    def __init__(self):
        super().__init__(UsageRecord)
        self.hidden = True

    async def get_by_user_id(self, db, user_id):
        if self.hidden:
            self.hidden = False
            return None
        return await super().get_by_user_id(db, user_id)


async def test_concurrent_provision_returns_existing_record(db, clock, provisioned):
    racing = EntitlementService(store=_LateVisibleStore(), clock=clock)
    record = await racing.provision_user(db, USER_ID, plan="pro")
    assert record.id == provisioned.id
    assert record.plan == "free"


async def test_concurrent_provisions_create_one_record(locking_engine):
    factory = create_session_factory(locking_engine)
    service = EntitlementService(clock=FrozenClock(SIGNUP))

    async def provision():
        async with factory() as session:
            return await service.provision_user(session, "new-user")

    records = await asyncio.gather(*(provision() for _ in range(10)))
    assert len({r.id for r in records}) == 1


async def test_reset_usage(db, service, provisioned):
    await _use(db, service, Action.test_prompt(), 15)
    await _use(db, service, Action.save_new_prompt(), 3)
    record = await service.reset_usage(db, USER_ID)
    assert (record.prompts_used, record.prompts_saved) == (0, 3)


async def test_delete_user(db, service, provisioned):
    assert await service.delete_user(db, USER_ID)
    with pytest.raises(UserNotFoundError):
        await service.period_rollover(db, USER_ID)


async def test_usage_summary(db, service, clock, provisioned):
    await _use(db, service, Action.test_prompt(), 3)
    clock.advance(days=5)
    summary = await service.get_usage_summary(db, USER_ID)
    assert summary.plan == "free"
    assert summary.prompts.used == 3
    assert summary.prompts.remaining == 12
    assert summary.prompts.percentage == 20.0
    assert summary.days_remaining == 26


# Check/record gap and the strict alternative

async def test_check_then_record_can_overshoot_by_design(db, service, session_factory, provisioned):
    await usage_record.increment(db, USER_ID, UsageCounter.PROMPTS_USED, amount=14)

    async with session_factory() as a, session_factory() as b:
        assert (await service.can_perform(a, USER_ID, Action.test_prompt())).allowed
        assert (await service.can_perform(b, USER_ID, Action.test_prompt())).allowed
        await service.record_usage(a, USER_ID, Action.test_prompt())
        record = await service.record_usage(b, USER_ID, Action.test_prompt())

    assert record.prompts_used == 16
    assert not (await service.can_perform(db, USER_ID, Action.test_prompt())).allowed


async def test_try_consume_never_overshoots(db, service, provisioned):
    results = [await service.try_consume(db, USER_ID, Action.run_enhancement()) for _ in range(7)]
    assert [d.allowed for d in results] == [True] * 5 + [False] * 2
    assert results[-1].reason == DenialReason.QUOTA_EXCEEDED
    assert (await usage_record.load(db, USER_ID)).enhancements_used == 5


async def test_concurrent_try_consume_respects_limit(locking_engine):
    factory = create_session_factory(locking_engine)
    service = EntitlementService(clock=FrozenClock(SIGNUP))
    async with factory() as db:
        await service.provision_user(db, USER_ID, signup_at=SIGNUP)

    async def attempt():
        async with factory() as session:
            return await service.try_consume(session, USER_ID, Action.test_prompt())

    decisions = await asyncio.gather(*(attempt() for _ in range(50)))
    assert sum(d.allowed for d in decisions) == 15

    async with factory() as db:
        assert (await usage_record.load(db, USER_ID)).prompts_used == 15
