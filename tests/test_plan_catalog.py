import dataclasses

import pytest

from promptops.models.ai_model import ModelTier
from promptops.services.plan_catalog import (
    DEFAULT_PLAN_LIMITS,
    Finite,
    Plan,
    PlanCatalog,
    UNLIMITED,
    is_upgrade,
    limit_from_raw,
    plan_catalog,
)


def test_free_plan_limits():
    limits = plan_catalog.get_limits(Plan.FREE)
    assert limits.prompts_per_period == Finite(15)
    assert limits.enhancements_per_period == Finite(5)
    assert limits.max_saved_prompts == Finite(25)
    assert limits.allowed_model_tiers == frozenset({ModelTier.FREE})


def test_enterprise_is_unlimited_everywhere():
    limits = plan_catalog.get_limits("enterprise")
    assert limits.prompts_per_period is UNLIMITED
    assert limits.enhancements_per_period is UNLIMITED
    assert limits.max_saved_prompts is UNLIMITED
    assert limits.allowed_model_tiers == frozenset(ModelTier)


def test_team_has_unlimited_saved_prompts_only():
    limits = plan_catalog.get_limits(Plan.TEAM)
    assert limits.prompts_per_period == Finite(7500)
    assert limits.enhancements_per_period == Finite(2000)
    assert limits.max_saved_prompts is UNLIMITED
    assert not limits.allows_tier(ModelTier.ENTERPRISE)


@pytest.mark.parametrize("name", ["trial", "", None, "platinum"])
def test_unknown_plan_falls_back_to_free(name):
    assert plan_catalog.get_limits(name).plan == Plan.FREE


@pytest.mark.parametrize("name,expected", [
    ("basic", Plan.FREE),
    ("premium", Plan.PRO),
    (" Pro ", Plan.PRO),
    ("TEAM", Plan.TEAM),
])
def test_plan_parse_normalizes_and_resolves_aliases(name, expected):
    assert Plan.parse(name) == expected


def test_plans_are_ordered():
    assert [p.plan for p in plan_catalog.list_plans()] == list(Plan)
    assert is_upgrade(Plan.FREE, Plan.PRO)
    assert not is_upgrade(Plan.ENTERPRISE, Plan.TEAM)


def test_finite_limit_semantics():
    limit = Finite(15)
    assert limit.permits(14)
    assert not limit.permits(15)
    assert limit.remaining(14) == 1
    assert limit.remaining(20) == 0


def test_zero_limit_denies_everything():
    assert not Finite(0).permits(0)


def test_unlimited_always_permits():
    assert UNLIMITED.permits(10 ** 9)
    assert UNLIMITED.remaining(10 ** 9) is None


def test_raw_conversion_only_at_the_boundary():
    assert limit_from_raw(-1) is UNLIMITED
    assert limit_from_raw("unlimited") is UNLIMITED
    assert limit_from_raw(0) == Finite(0)
    assert UNLIMITED.to_raw() == -1
    with pytest.raises(ValueError):
        limit_from_raw(-5)
    with pytest.raises(ValueError):
        limit_from_raw("lots")


def test_catalog_is_read_only():
    limits = plan_catalog.get_limits(Plan.PRO)
    with pytest.raises(dataclasses.FrozenInstanceError):
        limits.prompts_per_period = Finite(1)
    with pytest.raises(TypeError):
        plan_catalog._entries[Plan.PRO] = limits


def test_catalog_requires_every_plan():
    raw = {k: v for k, v in DEFAULT_PLAN_LIMITS.items() if k != "team"}
    with pytest.raises(ValueError):
        PlanCatalog.from_raw(raw)


def test_to_raw_round_trips_unlimited():
    raw = plan_catalog.get_limits(Plan.ENTERPRISE).to_raw()
    assert raw["prompts_per_period"] == -1
    assert raw["allowed_model_tiers"] == sorted(t.value for t in ModelTier)
