"""
Static plan catalog: per-plan quotas and the model tiers each plan may invoke.

Limits arrive from configuration as integers where ``-1`` means unlimited.
They are converted to ``Finite``/``Unlimited`` here, so nothing downstream
ever compares "unlimited" as a number.
"""
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Union

from promptops.models.ai_model import ModelTier

UNLIMITED_RAW = -1


class Plan(str, Enum):
    """Subscription plans, declared from least to most generous"""
    FREE = "free"
    PRO = "pro"
    TEAM = "team"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _PLAN_ORDER.index(self)

    @classmethod
    def parse(cls, value: Any) -> Optional["Plan"]:
        """Normalize a stored or user supplied plan name. Returns None when unrecognized."""
        if isinstance(value, Plan):
            return value
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower()
        normalized = PLAN_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return None


_PLAN_ORDER = list(Plan)

# Legacy plan names still found in older user rows
PLAN_ALIASES = {
    "basic": "free",
    "premium": "pro",
}


def is_upgrade(old: Plan, new: Plan) -> bool:
    return new.rank > old.rank


@dataclass(frozen=True)
class Finite:
    value: int

    def __post_init__(self):
        if self.value < 0:
            raise ValueError(f"Finite limit must be non-negative, got {self.value}")

    def permits(self, used: int) -> bool:
        return used < self.value

    def remaining(self, used: int) -> Optional[int]:
        return max(0, self.value - used)

    def to_raw(self) -> int:
        return self.value

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Unlimited:
    def permits(self, used: int) -> bool:
        return True

    def remaining(self, used: int) -> Optional[int]:
        return None

    def to_raw(self) -> int:
        return UNLIMITED_RAW

    def __str__(self) -> str:
        return "unlimited"


UNLIMITED = Unlimited()

Limit = Union[Finite, Unlimited]


def limit_from_raw(raw: Union[int, str, None]) -> Limit:
    """Translate the on-disk convention (-1 or "unlimited") into a Limit"""
    if raw is None or raw == UNLIMITED_RAW or raw == "unlimited":
        return UNLIMITED
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValueError(f"Invalid limit value: {raw!r}")
    return Finite(raw)


@dataclass(frozen=True)
class PlanLimits:
    plan: Plan
    prompts_per_period: Limit
    enhancements_per_period: Limit
    max_saved_prompts: Limit
    allowed_model_tiers: FrozenSet[ModelTier]

    def allows_tier(self, tier: Union[ModelTier, str]) -> bool:
        try:
            return ModelTier(tier) in self.allowed_model_tiers
        except ValueError:
            return False

    def to_raw(self) -> Dict[str, Any]:
        return {
            "plan": self.plan.value,
            "prompts_per_period": self.prompts_per_period.to_raw(),
            "enhancements_per_period": self.enhancements_per_period.to_raw(),
            "max_saved_prompts": self.max_saved_prompts.to_raw(),
            "allowed_model_tiers": sorted(t.value for t in self.allowed_model_tiers),
        }


DEFAULT_PLAN_LIMITS: Dict[str, Dict[str, Any]] = {
    "free": {
        "prompts_per_period": 15,
        "enhancements_per_period": 5,
        "max_saved_prompts": 25,
        "allowed_model_tiers": ["free"],
    },
    "pro": {
        "prompts_per_period": 1000,
        "enhancements_per_period": 150,
        "max_saved_prompts": 500,
        "allowed_model_tiers": ["free", "pro"],
    },
    "team": {
        "prompts_per_period": 7500,
        "enhancements_per_period": 2000,
        "max_saved_prompts": UNLIMITED_RAW,
        "allowed_model_tiers": ["free", "pro", "team"],
    },
    "enterprise": {
        "prompts_per_period": UNLIMITED_RAW,
        "enhancements_per_period": UNLIMITED_RAW,
        "max_saved_prompts": UNLIMITED_RAW,
        "allowed_model_tiers": ["free", "pro", "team", "enterprise"],
    },
}


class PlanCatalog:
    """Read-only lookup from plan to limits. Unknown plans get the free plan's limits."""

    def __init__(self, entries: Iterable[PlanLimits]):
        table = {entry.plan: entry for entry in entries}
        missing = [plan.value for plan in Plan if plan not in table]
        if missing:
            raise ValueError(f"Plan catalog is missing entries for: {', '.join(missing)}")
        self._entries: Mapping[Plan, PlanLimits] = MappingProxyType(table)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Mapping[str, Any]]) -> "PlanCatalog":
        entries = []
        for plan_name, values in raw.items():
            plan = Plan.parse(plan_name)
            if plan is None:
                raise ValueError(f"Unknown plan in catalog configuration: {plan_name!r}")
            entries.append(PlanLimits(
                plan=plan,
                prompts_per_period=limit_from_raw(values["prompts_per_period"]),
                enhancements_per_period=limit_from_raw(values["enhancements_per_period"]),
                max_saved_prompts=limit_from_raw(values["max_saved_prompts"]),
                allowed_model_tiers=frozenset(ModelTier(t) for t in values["allowed_model_tiers"]),
            ))
        return cls(entries)

    def get_limits(self, plan: Union[Plan, str, None]) -> PlanLimits:
        resolved = Plan.parse(plan)
        if resolved is None:
            return self._entries[Plan.FREE]
        return self._entries[resolved]

    def list_plans(self) -> List[PlanLimits]:
        return [self._entries[plan] for plan in Plan]


plan_catalog = PlanCatalog.from_raw(DEFAULT_PLAN_LIMITS)
