"""
Static plan catalog: tiers, feature limits and period pricing.

Prices are BRL and always handled as :class:`~decimal.Decimal` rounded to
cents. A limit of :data:`UNLIMITED` means the tier has no cap for that
resource.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Union

from agenda.core.exceptions import InvalidInputError


CENTS = Decimal("0.01")


class _Unlimited:
    """Sentinel for a limit with no cap."""

    _instance: "_Unlimited | None" = None

    def __new__(cls) -> "_Unlimited":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNLIMITED"

    def __reduce__(self):
        return (_Unlimited, ())


UNLIMITED = _Unlimited()

Limit = Union[int, _Unlimited]


class PlanTier(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class PlanLimits:
    """Numeric quotas and feature flags granted by a tier."""

    tier: PlanTier
    appointments_per_month: Limit
    services_limit: Limit
    employees_limit: Limit
    storage_limit_mb: Limit
    bio_links_limit: Limit
    testimonials_limit: Limit
    can_use_marketing: bool
    can_use_analytics: bool
    can_use_loyalty: bool
    can_use_inventory: bool


PLAN_LIMITS: Dict[PlanTier, PlanLimits] = {
    PlanTier.FREE: PlanLimits(
        tier=PlanTier.FREE,
        appointments_per_month=20,
        services_limit=3,
        employees_limit=1,
        storage_limit_mb=100,
        bio_links_limit=1,
        testimonials_limit=3,
        can_use_marketing=False,
        can_use_analytics=False,
        can_use_loyalty=False,
        can_use_inventory=False,
    ),
    PlanTier.PRO: PlanLimits(
        tier=PlanTier.PRO,
        appointments_per_month=100,
        services_limit=15,
        employees_limit=5,
        storage_limit_mb=1000,
        bio_links_limit=3,
        testimonials_limit=10,
        can_use_marketing=True,
        can_use_analytics=True,
        can_use_loyalty=False,
        can_use_inventory=True,
    ),
    PlanTier.PREMIUM: PlanLimits(
        tier=PlanTier.PREMIUM,
        appointments_per_month=UNLIMITED,
        services_limit=UNLIMITED,
        employees_limit=UNLIMITED,
        storage_limit_mb=UNLIMITED,
        bio_links_limit=UNLIMITED,
        testimonials_limit=UNLIMITED,
        can_use_marketing=True,
        can_use_analytics=True,
        can_use_loyalty=True,
        can_use_inventory=True,
    ),
}

MONTHLY_PRICES: Dict[PlanTier, Decimal] = {
    PlanTier.FREE: Decimal("0.00"),
    PlanTier.PRO: Decimal("29.00"),
    PlanTier.PREMIUM: Decimal("59.00"),
}

# Discount applied to the whole period total, keyed by period length in months.
PERIOD_DISCOUNTS: Dict[int, Decimal] = {
    1: Decimal("0"),
    6: Decimal("0.15"),
    12: Decimal("0.30"),
}

PURCHASABLE_TIERS = frozenset({PlanTier.PRO, PlanTier.PREMIUM})


def parse_tier(value: Any) -> PlanTier:
    """Strictly parse a tier name, raising :class:`InvalidInputError`."""

    if isinstance(value, PlanTier):
        return value
    try:
        return PlanTier(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidInputError(f"Unknown plan type: {value!r}") from exc


def limits_for(tier: Any) -> PlanLimits:
    """
    Return the limits for ``tier``.

    Never fails: anything that is not a known tier resolves to Free.
    """

    try:
        return PLAN_LIMITS[parse_tier(tier)]
    except InvalidInputError:
        return PLAN_LIMITS[PlanTier.FREE]


def validate_period(period_months: Any) -> int:
    if isinstance(period_months, bool) or not isinstance(period_months, int):
        raise InvalidInputError(f"Invalid period length: {period_months!r}")
    if period_months not in PERIOD_DISCOUNTS:
        allowed = ", ".join(str(p) for p in sorted(PERIOD_DISCOUNTS))
        raise InvalidInputError(
            f"Invalid period length: {period_months}. Allowed: {allowed} months"
        )
    return period_months


def price_for(tier: Any, period_months: int) -> Decimal:
    """Total price for ``period_months`` of ``tier`` after the period discount."""

    plan = parse_tier(tier)
    period = validate_period(period_months)
    gross = MONTHLY_PRICES[plan] * period
    total = gross * (Decimal("1") - PERIOD_DISCOUNTS[period])
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


def tier_for_amount(amount: Decimal) -> PlanTier:
    """Infer a tier from a paid amount using monthly price thresholds."""

    if amount >= MONTHLY_PRICES[PlanTier.PREMIUM]:
        return PlanTier.PREMIUM
    if amount >= MONTHLY_PRICES[PlanTier.PRO]:
        return PlanTier.PRO
    return PlanTier.FREE


def quote(tier: Any, period_months: int) -> Dict[str, Any]:
    """Price breakdown for a tier/period combination."""

    plan = parse_tier(tier)
    total = price_for(plan, period_months)
    return {
        "plan_type": plan.value,
        "period_months": period_months,
        "monthly_price": MONTHLY_PRICES[plan],
        "discount_rate": PERIOD_DISCOUNTS[period_months],
        "total": total,
        "effective_monthly_price": (total / period_months).quantize(
            CENTS, rounding=ROUND_HALF_UP
        ),
    }
