"""
Per-user entitlement resolution.

Combines the user's plan limits with live usage counts. Every
feature-gated operation in the product asks :class:`EntitlementResolver`
rather than reading subscriptions directly.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agenda.repositories.subscription_repo import SubscriptionRepo
from agenda.repositories.usage_repo import UsageRepo
from agenda.services.plan_catalog import (
    UNLIMITED,
    Limit,
    PlanLimits,
    PlanTier,
    limits_for,
)


logger = logging.getLogger(__name__)


class ResourceKind(str, enum.Enum):
    APPOINTMENTS = "appointments"
    SERVICES = "services"
    EMPLOYEES = "employees"
    BIO_LINKS = "bio_links"
    TESTIMONIALS = "testimonials"


class Feature(str, enum.Enum):
    MARKETING = "marketing"
    ANALYTICS = "analytics"
    LOYALTY = "loyalty"
    INVENTORY = "inventory"


_LIMIT_FIELDS: Dict[ResourceKind, str] = {
    ResourceKind.APPOINTMENTS: "appointments_per_month",
    ResourceKind.SERVICES: "services_limit",
    ResourceKind.EMPLOYEES: "employees_limit",
    ResourceKind.BIO_LINKS: "bio_links_limit",
    ResourceKind.TESTIMONIALS: "testimonials_limit",
}

_FEATURE_FIELDS: Dict[Feature, str] = {
    Feature.MARKETING: "can_use_marketing",
    Feature.ANALYTICS: "can_use_analytics",
    Feature.LOYALTY: "can_use_loyalty",
    Feature.INVENTORY: "can_use_inventory",
}


@dataclass(frozen=True)
class UsageSnapshot:
    """Usage counts at resolution time. Never cached."""

    appointments_this_month: int = 0
    services_count: int = 0
    employees_count: int = 0
    bio_links_count: int = 0
    testimonials_count: int = 0

    def for_kind(self, kind: ResourceKind) -> int:
        return {
            ResourceKind.APPOINTMENTS: self.appointments_this_month,
            ResourceKind.SERVICES: self.services_count,
            ResourceKind.EMPLOYEES: self.employees_count,
            ResourceKind.BIO_LINKS: self.bio_links_count,
            ResourceKind.TESTIMONIALS: self.testimonials_count,
        }[ResourceKind(kind)]


def _render_limit(value: Limit) -> Any:
    return "unlimited" if value is UNLIMITED else value


@dataclass(frozen=True)
class Entitlements:
    """Limits and usage for one user, with the derived gating predicates."""

    limits: PlanLimits
    usage: UsageSnapshot

    @property
    def tier(self) -> PlanTier:
        return self.limits.tier

    def limit(self, kind: ResourceKind) -> Limit:
        return getattr(self.limits, _LIMIT_FIELDS[ResourceKind(kind)])

    def can_create(self, kind: ResourceKind) -> bool:
        limit = self.limit(kind)
        if limit is UNLIMITED:
            return True
        return self.usage.for_kind(kind) < limit

    def remaining(self, kind: ResourceKind) -> Limit:
        limit = self.limit(kind)
        if limit is UNLIMITED:
            return UNLIMITED
        return max(0, limit - self.usage.for_kind(kind))

    def can_access_feature(self, feature: Feature) -> bool:
        return bool(getattr(self.limits, _FEATURE_FIELDS[Feature(feature)]))

    def as_dict(self) -> Dict[str, Any]:
        limits = {
            key: _render_limit(value)
            for key, value in asdict(self.limits).items()
            if key != "tier"
        }
        return {
            "plan_type": self.tier.value,
            "limits": limits,
            "usage": asdict(self.usage),
            "remaining": {
                kind.value: _render_limit(self.remaining(kind)) for kind in ResourceKind
            },
            "can_create": {kind.value: self.can_create(kind) for kind in ResourceKind},
            "features": {
                feature.value: self.can_access_feature(feature) for feature in Feature
            },
        }


def month_window(now: datetime) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of the calendar month containing ``now``."""

    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start, start + relativedelta(months=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntitlementResolver:
    """Resolve :class:`Entitlements` for a user from the store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock

    async def resolve(self, user_id: UUID) -> Entitlements:
        async with self.session_factory() as session:
            subscription = await SubscriptionRepo(session).get_active(user_id)

        # No active subscription is the normal Free state, not an error.
        tier = subscription.plan_type if subscription is not None else PlanTier.FREE
        limits = limits_for(tier)
        usage = await self._usage(user_id)
        return Entitlements(limits=limits, usage=usage)

    async def _usage(self, user_id: UUID) -> UsageSnapshot:
        start, end = month_window(self.clock())

        # Each count gets its own session so they can run concurrently.
        tasks = [
            asyncio.ensure_future(self._count(query))
            for query in (
                lambda repo: repo.appointments_in_period(user_id, start, end),
                lambda repo: repo.count_services(user_id),
                lambda repo: repo.count_employees(user_id),
                lambda repo: repo.count_bio_links(user_id),
                lambda repo: repo.count_testimonials(user_id),
            )
        ]
        try:
            (
                appointments,
                services,
                employees,
                bio_links,
                testimonials,
            ) = await asyncio.gather(*tasks)
        except BaseException:
            # No count outlives a failed resolution.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning(f"Usage resolution failed for user {user_id}")
            raise
        return UsageSnapshot(
            appointments_this_month=appointments,
            services_count=services,
            employees_count=employees,
            bio_links_count=bio_links,
            testimonials_count=testimonials,
        )

    async def _count(self, query: Callable[[UsageRepo], Awaitable[int]]) -> int:
        async with self.session_factory() as session:
            return await query(UsageRepo(session))
