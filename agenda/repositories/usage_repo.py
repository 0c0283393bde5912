"""Repository helpers for usage counts against plan limits."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.db.models.appointment import Appointment
from agenda.db.models.bio_link import BioLink
from agenda.db.models.employee import Employee
from agenda.db.models.service import Service
from agenda.db.models.testimonial import Testimonial


class UsageRepo:
    """Provides read-only counters scoped to a single user."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _count(self, model: Any, user_id: UUID, *criteria: Any) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(model)
            .where(model.user_id == user_id, *criteria)
        )
        value = result.scalar_one()
        return int(value or 0)

    async def appointments_in_period(
        self, user_id: UUID, period_start: datetime, period_end: datetime
    ) -> int:
        """Return appointments created in ``[period_start, period_end)``."""

        return await self._count(
            Appointment,
            user_id,
            Appointment.created_at >= period_start,
            Appointment.created_at < period_end,
        )

    async def count_services(self, user_id: UUID) -> int:
        return await self._count(Service, user_id)

    async def count_employees(self, user_id: UUID) -> int:
        return await self._count(Employee, user_id)

    async def count_bio_links(self, user_id: UUID) -> int:
        return await self._count(BioLink, user_id)

    async def count_testimonials(self, user_id: UUID) -> int:
        return await self._count(Testimonial, user_id)
