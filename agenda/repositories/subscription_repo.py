"""Repository utilities for user subscriptions."""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, Integer, Uuid, bindparam, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.exceptions import PersistenceUnavailableError, StaleEventError
from agenda.db.models.subscription import Subscription, SubscriptionStatus


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionWrite:
    """Target state derived from one provider event."""

    user_id: UUID
    plan_type: str
    status: str
    period_months: int
    period_start: dt.datetime
    period_end: dt.datetime
    event_timestamp: int
    event_rank: int
    event_id: str
    transaction_id: str | None
    updated_at: dt.datetime


# Single statement so two concurrent deliveries cannot interleave a read
# and a write. The WHERE clause makes the update conditional on the stored
# event being older, or equally old but of a lower status rank.
_APPLY_EVENT_SQL = text(
    """
    INSERT INTO subscriptions (
        user_id, plan_type, status, period_months,
        current_period_start, current_period_end,
        last_event_timestamp, last_event_rank, last_event_id, provider_transaction_id,
        created_at, updated_at
    )
    VALUES (
        :user_id, :plan_type, :status, :period_months,
        :period_start, :period_end,
        :event_ts, :event_rank, :event_id, :transaction_id,
        :updated_at, :updated_at
    )
    ON CONFLICT (user_id)
    DO UPDATE SET
        plan_type = EXCLUDED.plan_type,
        status = EXCLUDED.status,
        period_months = EXCLUDED.period_months,
        current_period_start = EXCLUDED.current_period_start,
        current_period_end = EXCLUDED.current_period_end,
        last_event_timestamp = EXCLUDED.last_event_timestamp,
        last_event_rank = EXCLUDED.last_event_rank,
        last_event_id = EXCLUDED.last_event_id,
        provider_transaction_id = EXCLUDED.provider_transaction_id,
        updated_at = EXCLUDED.updated_at
    WHERE subscriptions.last_event_timestamp < EXCLUDED.last_event_timestamp
       OR (
            subscriptions.last_event_timestamp = EXCLUDED.last_event_timestamp
            AND subscriptions.last_event_rank < EXCLUDED.last_event_rank
       )
    RETURNING user_id
    """
).bindparams(
    bindparam("user_id", type_=Uuid(as_uuid=True)),
    bindparam("period_start", type_=DateTime(timezone=True)),
    bindparam("period_end", type_=DateTime(timezone=True)),
    bindparam("updated_at", type_=DateTime(timezone=True)),
    bindparam("event_ts", type_=BigInteger()),
    bindparam("event_rank", type_=Integer()),
)


class SubscriptionRepo:
    """Data-access helpers for :class:`Subscription`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: UUID) -> Subscription | None:
        result = await self.session.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_active(self, user_id: UUID) -> Subscription | None:
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
            )
        )
        return result.scalar_one_or_none()

    async def apply_event(self, write: SubscriptionWrite) -> None:
        """
        Atomically upsert the subscription if ``write`` is newer than what is stored.

        Commits on success, together with anything already flushed on the
        session. A refused write rolls the session back and raises
        :class:`StaleEventError`. Raises :class:`PersistenceUnavailableError`
        when the store cannot be written.
        """

        params = {
            "user_id": write.user_id,
            "plan_type": write.plan_type,
            "status": write.status,
            "period_months": write.period_months,
            "period_start": write.period_start,
            "period_end": write.period_end,
            "event_ts": write.event_timestamp,
            "event_rank": write.event_rank,
            "event_id": write.event_id,
            "transaction_id": write.transaction_id,
            "updated_at": write.updated_at,
        }
        try:
            result = await self.session.execute(_APPLY_EVENT_SQL, params)
            applied = result.first() is not None
            if applied:
                await self.session.commit()
            else:
                await self.session.rollback()
        except SQLAlchemyError as exc:
            await self._safe_rollback()
            logger.error(f"Subscription write failed for user {write.user_id}: {exc}")
            raise PersistenceUnavailableError("Subscription store unavailable") from exc

        if not applied:
            raise StaleEventError(str(write.user_id), write.event_timestamp)

    async def _safe_rollback(self) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError as exc:  # pragma: no cover - connection already gone
            logger.warning(f"Rollback after failed subscription write also failed: {exc}")
