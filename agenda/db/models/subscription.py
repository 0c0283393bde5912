"""Subscription model: one record per user."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from agenda.db.base import Base


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"


class Subscription(Base):
    """
    Durable subscription state for a user.

    Only the webhook reconciler writes to this table. ``last_event_timestamp``
    (epoch milliseconds) orders provider events so a late, older event can
    never overwrite a newer one. Events sharing a timestamp are ordered by
    ``last_event_rank``, the lifecycle rank of the provider status.
    """

    __tablename__ = "subscriptions"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    plan_type: Mapped[str] = mapped_column(String, nullable=False, default="free")
    status: Mapped[str] = mapped_column(String, nullable=False)
    period_months: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_period_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    current_period_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    last_event_timestamp: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    last_event_rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_event_id: Mapped[str] = mapped_column(String, nullable=False, default="")
    provider_transaction_id: Mapped[Optional[str]] = mapped_column(
        String, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Subscription user={self.user_id} plan={self.plan_type} status={self.status}>"
