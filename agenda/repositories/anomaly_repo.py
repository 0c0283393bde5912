"""Repository for billing anomalies awaiting manual review."""
from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.exceptions import PersistenceUnavailableError
from agenda.db.models.anomaly import BillingAnomaly


logger = logging.getLogger(__name__)


class AnomalyRepo:
    """Data-access helpers for :class:`BillingAnomaly`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        user_id: UUID,
        external_id: str,
        kind: str,
        expected_amount: Decimal | None = None,
        paid_amount: Decimal | None = None,
        details: str | None = None,
    ) -> BillingAnomaly:
        anomaly = BillingAnomaly(
            user_id=user_id,
            external_id=external_id,
            kind=kind,
            expected_amount=expected_amount,
            paid_amount=paid_amount,
            details=details,
        )
        try:
            self.session.add(anomaly)
            await self.session.flush()
        except SQLAlchemyError as exc:
            logger.error(f"Could not record {kind} anomaly for {external_id}: {exc}")
            raise PersistenceUnavailableError("Anomaly store unavailable") from exc
        return anomaly

    async def list_for_user(self, user_id: UUID) -> list[BillingAnomaly]:
        result = await self.session.execute(
            select(BillingAnomaly)
            .where(BillingAnomaly.user_id == user_id)
            .order_by(BillingAnomaly.created_at)
        )
        return list(result.scalars().all())
