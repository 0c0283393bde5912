"""
Webhook reconciliation for subscription state.

Provider webhooks are untrusted, may be duplicated and may arrive out of
order. :class:`WebhookReconciler` turns each one into at most one
conditional write of the user's subscription record:

======================  ===================
Provider status         Subscription status
======================  ===================
AUTHORIZED              active
FAILED                  cancelled
CHARGEBACK              cancelled
IN_DISPUTE              past_due
PENDING                 (no write)
======================  ===================

Events are ordered by the provider's ``updated_at`` when sent, otherwise by
the initiation time in the correlation token. Events of one transaction
then share a timestamp and are ordered by :data:`STATUS_RANK`, so a retried
AUTHORIZED can never undo a later CHARGEBACK.

The purchased tier and period come from the correlation token created at
initiation. The paid amount is only checked against the quoted total;
a mismatch is recorded as an anomaly and the claimed tier still applies.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.config import settings
from agenda.core.exceptions import (
    AmountMismatchError,
    InvalidInputError,
    StaleEventError,
)
from agenda.db.models.subscription import SubscriptionStatus
from agenda.repositories.anomaly_repo import AnomalyRepo
from agenda.repositories.subscription_repo import SubscriptionRepo, SubscriptionWrite
from agenda.schemas.billing import ProviderStatus, WebhookEvent
from agenda.services.correlation import CorrelationToken, parse_token
from agenda.services.plan_catalog import (
    PURCHASABLE_TIERS,
    PlanTier,
    price_for,
    tier_for_amount,
)


logger = logging.getLogger(__name__)

# Fixed-length billing months; calendar accuracy is intentionally not modelled.
DAYS_PER_PERIOD_MONTH = 30

TRANSITIONS: Dict[ProviderStatus, Optional[SubscriptionStatus]] = {
    ProviderStatus.AUTHORIZED: SubscriptionStatus.ACTIVE,
    ProviderStatus.FAILED: SubscriptionStatus.CANCELLED,
    ProviderStatus.CHARGEBACK: SubscriptionStatus.CANCELLED,
    ProviderStatus.IN_DISPUTE: SubscriptionStatus.PAST_DUE,
    ProviderStatus.PENDING: None,
}

# Lifecycle order of one transaction. Breaks ties between events that share
# an ordering timestamp; an event applies only over a strictly lower rank.
STATUS_RANK: Dict[ProviderStatus, int] = {
    ProviderStatus.PENDING: 0,
    ProviderStatus.AUTHORIZED: 1,
    ProviderStatus.IN_DISPUTE: 2,
    ProviderStatus.CHARGEBACK: 3,
    ProviderStatus.FAILED: 3,
}


class ReconcileOutcome(str, enum.Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    STALE = "stale"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    user_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    plan_type: Optional[PlanTier] = None
    amount_mismatch: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_event(payload: Any) -> WebhookEvent:
    """Validate a raw webhook body, raising :class:`InvalidInputError`."""

    if not isinstance(payload, Mapping):
        raise InvalidInputError("Webhook body must be a JSON object")
    try:
        return WebhookEvent.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise InvalidInputError(f"Invalid webhook payload: {fields}") from exc


def event_timestamp_ms(event: WebhookEvent, token: CorrelationToken) -> int:
    """Ordering key for an event: provider time if sent, else initiation time."""

    if event.updated_at is not None:
        moment = event.updated_at
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return int(moment.timestamp() * 1000)
    return token.timestamp_ms


class WebhookReconciler:
    """Apply provider payment events to the subscription store."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = _utcnow,
        amount_tolerance: Optional[Decimal] = None,
    ) -> None:
        self.session = session
        self.clock = clock
        self.amount_tolerance = (
            amount_tolerance
            if amount_tolerance is not None
            else settings.payments.amount_tolerance
        )
        self.subscriptions = SubscriptionRepo(session)
        self.anomalies = AnomalyRepo(session)

    async def handle(self, payload: Any) -> ReconcileResult:
        """Parse and reconcile a raw webhook body."""

        return await self.reconcile(parse_event(payload))

    async def reconcile(self, event: WebhookEvent) -> ReconcileResult:
        token = parse_token(event.external_id)
        user_id = str(token.user_id)
        logger.info(
            f"Webhook {event.id} status={event.status.value} user={user_id} "
            f"amount={event.total_amount}"
        )

        target = TRANSITIONS[event.status]
        if target is None:
            logger.info(f"Webhook {event.id} pending for user {user_id}; no change")
            return ReconcileResult(ReconcileOutcome.IGNORED, user_id=user_id)

        tier, period = self._purchase(token, event)
        mismatch = False
        try:
            self._check_amount(tier, period, event.total_amount)
        except AmountMismatchError as exc:
            mismatch = True
            logger.warning(
                f"Amount mismatch on {event.external_id}: {exc.message}; "
                f"applying claimed plan {tier.value}"
            )
            # Flushed only; committed with the subscription write or not at all.
            await self.anomalies.record(
                user_id=token.user_id,
                external_id=event.external_id,
                kind="amount_mismatch",
                expected_amount=exc.expected,
                paid_amount=exc.paid,
                details=f"event={event.id} status={event.status.value}",
            )

        now = self.clock()
        write = SubscriptionWrite(
            user_id=token.user_id,
            plan_type=tier.value,
            status=target.value,
            period_months=period,
            period_start=now,
            period_end=now + timedelta(days=period * DAYS_PER_PERIOD_MONTH),
            event_timestamp=event_timestamp_ms(event, token),
            event_rank=STATUS_RANK[event.status],
            event_id=event.id,
            transaction_id=event.id,
            updated_at=now,
        )

        try:
            await self.subscriptions.apply_event(write)
        except StaleEventError:
            return await self._dropped(write)

        logger.info(
            f"Subscription updated: user={user_id} plan={tier.value} "
            f"status={target.value} period={period}m"
        )
        return ReconcileResult(
            ReconcileOutcome.APPLIED,
            user_id=user_id,
            status=target,
            plan_type=tier,
            amount_mismatch=mismatch,
        )

    def _purchase(self, token: CorrelationToken, event: WebhookEvent) -> tuple[PlanTier, int]:
        if token.is_legacy:
            tier = tier_for_amount(event.total_amount)
            logger.warning(
                f"Legacy external_id {event.external_id}: inferred plan {tier.value} "
                f"from amount {event.total_amount}"
            )
            return tier, 1
        if token.tier not in PURCHASABLE_TIERS:
            raise InvalidInputError(f"external_id claims non-purchasable plan: {event.external_id}")
        return token.tier, token.period_months

    def _check_amount(self, tier: PlanTier, period: int, paid: Decimal) -> None:
        expected = price_for(tier, period)
        if abs(expected - paid) > self.amount_tolerance:
            raise AmountMismatchError(expected=expected, paid=paid)

    async def _dropped(self, write: SubscriptionWrite) -> ReconcileResult:
        # The write has already been refused atomically; this read only labels the log line.
        try:
            stored = await self.subscriptions.get(write.user_id)
        except SQLAlchemyError as exc:
            logger.warning(f"Could not read back subscription for {write.user_id}: {exc}")
            stored = None
        duplicate = (
            stored is not None
            and stored.last_event_timestamp == write.event_timestamp
            and stored.last_event_rank == write.event_rank
            and stored.status == write.status
        )
        outcome = ReconcileOutcome.DUPLICATE if duplicate else ReconcileOutcome.STALE
        stored_ts = stored.last_event_timestamp if stored is not None else None
        logger.info(
            f"Dropped {outcome.value} event {write.event_id} for user {write.user_id}: "
            f"event_ts={write.event_timestamp} stored_ts={stored_ts}"
        )
        return ReconcileResult(outcome, user_id=str(write.user_id))
