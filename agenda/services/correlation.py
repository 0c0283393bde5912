"""
Correlation tokens linking provider webhooks back to a purchase.

The token is sent to the provider as ``external_id`` and echoed back in
every webhook::

    sub_{user_id}_{timestamp_ms}_{tier}_{period_months}

Tokens created before the tier/period suffix existed are three-part
(``sub_{user_id}_{timestamp_ms}``) and still parse, with ``tier`` and
``period_months`` left as ``None``.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from agenda.core.exceptions import InvalidInputError
from agenda.services.plan_catalog import PlanTier, parse_tier, validate_period


TOKEN_PREFIX = "sub"

_clock_lock = threading.Lock()
_last_timestamp_ms = 0


def next_timestamp_ms() -> int:
    """Wall-clock milliseconds, strictly increasing within the process."""

    global _last_timestamp_ms
    with _clock_lock:
        now = time.time_ns() // 1_000_000
        if now <= _last_timestamp_ms:
            now = _last_timestamp_ms + 1
        _last_timestamp_ms = now
        return now


@dataclass(frozen=True)
class CorrelationToken:
    user_id: UUID
    timestamp_ms: int
    tier: Optional[PlanTier] = None
    period_months: Optional[int] = None

    @property
    def is_legacy(self) -> bool:
        return self.tier is None

    def __str__(self) -> str:
        head = f"{TOKEN_PREFIX}_{self.user_id}_{self.timestamp_ms}"
        if self.tier is None:
            return head
        return f"{head}_{self.tier.value}_{self.period_months}"


def build_token(
    user_id: UUID,
    tier: PlanTier,
    period_months: int,
    timestamp_ms: Optional[int] = None,
) -> str:
    token = CorrelationToken(
        user_id=user_id,
        timestamp_ms=timestamp_ms if timestamp_ms is not None else next_timestamp_ms(),
        tier=tier,
        period_months=period_months,
    )
    return str(token)


def parse_token(raw: str) -> CorrelationToken:
    """Parse an ``external_id``; raises :class:`InvalidInputError` if malformed."""

    if not isinstance(raw, str) or not raw:
        raise InvalidInputError("Missing external_id")

    parts = raw.split("_")
    if parts[0] != TOKEN_PREFIX or len(parts) not in (3, 5):
        raise InvalidInputError(f"Invalid external_id: {raw}")

    try:
        user_id = UUID(parts[1])
    except ValueError as exc:
        raise InvalidInputError(f"Invalid user in external_id: {raw}") from exc

    if not parts[2].isdigit():
        raise InvalidInputError(f"Invalid timestamp in external_id: {raw}")
    timestamp_ms = int(parts[2])

    if len(parts) == 3:
        return CorrelationToken(user_id=user_id, timestamp_ms=timestamp_ms)

    tier = parse_tier(parts[3])
    if not parts[4].isdigit():
        raise InvalidInputError(f"Invalid period in external_id: {raw}")
    period_months = validate_period(int(parts[4]))
    return CorrelationToken(
        user_id=user_id,
        timestamp_ms=timestamp_ms,
        tier=tier,
        period_months=period_months,
    )
