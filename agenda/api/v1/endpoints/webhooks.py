"""Inbound payment provider webhooks."""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.api.deps import get_db_session
from agenda.core.exceptions import InvalidInputError
from agenda.services.reconciler import WebhookReconciler


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/sunize")
async def sunize_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    """
    Reconcile a Sunize payment status notification.

    Answers 200 once the event is applied or durably dropped, 400 for a
    malformed body (never worth redelivering) and 503 when the store is
    down so the provider retries.
    """

    raw = await request.body()
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise InvalidInputError("Webhook body is not valid JSON") from exc

    result = await WebhookReconciler(db).handle(payload)
    logger.debug(f"Webhook outcome {result.outcome.value} for user {result.user_id}")
    return {"received": True}
