"""Endpoints for quoting and purchasing subscriptions."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.api.deps import get_db_session, get_transaction_initiator
from agenda.auth.jwt import require_auth
from agenda.repositories.subscription_repo import SubscriptionRepo
from agenda.schemas.billing import (
    QuoteRead,
    SubscriptionRead,
    TransactionCreate,
    TransactionRead,
)
from agenda.services.limits import check_rate_limit, ensure_idempotent
from agenda.services.plan_catalog import quote
from agenda.services.transactions import TransactionInitiator, client_ip_from_forwarded


router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/quote", response_model=QuoteRead)
async def quote_plan(plan_type: str, period_months: int = 1):
    return quote(plan_type, period_months)


@router.post("/transactions", response_model=TransactionRead)
async def create_transaction(
    body: TransactionCreate,
    request: Request,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    auth=Depends(require_auth),
    initiator: TransactionInitiator = Depends(get_transaction_initiator),
):
    user_id = auth["user_id"]
    await check_rate_limit(f"checkout:{user_id}")
    await ensure_idempotent(str(user_id), idempotency_key)

    forwarded = request.headers.get("x-forwarded-for")
    client_ip = client_ip_from_forwarded(forwarded) if forwarded else (
        request.client.host if request.client else None
    )
    reference = await initiator.initiate(
        user_id,
        body.plan_type,
        body.period_months,
        body.customer,
        client_ip=client_ip,
    )
    return reference


@router.get("/subscription")
async def current_subscription(
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    subscription = await SubscriptionRepo(db).get(auth["user_id"])
    if subscription is None:
        return {"subscribed": False}
    return SubscriptionRead.model_validate(subscription)
