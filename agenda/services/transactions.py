"""Subscription purchase initiation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Union
from uuid import UUID

from pydantic import ValidationError

from agenda.core.config import settings
from agenda.core.exceptions import InvalidInputError
from agenda.schemas.billing import CustomerIn
from agenda.services.correlation import build_token
from agenda.services.payment_provider import SunizeClient
from agenda.services.plan_catalog import (
    PURCHASABLE_TIERS,
    PlanTier,
    parse_tier,
    price_for,
    validate_period,
)


logger = logging.getLogger(__name__)

DEFAULT_CLIENT_IP = "127.0.0.1"


@dataclass(frozen=True)
class TransactionReference:
    """What the buyer needs to pay, plus the token that tracks the purchase."""

    transaction_id: str
    pix_payload: Optional[str]
    status: Optional[str]
    amount: Decimal
    external_id: str


def client_ip_from_forwarded(forwarded_for: Optional[str]) -> str:
    """First hop of an ``X-Forwarded-For`` header."""

    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return DEFAULT_CLIENT_IP


class TransactionInitiator:
    """Price a plan purchase and open a transaction with the provider."""

    def __init__(self, provider: SunizeClient) -> None:
        self.provider = provider

    async def initiate(
        self,
        user_id: UUID,
        tier: Union[PlanTier, str],
        period_months: int,
        customer: Union[CustomerIn, Mapping[str, Any]],
        client_ip: Optional[str] = None,
    ) -> TransactionReference:
        plan = parse_tier(tier)
        if plan not in PURCHASABLE_TIERS:
            raise InvalidInputError(f"Plan {plan.value} cannot be purchased")
        period = validate_period(period_months)
        buyer = self._validate_customer(customer)

        total = price_for(plan, period)
        external_id = build_token(user_id, plan, period)
        payload = self._build_payload(plan, period, total, external_id, buyer, client_ip)

        logger.info(
            f"Initiating {plan.value}/{period}m purchase for user {user_id} "
            f"total={total} external_id={external_id}"
        )
        transaction = await self.provider.create_transaction(payload)

        transaction_id = transaction.get("id")
        if not transaction_id:
            logger.warning(f"Sunize response without transaction id for {external_id}")
        pix = transaction.get("pix") or {}
        echoed_amount = transaction.get("total_value")
        return TransactionReference(
            transaction_id=str(transaction_id or ""),
            pix_payload=pix.get("payload"),
            status=transaction.get("status"),
            amount=Decimal(str(echoed_amount)) if echoed_amount is not None else total,
            external_id=external_id,
        )

    @staticmethod
    def _validate_customer(customer: Union[CustomerIn, Mapping[str, Any]]) -> CustomerIn:
        if isinstance(customer, CustomerIn):
            return customer
        try:
            return CustomerIn.model_validate(customer)
        except ValidationError as exc:
            fields = ", ".join(
                ".".join(str(part) for part in err["loc"]) or "customer"
                for err in exc.errors()
            )
            raise InvalidInputError(f"Invalid customer data: {fields}") from exc

    @staticmethod
    def _build_payload(
        plan: PlanTier,
        period: int,
        total: Decimal,
        external_id: str,
        customer: CustomerIn,
        client_ip: Optional[str],
    ) -> Dict[str, Any]:
        months_label = "mensal" if period == 1 else f"{period} meses"
        return {
            "external_id": external_id,
            "total_amount": float(total),
            "payment_method": settings.payments.payment_method,
            "items": [
                {
                    "id": plan.value,
                    "title": f"Plano {plan.display_name}",
                    "description": f"Assinatura {months_label} - Plano {plan.display_name}",
                    "price": float(total),
                    "quantity": 1,
                    "is_physical": False,
                }
            ],
            "ip": client_ip or DEFAULT_CLIENT_IP,
            "customer": {
                "name": customer.name,
                "email": customer.email,
                "phone": customer.phone,
                "document_type": customer.document_type,
                "document": customer.document,
            },
        }
