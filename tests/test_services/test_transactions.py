"""
Tests for purchase initiation against a stubbed payment provider
"""
import json
import uuid
from decimal import Decimal

import httpx
import pytest

from agenda.core.exceptions import InvalidInputError, PaymentProviderError
from agenda.services.correlation import parse_token
from agenda.services.payment_provider import SunizeClient
from agenda.services.plan_catalog import PlanTier
from agenda.services.transactions import TransactionInitiator, client_ip_from_forwarded


CUSTOMER = {
    "name": "Maria Souza",
    "email": "maria@example.com",
    "phone": "+5511999999999",
    "document": "123.456.789-09",
}


@pytest.mark.asyncio
async def test_initiate_sends_priced_payload(sunize_client, provider):
    user_id = uuid.uuid4()

    reference = await TransactionInitiator(sunize_client).initiate(
        user_id, "premium", 12, CUSTOMER, client_ip="203.0.113.7"
    )

    assert reference.transaction_id == "tx_123"
    assert reference.pix_payload == "00020126pix-copy-paste"
    assert reference.amount == Decimal("495.60")

    request = provider.requests[0]
    assert request.url == "https://sunize.test/v1/transactions"
    assert request.headers["x-api-key"] == "key"
    assert request.headers["x-api-secret"] == "secret"
    body = json.loads(request.content)
    assert body["total_amount"] == 495.6
    assert body["payment_method"] == "PIX"
    assert body["ip"] == "203.0.113.7"
    assert body["items"] == [
        {
            "id": "premium",
            "title": "Plano Premium",
            "description": "Assinatura 12 meses - Plano Premium",
            "price": 495.6,
            "quantity": 1,
            "is_physical": False,
        }
    ]
    assert body["customer"]["document"] == "12345678909"
    assert body["customer"]["document_type"] == "CPF"

    token = parse_token(body["external_id"])
    assert token.user_id == user_id
    assert token.tier is PlanTier.PREMIUM
    assert token.period_months == 12
    assert reference.external_id == body["external_id"]


@pytest.mark.asyncio
async def test_monthly_purchase_description(sunize_client, provider):
    await TransactionInitiator(sunize_client).initiate(uuid.uuid4(), PlanTier.PRO, 1, CUSTOMER)

    body = json.loads(provider.requests[0].content)
    assert body["items"][0]["description"] == "Assinatura mensal - Plano Pro"
    assert body["total_amount"] == 29.0
    assert body["ip"] == "127.0.0.1"


@pytest.mark.asyncio
async def test_provider_echoed_amount_wins(sunize_client, provider):
    provider.body["total_value"] = 147.9

    reference = await TransactionInitiator(sunize_client).initiate(
        uuid.uuid4(), "pro", 6, CUSTOMER
    )

    assert reference.amount == Decimal("147.9")


@pytest.mark.asyncio
async def test_provider_rejection_raises(sunize_client, provider):
    provider.status_code = 422

    with pytest.raises(PaymentProviderError) as excinfo:
        await TransactionInitiator(sunize_client).initiate(uuid.uuid4(), "pro", 1, CUSTOMER)

    assert excinfo.value.provider_status == 422
    assert "invalid customer document" in excinfo.value.raw_response


@pytest.mark.asyncio
async def test_unreachable_provider_raises():
    def _boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = SunizeClient(
        base_url="https://sunize.test/v1",
        api_key="key",
        api_secret="secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(_boom)),
    )

    with pytest.raises(PaymentProviderError):
        await TransactionInitiator(client).initiate(uuid.uuid4(), "pro", 1, CUSTOMER)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "tier,period",
    [("free", 1), ("enterprise", 1), ("pro", 3), ("premium", 0)],
)
async def test_invalid_purchase_never_reaches_provider(sunize_client, provider, tier, period):
    with pytest.raises(InvalidInputError):
        await TransactionInitiator(sunize_client).initiate(uuid.uuid4(), tier, period, CUSTOMER)

    assert provider.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "override",
    [
        {"email": "not-an-email"},
        {"name": "   "},
        {"document": "1234"},
        {"document": "12345678909", "document_type": "CNPJ"},
    ],
)
async def test_invalid_customer_is_rejected(sunize_client, provider, override):
    customer = {**CUSTOMER, **override}

    with pytest.raises(InvalidInputError):
        await TransactionInitiator(sunize_client).initiate(uuid.uuid4(), "pro", 1, customer)

    assert provider.requests == []


def test_client_ip_takes_first_forwarded_hop():
    assert client_ip_from_forwarded("198.51.100.1, 10.0.0.1") == "198.51.100.1"
    assert client_ip_from_forwarded(None) == "127.0.0.1"
