"""
API tests for the payment provider webhook
"""
import uuid

import pytest

from agenda.core.config import settings
from agenda.db.base import Base
from agenda.services.correlation import build_token
from agenda.services.plan_catalog import PlanTier


API = f"{settings.API_PREFIX}/v1"


def _payload(user_id, status="AUTHORIZED", amount=495.6):
    return {
        "id": "tx_987",
        "external_id": build_token(user_id, PlanTier.PREMIUM, 12),
        "total_amount": amount,
        "status": status,
        "payment_method": "PIX",
    }


@pytest.mark.asyncio
async def test_webhook_activates_subscription(client, auth_header):
    user_id = uuid.uuid4()

    response = await client.post(f"{API}/webhooks/sunize", json=_payload(user_id))

    assert response.status_code == 200
    assert response.json() == {"received": True}

    subscription = await client.get(f"{API}/billing/subscription", headers=auth_header(user_id))
    data = subscription.json()
    assert data["subscribed"] is True
    assert data["plan_type"] == "premium"
    assert data["status"] == "active"
    assert data["period_months"] == 12

    limits = await client.get(f"{API}/limits/current", headers=auth_header(user_id))
    assert limits.json()["plan_type"] == "premium"
    assert limits.json()["remaining"]["appointments"] == "unlimited"


@pytest.mark.asyncio
async def test_duplicate_and_pending_webhooks_are_acknowledged(client):
    payload = _payload(uuid.uuid4())

    first = await client.post(f"{API}/webhooks/sunize", json=payload)
    again = await client.post(f"{API}/webhooks/sunize", json=payload)
    pending = await client.post(f"{API}/webhooks/sunize", json=_payload(uuid.uuid4(), status="PENDING"))

    assert [first.status_code, again.status_code, pending.status_code] == [200, 200, 200]


@pytest.mark.asyncio
async def test_amount_mismatch_is_still_acknowledged(client, auth_header):
    user_id = uuid.uuid4()

    response = await client.post(f"{API}/webhooks/sunize", json=_payload(user_id, amount=1.0))

    assert response.status_code == 200
    subscription = await client.get(f"{API}/billing/subscription", headers=auth_header(user_id))
    assert subscription.json()["plan_type"] == "premium"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[]",
        b'{"id": "tx_1", "status": "AUTHORIZED", "total_amount": 29}',
        b'{"id": "tx_1", "external_id": "garbage", "status": "AUTHORIZED", "total_amount": 29}',
    ],
)
async def test_malformed_webhook_is_bad_request(client, body):
    response = await client.post(
        f"{API}/webhooks/sunize",
        content=body,
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert "message" in response.json()


@pytest.mark.asyncio
async def test_store_outage_asks_for_redelivery(client, test_db_engine):
    async with test_db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.tables["subscriptions"].drop)

    response = await client.post(f"{API}/webhooks/sunize", json=_payload(uuid.uuid4()))

    assert response.status_code == 503
    assert response.json() == {"message": "Subscription store unavailable"}
