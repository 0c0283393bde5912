"""Shared FastAPI dependencies."""
from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agenda.db.session import get_db, get_session_factory
from agenda.services.entitlements import EntitlementResolver
from agenda.services.payment_provider import SunizeClient, get_payment_client
from agenda.services.transactions import TransactionInitiator


async def get_db_session(
    session: AsyncSession = Depends(get_db),
) -> AsyncGenerator[AsyncSession, None]:
    yield session


def get_entitlement_resolver(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> EntitlementResolver:
    return EntitlementResolver(session_factory)


def get_transaction_initiator(
    provider: SunizeClient = Depends(get_payment_client),
) -> TransactionInitiator:
    return TransactionInitiator(provider)
