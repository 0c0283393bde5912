"""
Pytest configuration for the application
"""
import os
from datetime import datetime, timezone
from typing import AsyncGenerator, Callable, Dict, List
from uuid import UUID

import httpx
import jwt
import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from agenda.core.config import settings
from agenda.db import models  # noqa: F401
from agenda.db.base import Base
from agenda.db.session import get_db, get_session_factory
from agenda.main import create_application
from agenda.services import limits as limits_service
from agenda.services.payment_provider import SunizeClient, get_payment_client


# Set test environment and override runtime settings to avoid external deps
os.environ["ENV"] = "test"
settings.ENV = "test"
settings.JWT_SECRET = "test-secret-key-for-hs256-signing!"
API_PREFIX = f"{settings.API_PREFIX}/v1"


class FakePipeline:
    """Queues commands and runs them back to back on execute, like MULTI/EXEC."""

    def __init__(self, redis: "FakeRedis") -> None:
        self.redis = redis
        self.commands: List = []

    def __getattr__(self, name: str):
        command = getattr(self.redis, name)

        def _queue(*args, **kwargs):
            self.commands.append((command, args, kwargs))
            return self

        return _queue

    async def execute(self) -> List:
        results = [await command(*args, **kwargs) for command, args, kwargs in self.commands]
        self.commands = []
        return results

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.commands = []


class FakeRedis:
    """Minimal async Redis stub for rate limiting and idempotency tests."""

    def __init__(self) -> None:
        self.store: Dict[str, str] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.ttls: Dict[str, int] = {}

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        members = self.zsets.get(key, {})
        doomed = [m for m, score in members.items() if min_score <= score <= max_score]
        for member in doomed:
            del members[member]
        return len(doomed)

    async def zrem(self, key: str, *members: str) -> int:
        zset = self.zsets.get(key, {})
        return sum(1 for member in members if zset.pop(member, None) is not None)

    async def zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        self.zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def expire(self, key: str, seconds: int) -> None:
        self.ttls[key] = seconds

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool:
        if nx and key in self.store:
            return False
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def aclose(self) -> None:
        return None


class ProviderStub:
    """Records outbound provider calls and replies with a canned response."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.body: Dict = {
            "id": "tx_123",
            "status": "PENDING",
            "pix": {"payload": "00020126pix-copy-paste"},
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code >= 400:
            return httpx.Response(self.status_code, text="invalid customer document")
        return httpx.Response(self.status_code, json=self.body)


def build_auth_header(user_id: UUID) -> Dict[str, str]:
    token = jwt.encode({"sub": str(user_id)}, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 5, 17, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(now) -> Callable[[], datetime]:
    return lambda: now


@pytest.fixture
def auth_header() -> Callable[[UUID], Dict[str, str]]:
    return build_auth_header


@pytest_asyncio.fixture
async def test_db_engine(tmp_path):
    """
    Create a throwaway SQLite database for a single test.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test_app.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a new database session for a test.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    """Patch the limits module to use an in-memory Redis stub."""

    fake = FakeRedis()
    monkeypatch.setattr(limits_service, "_redis_client", fake, raising=False)
    yield fake
    monkeypatch.setattr(limits_service, "_redis_client", None, raising=False)


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def sunize_client(provider) -> SunizeClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
    return SunizeClient(
        base_url="https://sunize.test/v1",
        api_key="key",
        api_secret="secret",
        http_client=http_client,
    )


@pytest_asyncio.fixture
async def test_app(session_factory, fake_redis, sunize_client) -> AsyncGenerator[FastAPI, None]:
    """
    Create a FastAPI test application wired to the test database and stubs.
    """
    app = create_application()

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_payment_client] = lambda: sunize_client
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Create an async HTTP client for testing.
    """
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as client:
        yield client
