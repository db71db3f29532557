"""
FraudGuard — shared test fixtures
Run:  pytest tests/ -v --tb=short
"""

import os

# Configure before the app (and its settings singleton) is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("KAFKA_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("STRUCTURED_LOGGING_ENABLED", "false")
os.environ.setdefault("AUTH_ENABLED", "true")

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.services.db import Base, get_db
from app.services.security import create_access_token
from app.models.models import FraudRule, Transaction

# ===========================================================================
# Fixtures: in-memory SQLite (async via aiosqlite), one database per test
# ===========================================================================
TEST_DB_URL = "sqlite+aiosqlite://"                    # :memory:


# Patch Kafka so tests never touch a real broker
@pytest.fixture(autouse=True)
def _patch_kafka(monkeypatch):
    monkeypatch.setattr("app.services.kafka_producer.KafkaProducer.start", AsyncMock())
    monkeypatch.setattr("app.services.kafka_producer.KafkaProducer.stop", AsyncMock())
    monkeypatch.setattr("app.services.kafka_producer.KafkaProducer.send", AsyncMock())


@pytest_asyncio.fixture()
async def sqlite_engine():
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(sqlite_engine):
    return sessionmaker(bind=sqlite_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def kafka_producer():
    producer = MagicMock()
    producer.send = AsyncMock()
    producer.is_ready.return_value = True
    return producer


@pytest_asyncio.fixture()
async def client(session_factory, kafka_producer):
    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.state.kafka_producer = kafka_producer
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers=auth_headers("admin", sub="admin-1"),
    ) as c:
        yield c
    app.dependency_overrides.clear()


# ===========================================================================
# Helpers
# ===========================================================================
def auth_headers(*scopes: str, sub: str = "tester") -> dict:
    token = create_access_token({"sub": sub, "scopes": list(scopes)})
    return {"Authorization": f"Bearer {token}"}


def make_transaction(**kwargs) -> Transaction:
    defaults = dict(
        id=str(uuid.uuid4()),
        account_id="ACC-001",
        amount=Decimal("1000.00"),
        channel="BKASH",
        recipient_account="01700000001",
        occurred_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        created_at=datetime.now(timezone.utc),
    )
    defaults.update(kwargs)
    return Transaction(**defaults)


def make_amount_rule(code="HIGH_AMOUNT", threshold="10000", points=30, is_active=True) -> FraudRule:
    return FraudRule(
        id=str(uuid.uuid4()),
        code=code,
        description=f"Amount at or above {threshold}",
        kind="AMOUNT_THRESHOLD",
        amount_threshold=Decimal(threshold),
        risk_points=points,
        is_active=is_active,
    )


def make_frequency_rule(code="VELOCITY", count=5, window=10, points=40, is_active=True) -> FraudRule:
    return FraudRule(
        id=str(uuid.uuid4()),
        code=code,
        description=f"{count} or more transactions in {window} minutes",
        kind="FREQUENCY_WINDOW",
        freq_count_limit=count,
        freq_window_min=window,
        risk_points=points,
        is_active=is_active,
    )
