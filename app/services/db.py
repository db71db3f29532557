"""
FraudGuard — Database Layer
Async SQLAlchemy with asyncpg.  All ORM models import Base from here.
"""

import asyncio
from typing import Any, Awaitable, Dict, Optional, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base

from app.config import settings
from app.services.errors import StoreTimeout, StoreUnavailable
from app.services.observability import Metrics

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine & Session
# ---------------------------------------------------------------------------
def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"pool_pre_ping": True, "echo": False}
    # SQLite (tests, local tooling) runs on a static / single-connection pool
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_recycle=settings.DATABASE_POOL_RECYCLE,
        )
    return options


engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


# ---------------------------------------------------------------------------
# Dependency: injected into FastAPI route handlers
# ---------------------------------------------------------------------------
async def get_db() -> AsyncSession:
    """Yield a session; commit on success, roll back on any error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ---------------------------------------------------------------------------
# Bounded store access
# ---------------------------------------------------------------------------
async def bounded(
    awaitable: Awaitable[T],
    operation: str,
    timeout: Optional[float] = None,
) -> T:
    """
    Await a store operation under a read timeout.

    Timeouts become ``StoreTimeout`` and connection-level failures become
    ``StoreUnavailable``; both are retryable by the caller.  Nothing is
    retried here.
    """
    limit = settings.STORE_READ_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        return await asyncio.wait_for(awaitable, timeout=limit)
    except asyncio.TimeoutError as exc:
        Metrics.store_errors_total.labels(kind="timeout").inc()
        raise StoreTimeout(f"{operation} exceeded {limit:.1f}s") from exc
    except (OperationalError, InterfaceError) as exc:
        Metrics.store_errors_total.labels(kind="unavailable").inc()
        raise StoreUnavailable(f"{operation} failed: {exc.__class__.__name__}") from exc


def dialect_name(db: AsyncSession) -> str:
    return db.bind.dialect.name


# ---------------------------------------------------------------------------
# Startup helper
# ---------------------------------------------------------------------------
async def init_db():
    """Create all tables that are registered on Base.  Idempotent."""
    import app.models.models  # noqa: F401  (register tables on Base)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
