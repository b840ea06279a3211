"""
Async SQLAlchemy engine and session factory for the ledger store.

Settlement state changes rely on SELECT ... FOR UPDATE, so the production
target is PostgreSQL (asyncpg). SQLite URLs are accepted for local runs.
"""
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from domain.config import DatabaseConfig, get_database_config
# Every model must be registered on Base before create_all
from infrastructure.db.models import (  # noqa: F401
    Base,
    InstallmentModel,
    OutboundNotificationModel,
    PlanModel,
    SettlementModel,
)


def build_engine(config: DatabaseConfig) -> AsyncEngine:
    kwargs = {"echo": config.echo, "pool_pre_ping": True}
    if not config.url.startswith("sqlite"):
        kwargs["pool_size"] = config.pool_size
    return create_async_engine(config.url, **kwargs)


# No connection is opened until the first session is used
engine = build_engine(get_database_config())

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
