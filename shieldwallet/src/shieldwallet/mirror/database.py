"""
Engine and session setup for the relational mirror.
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shieldwallet.mirror.models import Base


def create_mirror_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for ``database_url``.

    ``postgresql+asyncpg://`` in production, ``sqlite+aiosqlite://`` for
    single-host setups and tests. SQLite connections get foreign keys turned
    on so deleting a transaction cascades to its notes.
    """
    engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    logger.debug(f"Mirror engine created ({engine.dialect.name})")
    return engine


async def init_mirror_schema(engine: AsyncEngine) -> None:
    """Create mirror tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)
