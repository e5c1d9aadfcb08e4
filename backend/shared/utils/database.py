"""
Async Postgres access for the repositories.

One engine per process. Repositories open short sessions: read_session() for
lookups and write_session() for upserts and status changes, which commits on
exit and rolls back on any exception.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class DatabaseManager:
    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None

    def _engine_options(self) -> dict[str, Any]:
        s = self._settings
        return {
            "pool_size": s.db_pool_min,
            "max_overflow": max(s.db_pool_max - s.db_pool_min, 0),
            "pool_pre_ping": True,
            "pool_recycle": 300,
            "echo": s.debug,
            "connect_args": {
                "timeout": s.db_command_timeout,
                "command_timeout": s.db_command_timeout,
                # shows up in pg_stat_activity per service
                "server_settings": {"application_name": f"match-reconciler-{s.service_role.value}"},
            },
        }

    async def connect(self) -> None:
        """Create the engine and verify the server answers."""
        self._engine = create_async_engine(self._settings.database_url_str, **self._engine_options())
        self._sessions = async_sessionmaker(bind=self._engine, class_=AsyncSession, expire_on_commit=False)
        await self.ping()
        logger.info(
            "database_connected",
            url=self._settings.database_url_safe_log,
            pool_size=self._settings.db_pool_min,
        )

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def disconnect(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessions = None
            logger.info("database_disconnected")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("DatabaseManager not connected.")
        return self._engine

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            raise RuntimeError("DatabaseManager not connected.")
        return self._sessions

    @asynccontextmanager
    async def read_session(self) -> AsyncIterator[AsyncSession]:
        async with self._factory()() as session:
            yield session

    @asynccontextmanager
    async def write_session(self) -> AsyncIterator[AsyncSession]:
        async with self._factory()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
