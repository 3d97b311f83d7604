"""Supabase Postgres access through an asyncpg pool.

Uses ``asyncpg`` for direct database access instead of the Supabase REST
client so writes can carry an optimistic-concurrency predicate and return
the stored ``updated_at`` in one round trip.

The pool is owned by a ``Database`` instance rather than module state; the
sync session creates it at startup and closes it at shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("releaseboard.db")


class Database:
    """Lazily-connected asyncpg pool.

    Usage::

        db = Database(settings.supabase_db_url)
        await db.connect()
        rows = await db.fetch("SELECT * FROM apps ORDER BY id")
        await db.close()
    """

    def __init__(
        self,
        dsn: str,
        min_size: int = 1,
        max_size: int = 5,
        command_timeout: float = 30,
    ) -> None:
        if not dsn:
            raise ValueError("A database URL is required for the supabase backend")
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Database":
        s = settings or get_settings()
        return cls(s.supabase_db_url)

    async def connect(self) -> asyncpg.Pool:
        """Create the pool if it does not exist yet."""
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
            )
            logger.info(
                "Database pool initialized (min=%d, max=%d)", self._min_size, self._max_size
            )
        return self._pool

    async def close(self) -> None:
        """Drain the pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Acquire a connection inside a transaction."""
        pool = await self.connect()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self.connection() as conn:
            return await conn.fetch(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.connection() as conn:
            return await conn.fetchval(query, *args)
