"""Application database adapter using asyncpg."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any

import asyncpg
import structlog

from loyalty.core.exceptions import StoreUnavailableError

logger = structlog.get_logger()


class AppDatabase:
    """Application database for users, roles and auth tokens.

    Queries issued inside `transaction()` run on the transaction's
    connection; everything else takes a connection from the pool.
    """

    def __init__(self, dsn: str):
        """Initialize the app database adapter."""
        self.dsn = dsn
        self.pool: asyncpg.Pool | None = None
        self._tx_conn: ContextVar[asyncpg.Connection | None] = ContextVar(
            f"app_db_tx_{id(self)}", default=None
        )

    async def connect(self) -> None:
        """Create connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=60,
            )
        except (OSError, asyncpg.PostgresError) as e:
            raise StoreUnavailableError(f"Cannot connect to database: {e}") from e
        logger.info("app_database_connected", dsn=self.dsn.split("@")[-1])

    async def close(self) -> None:
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("app_database_disconnected")

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield the transaction's connection, or acquire one from the pool."""
        current = self._tx_conn.get()
        if current is not None:
            yield current
            return
        if self.pool is None:
            raise StoreUnavailableError("Database pool not initialized")
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed queries in one transaction. Nested calls join it."""
        if self._tx_conn.get() is not None:
            yield
            return
        async with self.acquire() as conn:
            async with conn.transaction():
                marker = self._tx_conn.set(conn)
                try:
                    yield
                finally:
                    self._tx_conn.reset(marker)

    async def fetch_one(self, query: str, *args: Any) -> dict[str, Any] | None:
        """Fetch a single row."""
        async with self.acquire() as conn:
            row = await conn.fetchrow(query, *args)
            if row:
                return dict(row)
            return None

    async def fetch_all(self, query: str, *args: Any) -> list[dict[str, Any]]:
        """Fetch all rows."""
        async with self.acquire() as conn:
            rows = await conn.fetch(query, *args)
            return [dict(row) for row in rows]

    async def execute(self, query: str, *args: Any) -> str:
        """Execute a query and return status."""
        async with self.acquire() as conn:
            result: str = await conn.execute(query, *args)
            return result
