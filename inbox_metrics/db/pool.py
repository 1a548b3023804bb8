# inbox_metrics/db/pool.py
"""
Async PostgreSQL pool for the tenant directory (psycopg_pool).

The engine only issues short SELECTs, one at a time, so the pool stays
small. Connections come back with dict rows, in autocommit mode, tagged
with an application name so they are easy to spot in pg_stat_activity.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from inbox_metrics.config import settings
from inbox_metrics.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLOSE_TIMEOUT_SECONDS = 30.0


class DatabasePoolManager:
    """
    Lifecycle owner for the directory connection pool.

    ``initialize`` on startup, ``close`` on shutdown; a closed manager
    cannot be reopened.
    """

    def __init__(self, conninfo: str | None = None):
        self.conninfo = conninfo
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Open the pool and verify one round-trip."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        conninfo = self.conninfo or settings.DATABASE_URL
        if not conninfo:
            raise RuntimeError("DATABASE_URL is not configured")

        pool_config = settings.get_db_pool_config()
        logger.info("Opening directory database pool", **pool_config)

        try:
            self.pool = AsyncConnectionPool(
                conninfo=conninfo,
                open=False,
                check=AsyncConnectionPool.check_connection,
                configure=self._configure_connection,
                **pool_config,
            )
            await self.pool.open(wait=True)
            self._initialized = True
            await self._ping()

        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            await self._discard_pool()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info("Directory database pool ready", min_size=pool_config["min_size"], max_size=pool_config["max_size"])

    async def _discard_pool(self) -> None:
        self._initialized = False
        if self.pool is None:
            return
        try:
            await self.pool.close()
        except Exception as close_error:
            logger.warning("Error closing half-open pool", error=str(close_error))
        self.pool = None

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        """Per-connection setup: dict rows, autocommit, session settings."""
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        app_name = f"inbox-metrics-{settings.environment}"
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
        await conn.execute("SET statement_timeout = '60s'")

    async def _ping(self) -> None:
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database ping returned an unexpected result")

    async def close(self) -> None:
        """Close the pool; waits for checked-out connections up to a timeout."""
        if not self._initialized or self._closed:
            return

        logger.info("Closing directory database pool")
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out", timeout_seconds=CLOSE_TIMEOUT_SECONDS)
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
        finally:
            self._initialized = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a connection from the pool.

        Raises:
            RuntimeError: Pool not initialized or already closed
        """
        if self._closed:
            raise RuntimeError("Database pool is closed")
        if not self._initialized:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    async def health_check(self) -> dict[str, Any]:
        """Round-trip latency and pool counters."""
        if not self._initialized or self._closed:
            reason = "Pool is closed" if self._closed else "Pool not initialized"
            return {"healthy": False, "service": "database_pool", "error": reason}

        started = time.time()
        try:
            await self._ping()
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": round((time.time() - started) * 1000, 2),
            "pool_stats": {
                "pool_size": stats.get("pool_size", 0),
                "pool_available": stats.get("pool_available", 0),
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }


# Global pool instance
db_pool = DatabasePoolManager()


async def get_db_connection():
    """Get database connection from pool."""
    return db_pool.connection()


async def db_health_check() -> dict[str, Any]:
    """Get database pool health status."""
    return await db_pool.health_check()
