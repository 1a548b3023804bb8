# inbox_metrics/db/helpers.py
"""
Read-only query helpers on top of the pool.

Every psycopg failure is re-raised as DatabaseError tagged with the
operation that failed; slow queries are logged with their duration.
"""

import time
from typing import Any, Literal

import psycopg

from inbox_metrics.db.pool import get_db_connection
from inbox_metrics.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SLOW_QUERY_MS = 500


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def _run_query(query: str, params: tuple, mode: Literal["one", "all"]) -> Any:
    started = time.perf_counter()
    try:
        async with await get_db_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                result = await cur.fetchone() if mode == "one" else await cur.fetchall()

    except psycopg.Error as e:
        logger.error(f"Database fetch_{mode} error", query=query.strip()[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=f"fetch_{mode}") from e

    elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
    if elapsed_ms >= SLOW_QUERY_MS:
        logger.warning("Slow directory query", query=query.strip()[:100], duration_ms=elapsed_ms)
    return result


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    """
    Execute query and return the first row as a dict, or None.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
    """
    row = await _run_query(query, params, "one")
    return row or None


async def fetch_all(query: str, params: tuple = ()) -> list[dict[str, Any]]:
    """
    Execute query and return all rows as dicts.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
    """
    return list(await _run_query(query, params, "all"))
