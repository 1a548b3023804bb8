# inbox_metrics/services/redis_client.py
"""
Shared async Redis client for the redis cache backend.

Connection settings come from ``settings.get_redis_config()``. ``ping``
reports health and never raises; the data calls let redis errors
propagate so callers can tell a missing key from an unreachable server.
"""

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from inbox_metrics.config import settings
from inbox_metrics.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class FastRedisClient:
    """Lazily connected, pooled ``redis.asyncio`` client with string values."""

    def __init__(self, url: str | None = None):
        self.url = url
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None

    @property
    def connected(self) -> bool:
        return self.client is not None

    async def initialize(self) -> None:
        if self.connected:
            return

        redis_url = self.url or settings.REDIS_URL
        if not redis_url:
            raise RuntimeError("REDIS_URL is not configured")

        redis_config = settings.get_redis_config()
        pool = ConnectionPool.from_url(redis_url, decode_responses=True, **redis_config)
        client = redis.Redis(connection_pool=pool)

        try:
            await client.ping()
        except redis.RedisError as e:
            logger.error("Redis unreachable at startup", host=pool.connection_kwargs.get("host"), error=str(e))
            await client.aclose()
            await pool.disconnect()
            raise RuntimeError("Redis initialization failed") from e

        self.pool, self.client = pool, client
        logger.info(
            "Redis client connected",
            host=pool.connection_kwargs.get("host"),
            max_connections=redis_config["max_connections"],
        )

    async def close(self) -> None:
        if not self.connected:
            return
        try:
            await self.client.aclose()
            await self.pool.disconnect()
            logger.info("Redis client closed")
        except redis.RedisError as e:
            logger.warning("Error closing Redis client", error=str(e))
        finally:
            self.pool = self.client = None

    async def _connection(self) -> redis.Redis:
        if not self.connected:
            await self.initialize()
        return self.client

    async def ping(self) -> bool:
        try:
            client = await self._connection()
            return bool(await client.ping())
        except (redis.RedisError, RuntimeError) as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        client = await self._connection()
        return await client.get(key) or None

    async def set(self, key: str, value: str) -> bool:
        client = await self._connection()
        return bool(await client.set(key, value))

    async def delete(self, key: str) -> bool:
        client = await self._connection()
        return await client.delete(key) > 0


# Global instance
fast_redis = FastRedisClient()
