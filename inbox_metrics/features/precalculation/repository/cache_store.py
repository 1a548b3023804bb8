"""
Durable cache for computed metrics, keyed by (tenant slug, subject, range).

Keys are reconstructible from the tenant slug, the subject *name* and the
range name: the subject name is lowercased and every run of whitespace
becomes a single hyphen. Names that differ only in case or whitespace
therefore share a key; that collision is accepted.
"""

import asyncio
import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from inbox_metrics.config import settings
from inbox_metrics.features.precalculation.domain import CacheEntry, CacheStoreError
from inbox_metrics.infrastructure.observability.logging import get_logger
from inbox_metrics.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def subject_slug(subject_name: str) -> str:
    return _WHITESPACE.sub("-", subject_name.lower())


def cache_key(tenant_slug: str, subject_name: str, range_name: str) -> str:
    return f"{tenant_slug}_{subject_slug(subject_name)}_{range_name}"


class CacheStore(ABC):
    """
    get/put/delete by composite key, plus a per-key lock registry.

    Writers hold ``key_lock`` across read-compute-write so a key never has
    two concurrent writers. Readers do not lock: backends make each put
    atomic.
    """

    backend = "abstract"

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def key_lock(self, tenant_slug: str, subject_name: str, range_name: str) -> AsyncIterator[None]:
        key = cache_key(tenant_slug, subject_name, range_name)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            yield

    async def get(self, tenant_slug: str, subject_name: str, range_name: str) -> CacheEntry | None:
        key = cache_key(tenant_slug, subject_name, range_name)
        raw = await self._read(key)
        if raw is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Corrupt cache entry", key=key, error=str(e))
            raise CacheStoreError(f"Corrupt cache entry {key}: {e}", operation="get") from e

    async def put(self, tenant_slug: str, subject_name: str, range_name: str, entry: CacheEntry) -> None:
        key = cache_key(tenant_slug, subject_name, range_name)
        await self._write(key, json.dumps(entry.to_dict(), indent=2))
        logger.info("Cache entry saved", key=key, backend=self.backend, total_records=entry.total_records)

    async def delete(self, tenant_slug: str, subject_name: str, range_name: str) -> bool:
        key = cache_key(tenant_slug, subject_name, range_name)
        deleted = await self._remove(key)
        if deleted:
            logger.info("Cache entry deleted", key=key, backend=self.backend)
        return deleted

    async def initialize(self) -> None:
        """Prepare the backend; no-op by default."""

    async def close(self) -> None:
        """Release backend resources; no-op by default."""

    @abstractmethod
    async def health_check(self) -> dict: ...

    @abstractmethod
    async def _read(self, key: str) -> str | None: ...

    @abstractmethod
    async def _write(self, key: str, document: str) -> None: ...

    @abstractmethod
    async def _remove(self, key: str) -> bool: ...


class FileCacheStore(CacheStore):
    """One JSON file per key under ``cache_dir``."""

    backend = "file"

    def __init__(self, cache_dir: str | os.PathLike | None = None):
        super().__init__()
        self.cache_dir = Path(cache_dir or settings.CACHE_DIR)

    def path_for(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    async def initialize(self) -> None:
        await asyncio.to_thread(self.cache_dir.mkdir, parents=True, exist_ok=True)

    async def health_check(self) -> dict:
        writable = self.cache_dir.is_dir() and os.access(self.cache_dir, os.W_OK)
        return {"healthy": writable, "service": "cache_store", "backend": self.backend}

    async def _read(self, key: str) -> str | None:
        try:
            return await asyncio.to_thread(self._read_file, self.path_for(key))
        except OSError as e:
            raise CacheStoreError(f"Failed to read cache file for {key}: {e}", operation="get") from e

    async def _write(self, key: str, document: str) -> None:
        try:
            await asyncio.to_thread(self._write_file, self.path_for(key), document)
        except OSError as e:
            raise CacheStoreError(f"Failed to write cache file for {key}: {e}", operation="put") from e

    async def _remove(self, key: str) -> bool:
        try:
            return await asyncio.to_thread(self._remove_file, self.path_for(key))
        except OSError as e:
            raise CacheStoreError(f"Failed to delete cache file for {key}: {e}", operation="delete") from e

    @staticmethod
    def _read_file(path: Path) -> str | None:
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    @staticmethod
    def _write_file(path: Path, document: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write beside the target then rename, so readers see old or new, never partial
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(document)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    @staticmethod
    def _remove_file(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True


class RedisCacheStore(CacheStore):
    """Same JSON documents, stored under ``prefix + key`` in Redis."""

    backend = "redis"

    def __init__(self, client: FastRedisClient | None = None, prefix: str | None = None):
        super().__init__()
        self.client = client or fast_redis
        self.prefix = settings.CACHE_KEY_PREFIX if prefix is None else prefix

    async def initialize(self) -> None:
        await self.client.initialize()

    async def close(self) -> None:
        await self.client.close()

    async def health_check(self) -> dict:
        ok = await self.client.ping()
        return {"healthy": ok, "service": "cache_store", "backend": self.backend}

    async def _read(self, key: str) -> str | None:
        try:
            return await self.client.get(self.prefix + key)
        except Exception as e:
            raise CacheStoreError(f"Redis GET failed for {key}: {e}", operation="get") from e

    async def _write(self, key: str, document: str) -> None:
        try:
            stored = await self.client.set(self.prefix + key, document)
        except Exception as e:
            raise CacheStoreError(f"Redis SET failed for {key}: {e}", operation="put") from e
        if not stored:
            raise CacheStoreError(f"Redis SET rejected for {key}", operation="put")

    async def _remove(self, key: str) -> bool:
        try:
            return await self.client.delete(self.prefix + key)
        except Exception as e:
            raise CacheStoreError(f"Redis DELETE failed for {key}: {e}", operation="delete") from e


def build_cache_store(backend: str | None = None) -> CacheStore:
    """Cache store for the configured backend."""
    backend = (backend or settings.CACHE_BACKEND).strip().lower()
    if backend == "file":
        return FileCacheStore()
    if backend == "redis":
        return RedisCacheStore()
    raise ValueError(f"Unknown cache backend '{backend}'. Available backends: file, redis")
