"""Verification cache keyed by product identifier.

Many content items repeat the same product link, so verification outcomes are
cached per product (e.g. ASIN) rather than per URL. Entries older than the TTL
are treated as absent whether or not they have been physically deleted.
Caching is an optimization: backend failures are logged and swallowed.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis

from linkguard import metrics
from linkguard.config import settings
from linkguard.errors import CacheUnavailableError
from linkguard.links.types import CacheEntry, HealthCheckResult, LinkStatus, utcnow

logger = logging.getLogger(__name__)


class CacheStore(ABC):
    """Key-value backing store for cache entries (upsert by identifier)."""

    @abstractmethod
    async def get(self, identifier: str) -> Optional[CacheEntry]:
        """Return the stored entry regardless of age, or None."""

    @abstractmethod
    async def upsert(self, entry: CacheEntry) -> None:
        """Insert or overwrite the entry for entry.identifier."""

    @abstractmethod
    async def increment_hits(self, identifier: str) -> None:
        """Increment the hit counter for an identifier."""

    @abstractmethod
    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete entries last checked before cutoff; return how many."""

    @abstractmethod
    async def stats(self, cutoff: datetime) -> Dict[str, int]:
        """Return total, valid (checked at/after cutoff) and hit counts."""

    async def close(self) -> None:
        pass


class MemoryCacheStore(CacheStore):
    """In-process store. Safe for concurrent coroutines."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get(self, identifier: str) -> Optional[CacheEntry]:
        entry = self._entries.get(identifier)
        return replace(entry) if entry else None

    async def upsert(self, entry: CacheEntry) -> None:
        async with self._lock:
            existing = self._entries.get(entry.identifier)
            hit_count = existing.hit_count if existing else entry.hit_count
            self._entries[entry.identifier] = replace(entry, hit_count=hit_count)

    async def increment_hits(self, identifier: str) -> None:
        async with self._lock:
            entry = self._entries.get(identifier)
            if entry:
                entry.hit_count += 1

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self._lock:
            expired = [k for k, e in self._entries.items() if e.last_checked < cutoff]
            for key in expired:
                del self._entries[key]
            return len(expired)

    async def stats(self, cutoff: datetime) -> Dict[str, int]:
        entries = list(self._entries.values())
        return {
            "total_entries": len(entries),
            "valid_entries": sum(1 for e in entries if e.last_checked >= cutoff),
            "total_hits": sum(e.hit_count for e in entries),
        }


class RedisCacheStore(CacheStore):
    """
    Redis hash per identifier.

    Keys also carry a physical expiry of twice the TTL so abandoned entries
    disappear even without a sweep.
    """

    KEY_PREFIX = "link_cache:"

    def __init__(self, redis_url: Optional[str] = None, ttl: Optional[timedelta] = None):
        self.redis_url = redis_url or settings.redis_url
        self.ttl = ttl or timedelta(hours=settings.link_cache_ttl_hours)
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None

    def _key(self, identifier: str) -> str:
        return f"{self.KEY_PREFIX}{identifier}"

    @staticmethod
    def _to_mapping(entry: CacheEntry) -> Dict[str, str]:
        return {
            "status": entry.status.value,
            "final_url": entry.final_url or "",
            "reason": entry.reason or "",
            "http_status": "" if entry.http_status is None else str(entry.http_status),
            "last_checked": entry.last_checked.isoformat(),
        }

    @staticmethod
    def _from_mapping(identifier: str, data: Dict[str, Any]) -> CacheEntry:
        try:
            return CacheEntry(
                identifier=identifier,
                status=LinkStatus(data["status"]),
                final_url=data.get("final_url") or None,
                reason=data.get("reason") or None,
                http_status=int(data["http_status"]) if data.get("http_status") else None,
                last_checked=datetime.fromisoformat(data["last_checked"]),
                hit_count=int(data.get("hit_count") or 0),
            )
        except (KeyError, ValueError) as e:
            raise CacheUnavailableError(f"Corrupt cache entry {identifier}: {e!r}") from e

    async def get(self, identifier: str) -> Optional[CacheEntry]:
        try:
            client = await self._get_redis()
            data = await client.hgetall(self._key(identifier))
        except (redis.RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis read failed: {e}") from e
        if not data or "status" not in data:
            return None
        return self._from_mapping(identifier, data)

    async def upsert(self, entry: CacheEntry) -> None:
        key = self._key(entry.identifier)
        try:
            client = await self._get_redis()
            await client.hset(key, mapping=self._to_mapping(entry))
            await client.expire(key, int(self.ttl.total_seconds() * 2))
        except (redis.RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis write failed: {e}") from e

    async def increment_hits(self, identifier: str) -> None:
        try:
            client = await self._get_redis()
            await client.hincrby(self._key(identifier), "hit_count", 1)
        except (redis.RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis hit increment failed: {e}") from e

    async def delete_older_than(self, cutoff: datetime) -> int:
        deleted = 0
        try:
            client = await self._get_redis()
            async for key in client.scan_iter(match=f"{self.KEY_PREFIX}*"):
                last_checked = await client.hget(key, "last_checked")
                if not last_checked or datetime.fromisoformat(last_checked) < cutoff:
                    deleted += await client.delete(key)
        except (redis.RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis sweep failed: {e}") from e
        return deleted

    async def stats(self, cutoff: datetime) -> Dict[str, int]:
        total = valid = hits = 0
        try:
            client = await self._get_redis()
            async for key in client.scan_iter(match=f"{self.KEY_PREFIX}*"):
                data = await client.hgetall(key)
                if not data:
                    continue
                total += 1
                hits += int(data.get("hit_count") or 0)
                if data.get("last_checked") and datetime.fromisoformat(data["last_checked"]) >= cutoff:
                    valid += 1
        except (redis.RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis stats failed: {e}") from e
        return {"total_entries": total, "valid_entries": valid, "total_hits": hits}


class VerificationCache:
    """TTL-bounded verification cache over a CacheStore."""

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store or MemoryCacheStore()
        self.ttl = ttl or timedelta(hours=settings.link_cache_ttl_hours)
        self.clock = clock
        self._pending: set[asyncio.Task] = set()

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.last_checked < self.ttl

    async def get(self, identifier: str) -> Optional[HealthCheckResult]:
        """
        Look up a fresh cached result.

        Args:
            identifier: Product identifier (cache key)

        Returns:
            HealthCheckResult with from_cache=True, or None on miss/expiry/error
        """
        try:
            entry = await self.store.get(identifier)
        except CacheUnavailableError as e:
            logger.warning(f"Cache read failed for {identifier}, treating as miss: {e}")
            metrics.record_cache_error("get")
            return None

        if entry is None or not self._is_fresh(entry):
            metrics.link_cache_misses_total.inc()
            if entry is not None:
                logger.debug(f"Cache EXPIRED: {identifier}")
            return None

        self._increment_hits(identifier)
        metrics.link_cache_hits_total.inc()
        logger.debug(f"Cache HIT: {identifier} -> {entry.status.value}")

        return HealthCheckResult(
            url=entry.final_url or "",
            status=entry.status,
            reason=entry.reason or "Cached result",
            http_status=entry.http_status,
            final_url=entry.final_url,
            checked_at=entry.last_checked,
            from_cache=True,
            identifier=identifier,
        )

    def _increment_hits(self, identifier: str) -> None:
        """Fire-and-forget hit counter bump; failures are ignored."""
        task = asyncio.create_task(self.store.increment_hits(identifier))
        self._pending.add(task)
        task.add_done_callback(self._on_increment_done)

    def _on_increment_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Ignoring hit count failure: {task.exception()}")

    async def put(self, identifier: str, result: HealthCheckResult) -> None:
        """Upsert a result; last_checked is always reset to now."""
        entry = CacheEntry(
            identifier=identifier,
            status=result.status,
            final_url=result.final_url,
            reason=result.reason,
            http_status=result.http_status,
            last_checked=self.clock(),
        )
        try:
            await self.store.upsert(entry)
            logger.debug(f"Cache SAVED: {identifier} -> {result.status.value}")
        except CacheUnavailableError as e:
            logger.warning(f"Cache write failed for {identifier}: {e}")
            metrics.record_cache_error("put")

    async def sweep(self) -> int:
        """Delete entries older than the TTL. Returns the number deleted."""
        cutoff = self.clock() - self.ttl
        try:
            deleted = await self.store.delete_older_than(cutoff)
        except CacheUnavailableError as e:
            logger.error(f"Cache sweep failed: {e}")
            metrics.record_cache_error("sweep")
            return 0
        metrics.link_cache_swept_total.inc(deleted)
        logger.info(f"Swept {deleted} expired cache entries")
        return deleted

    async def stats(self) -> Dict[str, int]:
        """Entry counts and total hits."""
        cutoff = self.clock() - self.ttl
        try:
            raw = await self.store.stats(cutoff)
        except CacheUnavailableError as e:
            logger.error(f"Cache stats failed: {e}")
            metrics.record_cache_error("stats")
            return {"total_entries": 0, "valid_entries": 0, "expired_entries": 0, "total_hits": 0}
        return {
            **raw,
            "expired_entries": raw["total_entries"] - raw["valid_entries"],
        }

    async def drain(self) -> None:
        """Wait for outstanding hit-count updates."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self.store.close()


def build_cache_store(backend: Optional[str] = None) -> CacheStore:
    """Create the configured backing store (memory, redis or sql)."""
    backend = (backend or settings.cache_backend).lower()
    if backend == "redis":
        return RedisCacheStore()
    if backend == "sql":
        from linkguard.db.repository import SqlCacheStore

        return SqlCacheStore()
    if backend != "memory":
        logger.warning(f"Unknown cache backend {backend!r}, using in-memory cache")
    return MemoryCacheStore()
