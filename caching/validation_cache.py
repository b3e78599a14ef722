"""
Two-layer cache for remote license validation results.
L1 is process memory, L2 is Redis when configured. Redis failures degrade to
the memory layer; they are logged and counted, never raised.
"""
import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from models.license import LicenseValidationResult
from utils.time_window import Clock, KeyedLocks, system_clock

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    """Truncated SHA-256 of a license token; raw tokens are never used as keys."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:32]


@dataclass
class ValidationCacheEntry:
    """Cached validation result with its write timestamp."""
    result: LicenseValidationResult

    @property
    def cached_at(self) -> float:
        return self.result.cached_at

    def age(self, now: float) -> float:
        return now - self.cached_at


class ValidationCache:
    """
    Freshness and offline-grace cache keyed by (tenant, token hash).

    A single entry per key serves both lookups: it is *fresh* while younger
    than ``fresh_ttl`` and usable *offline* while younger than
    ``offline_grace``. Writes are compare-and-set on ``cached_at`` so an entry
    is never replaced by an older validation.
    """

    def __init__(self,
                 fresh_ttl: float = 900,
                 offline_grace: float = 3600,
                 max_entries: int = 10000,
                 redis_client: Any = None,
                 key_prefix: str = "license:validation:",
                 clock: Clock = system_clock):
        self.fresh_ttl = fresh_ttl
        self.offline_grace = offline_grace
        self.max_entries = max_entries
        self.redis_client = redis_client
        self.key_prefix = key_prefix
        self.clock = clock

        self._entries: Dict[str, ValidationCacheEntry] = {}
        self._locks = KeyedLocks()
        self._structure_lock = threading.Lock()

        self._stats = {
            'hits': 0,
            'misses': 0,
            'offline_hits': 0,
            'sets': 0,
            'stale_writes': 0,
            'evictions': 0,
            'redis_errors': 0,
        }
        self._stats_lock = threading.Lock()

    @staticmethod
    def make_key(tenant_id: str, token: str) -> str:
        return f"{tenant_id}:{hash_token(token)}"

    def _redis_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _update_stats(self, operation: str, amount: int = 1):
        with self._stats_lock:
            self._stats[operation] += amount

    # ------------------------------------------------------------------
    # Memory layer
    # ------------------------------------------------------------------

    def _get_memory(self, key: str) -> Optional[ValidationCacheEntry]:
        with self._locks.for_key(key):
            return self._entries.get(key)

    def _put_memory(self, key: str, result: LicenseValidationResult) -> bool:
        with self._locks.for_key(key):
            current = self._entries.get(key)
            if current is not None and current.cached_at > result.cached_at:
                self._update_stats('stale_writes')
                return False
            with self._structure_lock:
                if current is None and len(self._entries) >= self.max_entries:
                    self._evict_oldest_locked()
                self._entries[key] = ValidationCacheEntry(result=result)
        return True

    def _evict_oldest_locked(self):
        """Evict the oldest entry; caller holds the structure lock."""
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda k: self._entries[k].cached_at)
        del self._entries[oldest_key]
        self._update_stats('evictions')

    # ------------------------------------------------------------------
    # Redis layer
    # ------------------------------------------------------------------

    async def _get_redis(self, key: str) -> Optional[LicenseValidationResult]:
        if self.redis_client is None:
            return None
        try:
            raw = await self.redis_client.get(self._redis_key(key))
            if raw is None:
                return None
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            return LicenseValidationResult.from_cache_dict(json.loads(raw))
        except Exception as e:
            logger.warning(f"⚠️ [LICENSE-CACHE] Redis get failed for {key}, using memory only: {e}")
            self._update_stats('redis_errors')
            return None

    async def _put_redis(self, key: str, result: LicenseValidationResult):
        if self.redis_client is None:
            return
        try:
            await self.redis_client.set(
                self._redis_key(key),
                json.dumps(result.to_cache_dict()),
                ex=int(self.offline_grace),
            )
        except Exception as e:
            logger.warning(f"⚠️ [LICENSE-CACHE] Redis set failed for {key}: {e}")
            self._update_stats('redis_errors')

    async def _delete_redis_pattern(self, pattern: str) -> int:
        if self.redis_client is None:
            return 0
        try:
            keys = [k async for k in self.redis_client.scan_iter(match=pattern)]
            if not keys:
                return 0
            return int(await self.redis_client.delete(*keys))
        except Exception as e:
            logger.warning(f"⚠️ [LICENSE-CACHE] Redis clear failed for {pattern}: {e}")
            self._update_stats('redis_errors')
            return 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def _lookup(self, key: str) -> Optional[ValidationCacheEntry]:
        entry = self._get_memory(key)
        if entry is not None:
            return entry

        result = await self._get_redis(key)
        if result is None:
            return None
        # Promote to memory so later hits stay local
        self._put_memory(key, result)
        return ValidationCacheEntry(result=result)

    async def get_fresh(self, tenant_id: str, token: str) -> Optional[LicenseValidationResult]:
        """Cached result younger than the freshness window, marked ``cached``."""
        key = self.make_key(tenant_id, token)
        entry = await self._lookup(key)
        if entry is not None and entry.age(self.clock()) < self.fresh_ttl:
            self._update_stats('hits')
            return entry.result.as_cached()
        self._update_stats('misses')
        return None

    async def get_offline(self, tenant_id: str, token: str) -> Optional[LicenseValidationResult]:
        """Cached result younger than the offline-grace window, marked ``offline``."""
        key = self.make_key(tenant_id, token)
        entry = await self._lookup(key)
        if entry is not None and entry.age(self.clock()) < self.offline_grace:
            self._update_stats('offline_hits')
            return entry.result.as_offline()
        return None

    async def put(self, tenant_id: str, token: str, result: LicenseValidationResult) -> bool:
        """
        Store a validation result.

        Returns False when a newer result is already stored for the key; the
        older write is dropped.
        """
        key = self.make_key(tenant_id, token)
        if not self._put_memory(key, result):
            logger.debug(f"[LICENSE-CACHE] Dropped stale write for tenant {tenant_id}")
            return False
        self._update_stats('sets')
        await self._put_redis(key, result)
        return True

    async def clear(self, tenant_id: Optional[str] = None) -> int:
        """Clear one tenant's entries, or every entry when no tenant is given."""
        prefix = f"{tenant_id}:" if tenant_id else ""
        with self._structure_lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for key in keys:
                del self._entries[key]

        if tenant_id:
            pattern = f"{self.key_prefix}{tenant_id}:*"
        else:
            pattern = f"{self.key_prefix}*"
        redis_removed = await self._delete_redis_pattern(pattern)

        logger.info(
            f"🧹 [LICENSE-CACHE] Cleared {len(keys)} memory entries and {redis_removed} redis entries"
            + (f" for tenant {tenant_id}" if tenant_id else "")
        )
        return len(keys)

    def sweep(self) -> int:
        """Evict entries past the offline-grace window."""
        now = self.clock()
        with self._structure_lock:
            keys = list(self._entries.keys())

        removed = 0
        for key in keys:
            with self._locks.for_key(key):
                entry = self._entries.get(key)
                if entry is not None and entry.age(now) >= self.offline_grace:
                    with self._structure_lock:
                        self._entries.pop(key, None)
                    removed += 1

        if removed:
            self._update_stats('evictions', removed)
            logger.debug(f"🧹 [LICENSE-CACHE] Swept {removed} expired validation entries")
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        now = self.clock()
        with self._structure_lock:
            entries = list(self._entries.values())
        with self._stats_lock:
            stats = dict(self._stats)

        lookups = stats['hits'] + stats['misses']
        return {
            'redis': {
                'enabled': self.redis_client is not None,
                'errors': stats['redis_errors'],
            },
            'memoryCache': {
                'size': len(entries),
                'fresh': sum(1 for e in entries if e.age(now) < self.fresh_ttl),
                'offlineUsable': sum(1 for e in entries if e.age(now) < self.offline_grace),
                'maxEntries': self.max_entries,
                'hits': stats['hits'],
                'misses': stats['misses'],
                'offlineHits': stats['offline_hits'],
                'hitRate': round(stats['hits'] / lookups, 4) if lookups else 0.0,
                'staleWrites': stats['stale_writes'],
                'evictions': stats['evictions'],
            },
        }
