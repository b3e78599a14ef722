"""
In-memory fixed-window rate limiting for license checks.
Bounds load on the license validator and the remote license authority.
"""
import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from utils.time_window import Clock, KeyedLocks, system_clock

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    """Request count inside the current window for one key."""
    count: int
    reset_at: float


@dataclass
class RateLimitResult:
    """Result of rate limit check"""
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None


class RateLimitCache:
    """
    Fixed-window counter per key, reset at the window boundary.

    Keys are opaque strings; callers build them (``tenant:ip`` for module checks,
    ``authority:tenant`` for authority calls).
    """

    def __init__(self, window_seconds: float = 60, max_requests: int = 100, clock: Clock = system_clock):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._locks = KeyedLocks()
        self._structure_lock = threading.Lock()

    def check(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and say whether it is allowed."""
        now = self.clock()
        with self._locks.for_key(key):
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_at:
                entry = RateLimitEntry(count=0, reset_at=now + self.window_seconds)
                with self._structure_lock:
                    self._entries[key] = entry
            entry.count += 1
            count, reset_at = entry.count, entry.reset_at

        if count > self.max_requests:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_at=reset_at,
                retry_after=max(1, math.ceil(reset_at - now)),
            )
        return RateLimitResult(allowed=True, remaining=self.max_requests - count, reset_at=reset_at)

    def sweep(self) -> int:
        """Evict entries whose window has closed."""
        now = self.clock()
        with self._structure_lock:
            keys = list(self._entries.keys())

        removed = 0
        for key in keys:
            with self._locks.for_key(key):
                entry = self._entries.get(key)
                if entry is not None and now > entry.reset_at:
                    with self._structure_lock:
                        self._entries.pop(key, None)
                    removed += 1

        if removed:
            logger.debug(f"🧹 [RATE-LIMIT] Cleaned up {removed} expired rate limit entries")
        return removed

    def clear(self) -> int:
        with self._structure_lock:
            size = len(self._entries)
            self._entries.clear()
        logger.debug(f"🧹 [RATE-LIMIT] Rate limit cache cleared ({size} entries)")
        return size

    def get_stats(self) -> Dict[str, Any]:
        now = self.clock()
        with self._structure_lock:
            entries = list(self._entries.values())
        active = sum(1 for entry in entries if now <= entry.reset_at)
        return {
            'totalEntries': len(entries),
            'activeEntries': active,
            'expiredEntries': len(entries) - active,
            'rateLimitWindow': self.window_seconds,
            'maxRequestsPerWindow': self.max_requests,
        }
