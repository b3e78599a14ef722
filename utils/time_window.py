"""
Sliding-window and per-key locking helpers shared by the license cache,
the rate limiter and the attack pattern detectors.
"""
import threading
import time
from typing import Callable, Hashable, List, Union
from datetime import datetime

Clock = Callable[[], float]


def system_clock() -> float:
    """Wall clock in epoch seconds."""
    return time.time()


def to_epoch(value: Union[None, int, float, datetime], default: float) -> float:
    """
    Normalize an event timestamp to epoch seconds.

    Accepts epoch seconds, epoch milliseconds (values above 1e12 are taken
    as ms) and datetimes. Anything unusable falls back to
    ``default`` so malformed events never raise.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, (int, float)):
        value = float(value)
        return value / 1000.0 if value > 1e12 else value
    return default


class KeyedLocks:
    """
    Striped locks: one lock per hash bucket of the key.

    Unrelated keys almost never share a stripe, so concurrent updates for
    different IPs or sessions do not serialize, while updates for the same key
    always do. The stripe count is fixed so memory stays bounded no matter how
    many keys are tracked.
    """

    def __init__(self, stripes: int = 64):
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]

    def for_key(self, key: Hashable) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

