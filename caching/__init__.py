"""
Caching infrastructure for the license guard.
Provides the license validation cache and the fixed-window rate limit cache.
"""

from .validation_cache import (
    ValidationCache,
    ValidationCacheEntry,
    hash_token
)
from .rate_limit_cache import (
    RateLimitCache,
    RateLimitEntry,
    RateLimitResult
)

__all__ = [
    'ValidationCache',
    'ValidationCacheEntry',
    'hash_token',
    'RateLimitCache',
    'RateLimitEntry',
    'RateLimitResult',
]
