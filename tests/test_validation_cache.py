"""
Tests for the two-layer license validation cache.
"""
import json

from caching.validation_cache import ValidationCache, hash_token
from models.license import LicenseValidationResult


def make_result(cached_at, features=("reports",)):
    return LicenseValidationResult(valid=True, features=frozenset(features), cached_at=cached_at)


class TestValidationCache:

    async def test_fresh_then_offline_then_gone(self, clock):
        cache = ValidationCache(fresh_ttl=900, offline_grace=3600, clock=clock)
        await cache.put("tenant-1", "token", make_result(clock()))

        fresh = await cache.get_fresh("tenant-1", "token")
        assert fresh is not None and fresh.cached and not fresh.offline

        clock.advance(901)
        assert await cache.get_fresh("tenant-1", "token") is None
        offline = await cache.get_offline("tenant-1", "token")
        assert offline is not None and offline.offline

        clock.advance(2700)
        assert await cache.get_offline("tenant-1", "token") is None

    async def test_keys_use_token_hash_and_tenant(self, clock):
        cache = ValidationCache(clock=clock)
        await cache.put("tenant-1", "token", make_result(clock()))

        assert ValidationCache.make_key("tenant-1", "token") == f"tenant-1:{hash_token('token')}"
        assert len(hash_token("token")) == 32
        assert await cache.get_fresh("tenant-2", "token") is None
        assert await cache.get_fresh("tenant-1", "other-token") is None

    async def test_older_write_is_dropped(self, clock):
        cache = ValidationCache(clock=clock)
        assert await cache.put("t", "tok", make_result(clock(), features=("new",)))
        assert not await cache.put("t", "tok", make_result(clock() - 10, features=("old",)))

        result = await cache.get_fresh("t", "tok")
        assert result.features == frozenset({"new"})
        assert cache.get_stats()['memoryCache']['staleWrites'] == 1

    async def test_clear_per_tenant_and_global(self, clock, mock_redis_client):
        cache = ValidationCache(clock=clock, redis_client=mock_redis_client)
        await cache.put("tenant-1", "a", make_result(clock()))
        await cache.put("tenant-2", "b", make_result(clock()))

        async def scan_iter(match):
            for key in ("license:validation:tenant-1:x",):
                yield key

        mock_redis_client.scan_iter = scan_iter

        assert await cache.clear("tenant-1") == 1
        assert await cache.get_fresh("tenant-2", "b") is not None
        mock_redis_client.delete.assert_awaited_once_with("license:validation:tenant-1:x")

        assert await cache.clear() == 1
        assert len(cache) == 0

    async def test_global_clear_only_matches_own_prefix(self, clock, mock_redis_client):
        cache = ValidationCache(clock=clock, redis_client=mock_redis_client, key_prefix="hrsm:lic:")
        patterns = []

        async def scan_iter(match):
            patterns.append(match)
            for key in ("hrsm:lic:tenant-1:x",):
                yield key

        mock_redis_client.scan_iter = scan_iter

        await cache.clear()
        await cache.clear("tenant-1")

        assert patterns == ["hrsm:lic:*", "hrsm:lic:tenant-1:*"]

    async def test_redis_layer_write_and_promote(self, clock, mock_redis_client):
        cache = ValidationCache(clock=clock, redis_client=mock_redis_client)
        await cache.put("tenant-1", "token", make_result(clock()))

        key, raw = mock_redis_client.set.await_args.args
        assert key == f"license:validation:tenant-1:{hash_token('token')}"
        assert mock_redis_client.set.await_args.kwargs["ex"] == 3600

        # Another process reads the entry from Redis only
        other = ValidationCache(clock=clock, redis_client=mock_redis_client)
        mock_redis_client.get.return_value = raw
        result = await other.get_fresh("tenant-1", "token")
        assert result is not None and result.features == frozenset({"reports"})
        assert len(other) == 1
        assert json.loads(raw)["cachedAt"] == clock()

    async def test_redis_errors_degrade_to_memory(self, clock, mock_redis_client):
        mock_redis_client.get.side_effect = ConnectionError("redis down")
        mock_redis_client.set.side_effect = ConnectionError("redis down")
        cache = ValidationCache(clock=clock, redis_client=mock_redis_client)

        assert await cache.put("tenant-1", "token", make_result(clock()))
        assert await cache.get_fresh("tenant-1", "token") is not None
        assert await cache.get_fresh("tenant-1", "missing") is None

        stats = cache.get_stats()
        assert stats['redis'] == {'enabled': True, 'errors': 2}

    async def test_sweep_evicts_past_offline_grace(self, clock):
        cache = ValidationCache(fresh_ttl=900, offline_grace=3600, clock=clock)
        await cache.put("t", "old", make_result(clock()))
        clock.advance(3000)
        await cache.put("t", "new", make_result(clock()))
        clock.advance(700)

        assert cache.sweep() == 1
        assert len(cache) == 1
