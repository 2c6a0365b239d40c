"""
Unit Tests for the Redis Transport

The redis-py client is mocked; these tests cover command mapping and the
translation of redis errors into cache errors.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from taskboard_cache.core.exceptions import CacheConnectionError, CacheKeyError
from taskboard_cache.core.interfaces.cache import CacheBackend
from taskboard_cache.infrastructure.cache.redis_client import OperationExecutor, RedisClient

MODULE = "taskboard_cache.infrastructure.cache.redis_client"


@pytest.fixture
def redis_mock():
    client = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    return client


@pytest.mark.unit
class TestOperationExecutor:
    @pytest.mark.asyncio
    async def test_set_uses_millisecond_expiry(self, redis_mock):
        redis_mock.set = AsyncMock(return_value=True)
        executor = OperationExecutor(redis_mock)

        assert await executor.set("k", "v", ttl_ms=5000) is True
        redis_mock.set.assert_awaited_once_with("k", "v", px=5000)

    @pytest.mark.asyncio
    async def test_set_without_ttl(self, redis_mock):
        redis_mock.set = AsyncMock(return_value=True)
        executor = OperationExecutor(redis_mock)

        await executor.set("k", "v")
        redis_mock.set.assert_awaited_once_with("k", "v", px=None)

    @pytest.mark.asyncio
    async def test_scan_keys_collects_iterator(self, redis_mock):
        async def scan_iter(match, count):
            for key in ("cache:scalar:a", "cache:scalar:b"):
                yield key

        redis_mock.scan_iter = MagicMock(side_effect=scan_iter)
        executor = OperationExecutor(redis_mock)

        assert await executor.scan_keys("cache:scalar:*") == ["cache:scalar:a", "cache:scalar:b"]
        redis_mock.scan_iter.assert_called_once_with(match="cache:scalar:*", count=500)

    @pytest.mark.asyncio
    async def test_empty_delete_skips_round_trip(self, redis_mock):
        executor = OperationExecutor(redis_mock)

        assert await executor.delete() == 0
        assert await executor.hdel("h") == 0
        redis_mock.delete.assert_not_called()
        redis_mock.hdel.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,args",
        [
            ("get", ("k",)),
            ("set", ("k", "v")),
            ("delete", ("k",)),
            ("hget", ("h", "f")),
            ("hset", ("h", "f", "v")),
            ("hkeys", ("h",)),
            ("hdel", ("h", "f")),
        ],
    )
    async def test_redis_errors_become_cache_key_errors(self, redis_mock, method, args):
        setattr(redis_mock, method, AsyncMock(side_effect=ResponseError("WRONGTYPE")))
        executor = OperationExecutor(redis_mock)

        with pytest.raises(CacheKeyError) as exc_info:
            await getattr(executor, method)(*args)

        assert "WRONGTYPE" in exc_info.value.message


@pytest.mark.unit
class TestRedisClient:
    def test_implements_backend_protocol(self, test_settings):
        assert isinstance(RedisClient(test_settings), CacheBackend)

    @pytest.mark.asyncio
    async def test_operations_before_connect_raise(self, test_settings):
        client = RedisClient(test_settings)

        with pytest.raises(CacheConnectionError):
            await client.get("k")
        with pytest.raises(CacheConnectionError):
            await client.hset("h", "f", "v")

    @pytest.mark.asyncio
    async def test_connect_and_delegate(self, test_settings, redis_mock):
        redis_mock.hget = AsyncMock(return_value='{"key":"k"}')

        with patch(f"{MODULE}.ConnectionPool") as pool_cls, \
                patch(f"{MODULE}.redis.Redis", return_value=redis_mock):
            client = RedisClient(test_settings)
            await client.connect()

        assert pool_cls.call_args.kwargs["decode_responses"] is True
        assert await client.ping() is True
        assert await client.hget("test-cache:structured:k", "k") == '{"key":"k"}'

    @pytest.mark.asyncio
    async def test_connect_failure_raises_cache_connection_error(self, test_settings, redis_mock):
        redis_mock.ping = AsyncMock(side_effect=RedisConnectionError("refused"))

        with patch(f"{MODULE}.ConnectionPool"), patch(f"{MODULE}.redis.Redis", return_value=redis_mock):
            client = RedisClient(test_settings)
            with pytest.raises(CacheConnectionError) as exc_info:
                await client.connect()

        assert exc_info.value.details["host"] == test_settings.redis.REDIS_HOST

    @pytest.mark.asyncio
    async def test_disconnect_closes_client_and_pool(self, test_settings, redis_mock):
        pool = MagicMock()
        pool.disconnect = AsyncMock()

        with patch(f"{MODULE}.ConnectionPool", return_value=pool), \
                patch(f"{MODULE}.redis.Redis", return_value=redis_mock):
            client = RedisClient(test_settings)
            await client.connect()
            await client.disconnect()

        redis_mock.aclose.assert_awaited_once()
        pool.disconnect.assert_awaited_once()
        with pytest.raises(CacheConnectionError):
            await client.get("k")

    @pytest.mark.asyncio
    async def test_health_check_when_not_connected(self, test_settings):
        health = await RedisClient(test_settings).health_check()

        assert health["status"] == "unhealthy"
        assert health["connected"] is False
