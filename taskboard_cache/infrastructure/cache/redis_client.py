"""
Redis Client with Connection Pooling

Transport for the durable cache tiers (structured + scalar). Implements the
CacheBackend protocol.

Architecture:
    RedisClient (Public API)
        ├── ConnectionManager (Connection lifecycle)
        ├── OperationExecutor (Command execution with error handling)
        └── HealthMonitor (Health checks and pool metrics)

Errors:
    redis-py errors are mapped to CacheKeyError (one operation failed) or
    CacheConnectionError (backend unreachable / not connected). The cache
    store above treats both as non-fatal.
"""

import time
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from taskboard_cache.core.config.settings import Settings, get_settings
from taskboard_cache.core.exceptions import CacheConnectionError, CacheKeyError
from taskboard_cache.core.logging.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# LAYER 1: CONNECTION MANAGEMENT
# =============================================================================


class ConnectionManager:
    """
    Manages Redis connection lifecycle and pooling.

    Pool Configuration (from settings.redis):
    - Max connections
    - Short socket timeouts (durable tiers must fail fast)
    - Health check interval
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._pool: ConnectionPool | None = None
        self._client: redis.Redis | None = None
        self._is_connected = False

    async def connect(self) -> redis.Redis:
        """
        Establish connection to Redis with connection pooling.

        STAGE-REDIS.2: Connection establishment

        Returns:
            redis.Redis: Connected Redis client

        Raises:
            CacheConnectionError: If connection fails
        """
        if self._is_connected and self._client:
            return self._client

        redis_settings = self._settings.redis
        try:
            self._pool = ConnectionPool(
                host=redis_settings.REDIS_HOST,
                port=redis_settings.REDIS_PORT,
                db=redis_settings.REDIS_DB,
                password=redis_settings.REDIS_PASSWORD,
                max_connections=redis_settings.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=redis_settings.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=redis_settings.REDIS_SOCKET_TIMEOUT,
                health_check_interval=redis_settings.REDIS_HEALTH_CHECK_INTERVAL,
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self._pool)

            # Verify the pool actually reaches a server
            await self._client.ping()
            self._is_connected = True

            logger.info(
                "Redis connected successfully",
                stage="REDIS.2",
                host=redis_settings.REDIS_HOST,
                port=redis_settings.REDIS_PORT,
                max_connections=redis_settings.REDIS_MAX_CONNECTIONS,
            )
            return self._client

        except (ConnectionError, TimeoutError, OSError) as e:
            logger.error("Failed to connect to Redis", stage="REDIS.2", error=str(e))
            raise CacheConnectionError(
                message=f"Failed to connect to Redis: {e}",
                details={
                    "host": redis_settings.REDIS_HOST,
                    "port": redis_settings.REDIS_PORT,
                },
            )

    async def disconnect(self) -> None:
        """
        Close Redis client and pool.

        STAGE-REDIS.3: Connection cleanup
        """
        if self._client:
            await self._client.aclose()

        if self._pool:
            await self._pool.disconnect()

        self._client = None
        self._pool = None
        self._is_connected = False

        logger.info("Redis disconnected", stage="REDIS.3")

    async def ping(self) -> bool:
        """Return True if Redis answers a PING."""
        try:
            if self._client and self._is_connected:
                await self._client.ping()
                return True
        except (ConnectionError, TimeoutError):
            pass
        return False

    def get_client(self) -> redis.Redis | None:
        """Get the Redis client instance."""
        return self._client

    def get_pool(self) -> ConnectionPool | None:
        """Get the connection pool instance."""
        return self._pool

    def is_connected(self) -> bool:
        """Check if connected to Redis."""
        return self._is_connected


# =============================================================================
# LAYER 2: OPERATION EXECUTOR
# =============================================================================


class OperationExecutor:
    """
    Executes Redis operations with consistent error handling.

    Error Handling Strategy:
    - Catch RedisError exceptions
    - Log error with context (stage, key)
    - Raise CacheKeyError with details
    """

    def __init__(self, redis_client: redis.Redis):
        self._redis = redis_client

    # -------------------------------------------------------------------------
    # String Operations (scalar tier)
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        """
        Get value from Redis.

        STAGE-REDIS.GET: Redis GET operation
        """
        try:
            return await self._redis.get(key)
        except RedisError as e:
            logger.error("Redis GET failed", stage="REDIS.GET", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis GET failed: {e}", details={"key": key})

    async def set(self, key: str, value: str, ttl_ms: int | None = None) -> bool:
        """
        Set value in Redis, optionally with a millisecond expiry (SET PX).

        STAGE-REDIS.SET: Redis SET operation
        """
        try:
            result = await self._redis.set(key, value, px=ttl_ms or None)
            return result is not None
        except RedisError as e:
            logger.error("Redis SET failed", stage="REDIS.SET", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis SET failed: {e}", details={"key": key})

    async def delete(self, *keys: str) -> int:
        """
        Delete keys from Redis.

        STAGE-REDIS.DEL: Redis DELETE operation
        """
        if not keys:
            return 0
        try:
            return await self._redis.delete(*keys)
        except RedisError as e:
            logger.error("Redis DELETE failed", stage="REDIS.DEL", keys=keys, error=str(e))
            raise CacheKeyError(message=f"Redis DELETE failed: {e}", details={"keys": keys})

    async def scan_keys(self, pattern: str) -> list[str]:
        """
        Collect keys matching a glob pattern with SCAN (never KEYS).

        STAGE-REDIS.SCAN: Redis SCAN operation
        """
        try:
            return [key async for key in self._redis.scan_iter(match=pattern, count=500)]
        except RedisError as e:
            logger.error("Redis SCAN failed", stage="REDIS.SCAN", pattern=pattern, error=str(e))
            raise CacheKeyError(
                message=f"Redis SCAN failed: {e}", details={"pattern": pattern}
            )

    # -------------------------------------------------------------------------
    # Hash Operations (structured tier partitions)
    # -------------------------------------------------------------------------

    async def hget(self, name: str, key: str) -> str | None:
        """Get a hash field value."""
        try:
            return await self._redis.hget(name, key)
        except RedisError as e:
            logger.error("Redis HGET failed", stage="REDIS.HGET", name=name, key=key, error=str(e))
            raise CacheKeyError(
                message=f"Redis HGET failed: {e}",
                details={"name": name, "key": key},
            )

    async def hset(self, name: str, key: str, value: str) -> int:
        """Set a hash field value."""
        try:
            return await self._redis.hset(name, key, value)
        except RedisError as e:
            logger.error("Redis HSET failed", stage="REDIS.HSET", name=name, key=key, error=str(e))
            raise CacheKeyError(
                message=f"Redis HSET failed: {e}",
                details={"name": name, "key": key},
            )

    async def hkeys(self, name: str) -> list[str]:
        """List hash field names."""
        try:
            return await self._redis.hkeys(name)
        except RedisError as e:
            logger.error("Redis HKEYS failed", stage="REDIS.HKEYS", name=name, error=str(e))
            raise CacheKeyError(message=f"Redis HKEYS failed: {e}", details={"name": name})

    async def hdel(self, name: str, *keys: str) -> int:
        """Delete hash fields."""
        if not keys:
            return 0
        try:
            return await self._redis.hdel(name, *keys)
        except RedisError as e:
            logger.error("Redis HDEL failed", stage="REDIS.HDEL", name=name, keys=keys, error=str(e))
            raise CacheKeyError(
                message=f"Redis HDEL failed: {e}",
                details={"name": name, "keys": keys},
            )


# =============================================================================
# LAYER 3: HEALTH MONITORING
# =============================================================================


class HealthMonitor:
    """
    Monitors Redis health and connection pool metrics.

    Metrics Tracked:
    - Connection status
    - Ping latency
    - Pool size and utilization (warning above 80%)
    """

    def __init__(self, connection_manager: ConnectionManager, settings: Settings):
        self._conn_mgr = connection_manager
        self._settings = settings

    async def health_check(self) -> dict[str, Any]:
        """
        Perform health check on Redis connection.

        STAGE-REDIS.HEALTH: Redis health check
        """
        health = {
            "status": "healthy",
            "connected": self._conn_mgr.is_connected(),
            "host": self._settings.redis.REDIS_HOST,
            "port": self._settings.redis.REDIS_PORT,
            "pool_size": 0,
            "pool_utilization_pct": 0,
            "pool_warning": False,
            "ping_latency_ms": None,
        }

        client = self._conn_mgr.get_client()
        if not client:
            health["status"] = "unhealthy"
            health["error"] = "Client not initialized"
            return health

        try:
            start = time.perf_counter()
            await client.ping()
            health["ping_latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
        except RedisError as e:
            health["status"] = "unhealthy"
            health["error"] = str(e)
            return health

        pool = self._conn_mgr.get_pool()
        if pool:
            health["pool_size"] = pool.max_connections
            if hasattr(pool, "_available_connections") and hasattr(pool, "_in_use_connections"):
                in_use = len(pool._in_use_connections)
                utilization = 100.0 * in_use / pool.max_connections
                health["pool_utilization_pct"] = round(utilization, 1)
                if utilization > 80:
                    health["pool_warning"] = True
                    logger.warning(
                        "Redis pool utilization high",
                        pool_utilization=utilization,
                        max_connections=pool.max_connections,
                    )

        return health


# =============================================================================
# LAYER 4: PUBLIC API
# =============================================================================


class RedisClient:
    """
    Async Redis client with connection pooling and health checks.

    Usage:
        client = RedisClient(settings)
        await client.connect()

        await client.set("key", "value", ttl_ms=300_000)
        value = await client.get("key")

        await client.disconnect()

    One instance is created by the composition root (taskboard_cache.app)
    and shared by both durable tiers.
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize Redis client.

        STAGE-REDIS.1: Client initialization
        """
        self._settings = settings or get_settings()

        self._conn_mgr = ConnectionManager(self._settings)
        self._executor: OperationExecutor | None = None
        self._health_monitor = HealthMonitor(self._conn_mgr, self._settings)

        logger.info(
            "Redis client initialized",
            stage="REDIS.1",
            host=self._settings.redis.REDIS_HOST,
            port=self._settings.redis.REDIS_PORT,
        )

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        Raises:
            CacheConnectionError: If connection fails
        """
        client = await self._conn_mgr.connect()
        self._executor = OperationExecutor(client)

    async def disconnect(self) -> None:
        """Close Redis connection and pool."""
        await self._conn_mgr.disconnect()
        self._executor = None

    async def ping(self) -> bool:
        """Return True if Redis is reachable."""
        return await self._conn_mgr.ping()

    def _require_executor(self) -> OperationExecutor:
        if self._executor is None:
            raise CacheConnectionError("Redis client is not connected")
        return self._executor

    # -------------------------------------------------------------------------
    # Delegate to OperationExecutor
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        """Get value from Redis."""
        return await self._require_executor().get(key)

    async def set(self, key: str, value: str, ttl_ms: int | None = None) -> bool:
        """Set value in Redis."""
        return await self._require_executor().set(key, value, ttl_ms)

    async def delete(self, *keys: str) -> int:
        """Delete keys from Redis."""
        return await self._require_executor().delete(*keys)

    async def scan_keys(self, pattern: str) -> list[str]:
        """Collect keys matching a glob pattern."""
        return await self._require_executor().scan_keys(pattern)

    async def hget(self, name: str, key: str) -> str | None:
        """Get a hash field value."""
        return await self._require_executor().hget(name, key)

    async def hset(self, name: str, key: str, value: str) -> int:
        """Set a hash field value."""
        return await self._require_executor().hset(name, key, value)

    async def hkeys(self, name: str) -> list[str]:
        """List hash field names."""
        return await self._require_executor().hkeys(name)

    async def hdel(self, name: str, *keys: str) -> int:
        """Delete hash fields."""
        return await self._require_executor().hdel(name, *keys)

    async def health_check(self) -> dict[str, Any]:
        """Perform health check on Redis connection."""
        return await self._health_monitor.health_check()
