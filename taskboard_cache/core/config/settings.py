#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
dashboard data layer (tiered cache + real-time listener management).
All configuration is centralized here to ensure consistency across modules.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- IDE autocomplete for all settings
- Easy testing with override mechanisms

Time units:
    All cache and listener durations are expressed in MILLISECONDS (the unit
    the dashboard uses for TTLs and throttle windows). Redis socket timeouts
    stay in seconds, matching redis-py.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskboard_cache.core.config.constants import (
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_DURABLE_TIMEOUT_MS,
    DEFAULT_THROTTLE_MS,
    DEFAULT_TTL_MS,
)


class RedisSettings(BaseSettings):
    """
    Redis configuration for the durable cache tiers.

    STAGE-0.1: Redis connection configuration

    The structured and scalar durable tiers share one connection pool.
    Timeouts are kept short: a slow durable tier must degrade to memory-only
    instead of stalling dashboard reads.
    """

    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")

    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum total connections")
    REDIS_SOCKET_TIMEOUT: int = Field(default=2, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(default=2, description="Connection timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CacheSettings(BaseSettings):
    """
    Tiered cache configuration.

    STAGE-2: Cache TTL and tier configuration

    Tiers:
    - Memory: per-process LRU, bounded by CACHE_MEMORY_MAX_ENTRIES
    - Structured: Redis hashes partitioned by namespace (collections, records)
    - Scalar: flat Redis strings (small scalar payloads)
    """

    CACHE_DEFAULT_TTL_MS: int = Field(default=DEFAULT_TTL_MS, description="Default entry TTL (5 minutes)")
    CACHE_MEMORY_MAX_ENTRIES: int = Field(default=1000, description="Memory tier max entries")
    CACHE_DURABLE_TIMEOUT_MS: int = Field(default=DEFAULT_DURABLE_TIMEOUT_MS, description="Bound on every durable-tier call")
    CACHE_SCALAR_MAX_BYTES: int = Field(
        default=4096, description="Scalars larger than this go to the structured tier"
    )
    CACHE_KEY_PREFIX: str = Field(default="cache", description="Redis key prefix for all tiers")
    CACHE_DURABLE_ENABLED: bool = Field(default=True, description="Use the Redis-backed tiers")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ListenerSettings(BaseSettings):
    """
    Real-time listener configuration.

    STAGE-RT: Listener throttle/debounce defaults
    """

    LISTENER_DEFAULT_THROTTLE_MS: int = Field(default=DEFAULT_THROTTLE_MS, description="Default throttle window")
    LISTENER_DEFAULT_DEBOUNCE_MS: int = Field(default=DEFAULT_DEBOUNCE_MS, description="Default debounce delay")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """
    General application settings.

    STAGE-0: Application initialization
    """

    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    DEBUG: bool = Field(default=False, description="Debug mode")
    APP_NAME: str = Field(default="Taskboard Data Layer", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from taskboard_cache.core.config.settings import get_settings

        settings = get_settings()
        ttl = settings.cache.CACHE_DEFAULT_TTL_MS
        redis_host = settings.redis.REDIS_HOST
    """

    # Redis settings
    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum total connections")
    REDIS_SOCKET_TIMEOUT: int = Field(default=2, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(default=2, description="Connection timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    # Cache settings
    ENABLE_CACHING: bool = Field(default=True, description="Master switch for the cache")
    CACHE_DEFAULT_TTL_MS: int = Field(default=DEFAULT_TTL_MS, description="Default entry TTL (5 minutes)")
    CACHE_MEMORY_MAX_ENTRIES: int = Field(default=1000, description="Memory tier max entries")
    CACHE_DURABLE_TIMEOUT_MS: int = Field(default=DEFAULT_DURABLE_TIMEOUT_MS, description="Bound on every durable-tier call")
    CACHE_SCALAR_MAX_BYTES: int = Field(
        default=4096, description="Scalars larger than this go to the structured tier"
    )
    CACHE_KEY_PREFIX: str = Field(default="cache", description="Redis key prefix for all tiers")
    CACHE_DURABLE_ENABLED: bool = Field(default=True, description="Use the Redis-backed tiers")

    # Listener settings
    LISTENER_DEFAULT_THROTTLE_MS: int = Field(default=DEFAULT_THROTTLE_MS, description="Default throttle window")
    LISTENER_DEFAULT_DEBOUNCE_MS: int = Field(default=DEFAULT_DEBOUNCE_MS, description="Default debounce delay")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    DEBUG: bool = Field(default=False, description="Debug mode")
    APP_NAME: str = Field(default="Taskboard Data Layer", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator(
        "CACHE_DEFAULT_TTL_MS",
        "CACHE_MEMORY_MAX_ENTRIES",
        "CACHE_DURABLE_TIMEOUT_MS",
        "LISTENER_DEFAULT_THROTTLE_MS",
        "LISTENER_DEFAULT_DEBOUNCE_MS",
    )
    @classmethod
    def validate_positive(cls, v, info):
        """Durations and capacities must be positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v

    # Nested configuration objects
    @property
    def redis(self) -> 'RedisSettings':
        """Get Redis settings."""
        return RedisSettings(
            REDIS_HOST=self.REDIS_HOST,
            REDIS_PORT=self.REDIS_PORT,
            REDIS_DB=self.REDIS_DB,
            REDIS_PASSWORD=self.REDIS_PASSWORD,
            REDIS_MAX_CONNECTIONS=self.REDIS_MAX_CONNECTIONS,
            REDIS_SOCKET_TIMEOUT=self.REDIS_SOCKET_TIMEOUT,
            REDIS_SOCKET_CONNECT_TIMEOUT=self.REDIS_SOCKET_CONNECT_TIMEOUT,
            REDIS_HEALTH_CHECK_INTERVAL=self.REDIS_HEALTH_CHECK_INTERVAL
        )

    @property
    def cache(self) -> 'CacheSettings':
        """Get cache settings."""
        return CacheSettings(
            CACHE_DEFAULT_TTL_MS=self.CACHE_DEFAULT_TTL_MS,
            CACHE_MEMORY_MAX_ENTRIES=self.CACHE_MEMORY_MAX_ENTRIES,
            CACHE_DURABLE_TIMEOUT_MS=self.CACHE_DURABLE_TIMEOUT_MS,
            CACHE_SCALAR_MAX_BYTES=self.CACHE_SCALAR_MAX_BYTES,
            CACHE_KEY_PREFIX=self.CACHE_KEY_PREFIX,
            CACHE_DURABLE_ENABLED=self.CACHE_DURABLE_ENABLED
        )

    @property
    def listeners(self) -> 'ListenerSettings':
        """Get listener settings."""
        return ListenerSettings(
            LISTENER_DEFAULT_THROTTLE_MS=self.LISTENER_DEFAULT_THROTTLE_MS,
            LISTENER_DEFAULT_DEBOUNCE_MS=self.LISTENER_DEFAULT_DEBOUNCE_MS
        )

    @property
    def logging(self) -> 'LoggingSettings':
        """Get logging settings."""
        return LoggingSettings(
            LOG_LEVEL=self.LOG_LEVEL,
            LOG_FORMAT=self.LOG_FORMAT
        )

    @property
    def app(self) -> 'ApplicationSettings':
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            DEBUG=self.DEBUG,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Ignore extra environment variables
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Settings are configuration, not mutable cache state, so a lazily created
    module-level instance is fine here. The cache itself is never a module
    singleton; see taskboard_cache.app.DataLayer.

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
