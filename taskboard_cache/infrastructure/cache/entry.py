"""
Cache Entry

The unit every tier stores. Durable tiers persist it as an orjson record:

    {"key": ..., "value": ..., "createdAt": <epoch ms>, "expiresAt": <epoch ms>}
"""

from dataclasses import dataclass, replace
from typing import Any

import orjson

from taskboard_cache.core.config.constants import CacheTier
from taskboard_cache.core.exceptions import CacheKeyError


@dataclass(frozen=True)
class CacheEntry:
    """A cached value with its absolute expiry (epoch milliseconds)."""

    key: str
    value: Any
    created_at: int
    expires_at: int
    tier: CacheTier = CacheTier.MEMORY

    @classmethod
    def create(cls, key: str, value: Any, ttl_ms: int, now_ms: int,
               tier: CacheTier = CacheTier.MEMORY) -> "CacheEntry":
        return cls(key=key, value=value, created_at=now_ms,
                   expires_at=now_ms + ttl_ms, tier=tier)

    def is_expired(self, now_ms: int) -> bool:
        """Entries are logically absent from their expiry instant onward."""
        return now_ms >= self.expires_at

    def with_tier(self, tier: CacheTier) -> "CacheEntry":
        return replace(self, tier=tier)

    def to_record(self) -> str:
        """Serialize for a durable tier."""
        try:
            return orjson.dumps({
                "key": self.key,
                "value": self.value,
                "createdAt": self.created_at,
                "expiresAt": self.expires_at,
            }).decode()
        except TypeError as e:
            raise CacheKeyError(
                message=f"Value is not serializable: {e}",
                details={"key": self.key},
            )

    @classmethod
    def from_record(cls, raw: str | bytes, tier: CacheTier) -> "CacheEntry":
        """
        Rebuild an entry from a persisted record.

        Raises:
            CacheKeyError: If the record is corrupt
        """
        try:
            data = orjson.loads(raw)
            return cls(
                key=data["key"],
                value=data["value"],
                created_at=int(data["createdAt"]),
                expires_at=int(data["expiresAt"]),
                tier=tier,
            )
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise CacheKeyError(message=f"Corrupt cache record: {e}", details={"tier": tier.value})
