"""
Durable Storage Protocol

One interface, two implementations (see infrastructure/cache/durable_storage.py):

- StructuredStorage: large records/collections, partitioned by namespace
- ScalarStorage: flat key -> serialized-string pairs for small scalars

CacheStore only talks to this protocol, so swapping Redis for an embedded
on-disk key-value store does not change the CacheStore contract.
"""

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from taskboard_cache.core.config.constants import CacheTier

if TYPE_CHECKING:
    from taskboard_cache.infrastructure.cache.entry import CacheEntry


@runtime_checkable
class DurableStorage(Protocol):
    """
    Protocol for a durable cache tier.

    Implementations may raise CacheError subclasses; CacheStore treats every
    such failure as non-fatal.
    """

    tier: CacheTier

    async def connect(self) -> None:
        """Open the underlying backend."""
        ...

    async def read(self, key: str) -> "CacheEntry | None":
        """Return the stored entry (possibly expired), or None."""
        ...

    async def write(self, entry: "CacheEntry") -> None:
        """Persist an entry, replacing any previous one for the same key."""
        ...

    async def remove(self, key: str) -> None:
        """Remove one entry."""
        ...

    async def remove_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``."""
        ...

    async def clear(self) -> int:
        """Remove every entry owned by this tier."""
        ...

    async def health_check(self) -> dict[str, Any]:
        """Return a health status dict."""
        ...
