"""
Remote Data Source Protocols

Interfaces consumed from external collaborators:

- CollectionGateway: the business data-access layer for one document
  collection (employees, tasks, clients, ...). Supplied by the application.
- SubscribeFn / UnsubscribeFn: the real-time database client's subscription
  factory, as seen by the ListenerManager.
"""

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

Record = dict[str, Any]

UnsubscribeFn = Callable[[], Any]
SubscribeFn = Callable[[], UnsubscribeFn]
CleanupFn = Callable[[], None]


@runtime_checkable
class CollectionGateway(Protocol):
    """
    Remote operations on a single collection.

    The query object passed to ``fetch_many`` is the caller's QueryOptions,
    forwarded untouched; the gateway translates it into database constraints.
    """

    async def fetch_many(self, query: Any) -> list[Record]:
        """Fetch every record matching ``query``."""
        ...

    async def fetch_one(self, record_id: str) -> Record | None:
        """Fetch one record by id, None if it does not exist."""
        ...

    async def create(self, payload: Record) -> Record:
        """Create a record and return it (with its id)."""
        ...

    async def update(self, record_id: str, payload: Record) -> Record:
        """Update a record and return its new state."""
        ...

    async def delete(self, record_id: str) -> None:
        """Delete a record."""
        ...
