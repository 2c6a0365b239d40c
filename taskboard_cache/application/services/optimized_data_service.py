"""
Optimized Data Service
======================

Cached access to one remote document collection (employees, tasks, clients,
attendance, ...).

WHAT IT ADDS ON TOP OF THE GATEWAY
----------------------------------
- Reads go through CacheService.get_or_fetch, so repeated and concurrent
  identical queries cost one remote read per TTL.
- Writes invalidate the collection ("{collection}:") and every derived
  namespace built from it (e.g. "dashboard:stats") BEFORE returning, so the
  caller's next read sees its own write.
- A failed write invalidates nothing and re-raises the gateway's error.

NAMESPACES
----------
"{collection}:getAll"   query results (structured tier)
"{collection}:getById"  single records (memory tier)
"{collection}:search"   substring search results (memory tier)
"""

import asyncio
from typing import Any, Literal

from pydantic import BaseModel, Field

from taskboard_cache.application.services.cache_service import CacheService
from taskboard_cache.core.config.constants import (
    METHOD_GET_ALL,
    METHOD_GET_BY_ID,
    METHOD_SEARCH,
    NAMESPACE_SEPARATOR,
    CacheTier,
    Stage,
)
from taskboard_cache.core.interfaces.data_source import CollectionGateway, Record
from taskboard_cache.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)


FilterOperator = Literal[
    "<", "<=", "==", "!=", ">=", ">",
    "array-contains", "array-contains-any", "in", "not-in",
]


class FilterParam(BaseModel):
    """One ``where`` constraint, passed through to the gateway."""

    field: str = Field(..., min_length=1)
    operator: FilterOperator = "=="
    value: Any = None


class QueryOptions(BaseModel):
    """
    Query for ``get_all``.

    Only the JSON dump without None fields takes part in the cache key, so
    ``QueryOptions()`` and no query at all share one entry.
    """

    filters: list[FilterParam] = Field(default_factory=list)
    order_by_field: str | None = None
    order_direction: Literal["asc", "desc"] = "asc"
    page_size: int | None = Field(default=None, gt=0)
    start_after: str | None = None

    def cache_params(self) -> dict[str, Any]:
        params = self.model_dump(mode="json", exclude_none=True)
        if not params.get("filters"):
            params.pop("filters", None)
        if params.get("order_direction") == "asc" and "order_by_field" not in params:
            params.pop("order_direction")
        return params


def _as_query(query: QueryOptions | dict[str, Any] | None) -> QueryOptions | None:
    if query is None or isinstance(query, QueryOptions):
        return query
    return QueryOptions.model_validate(query)


class OptimizedDataService:
    """
    Cache-aware wrapper around a CollectionGateway.

    USAGE:
    ------
    employees = OptimizedDataService(
        "employees",
        gateway,
        cache_service,
        derived_namespaces=("dashboard:stats",),
    )
    active = await employees.get_all(QueryOptions(filters=[FilterParam(field="active", value=True)]))
    await employees.create({"name": "Ada"})   # drops employees:* and dashboard:stats*
    """

    def __init__(
        self,
        collection: str,
        gateway: CollectionGateway,
        cache_service: CacheService,
        derived_namespaces: tuple[str, ...] | list[str] = (),
        default_ttl_ms: int | None = None,
    ):
        self.collection = collection
        self.cache_service = cache_service
        self._gateway = gateway
        self._derived_namespaces = tuple(derived_namespaces)
        self._default_ttl_ms = default_ttl_ms
        self._revalidations: set[asyncio.Task] = set()

    # ------------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------------

    @property
    def collection_prefix(self) -> str:
        return f"{self.collection}{NAMESPACE_SEPARATOR}"

    def namespace(self, method: str) -> str:
        return f"{self.collection_prefix}{method}"

    @property
    def derived_namespaces(self) -> tuple[str, ...]:
        return self._derived_namespaces

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    async def get_all(
        self,
        query: QueryOptions | dict[str, Any] | None = None,
        use_cache: bool = True,
        cache_ttl_ms: int | None = None,
    ) -> list[Record]:
        """
        All records matching ``query``.

        ``use_cache=False`` goes straight to the gateway and leaves the cache
        untouched.
        """
        query = _as_query(query)
        if not use_cache:
            return await self._gateway.fetch_many(query)

        return await self.cache_service.get_or_fetch(
            self.namespace(METHOD_GET_ALL),
            query.cache_params() if query else None,
            lambda: self._gateway.fetch_many(query),
            ttl_ms=cache_ttl_ms or self._default_ttl_ms,
            tier=CacheTier.STRUCTURED,
        )

    async def get_all_fresh(
        self,
        query: QueryOptions | dict[str, Any] | None = None,
        cache_ttl_ms: int | None = None,
    ) -> list[Record]:
        """
        Stale-while-revalidate read.

        A cached result is returned at once (it may be up to one TTL old) and
        a forced refresh is started in the background. On a miss this is
        ``get_all``.
        """
        query = _as_query(query)
        params = query.cache_params() if query else None

        cached = await self.cache_service.peek(self.namespace(METHOD_GET_ALL), params)
        if cached is None:
            return await self.get_all(query, cache_ttl_ms=cache_ttl_ms)

        task = asyncio.create_task(self._revalidate(query, params, cache_ttl_ms))
        self._revalidations.add(task)
        task.add_done_callback(self._revalidations.discard)
        return cached

    async def _revalidate(
        self,
        query: QueryOptions | None,
        params: dict[str, Any] | None,
        cache_ttl_ms: int | None,
    ) -> None:
        try:
            await self.cache_service.get_or_fetch(
                self.namespace(METHOD_GET_ALL),
                params,
                lambda: self._gateway.fetch_many(query),
                ttl_ms=cache_ttl_ms or self._default_ttl_ms,
                tier=CacheTier.STRUCTURED,
                force_refresh=True,
            )
        except Exception as e:
            # The caller already has its (stale) answer; keep the old entry
            log_stage(
                logger,
                Stage.DATA_SERVICE,
                "Background revalidation failed",
                level="warning",
                collection=self.collection,
                error_type=type(e).__name__,
                error=str(e),
            )

    async def wait_for_revalidation(self) -> None:
        """Wait for background refreshes started by ``get_all_fresh``."""
        if self._revalidations:
            await asyncio.gather(*list(self._revalidations), return_exceptions=True)

    async def get_by_id(self, record_id: str, use_cache: bool = True) -> Record | None:
        """One record, or None. Missing records are not cached."""
        if not use_cache:
            return await self._gateway.fetch_one(record_id)

        namespace = self.namespace(METHOD_GET_BY_ID)
        params = {"id": record_id}
        record = await self.cache_service.get_or_fetch(
            namespace,
            params,
            lambda: self._gateway.fetch_one(record_id),
            ttl_ms=self._default_ttl_ms,
            tier=CacheTier.MEMORY,
        )
        if record is None:
            await self.cache_service.invalidate(namespace, params)
        return record

    async def search(
        self,
        field: str,
        term: str,
        query: QueryOptions | dict[str, Any] | None = None,
    ) -> list[Record]:
        """Case-insensitive substring match of ``term`` on a string ``field``."""
        query = _as_query(query)
        params = {"field": field, "term": term}
        if query is not None:
            params["query"] = query.cache_params()

        async def run_search() -> list[Record]:
            needle = term.lower()
            records = await self.get_all(query)
            return [
                record for record in records
                if isinstance(record.get(field), str) and needle in record[field].lower()
            ]

        return await self.cache_service.get_or_fetch(
            self.namespace(METHOD_SEARCH),
            params,
            run_search,
            ttl_ms=self._default_ttl_ms,
            tier=CacheTier.MEMORY,
        )

    # ------------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------------

    async def create(self, payload: Record) -> Record:
        record = await self._gateway.create(payload)
        await self.invalidate_cache()
        log_stage(logger, Stage.DATA_SERVICE, "Record created",
                  collection=self.collection, record_id=record.get("id"))
        return record

    async def update(self, record_id: str, payload: Record) -> Record:
        record = await self._gateway.update(record_id, payload)
        await self.invalidate_cache()
        log_stage(logger, Stage.DATA_SERVICE, "Record updated",
                  collection=self.collection, record_id=record_id)
        return record

    async def delete(self, record_id: str) -> None:
        await self._gateway.delete(record_id)
        await self.invalidate_cache()
        log_stage(logger, Stage.DATA_SERVICE, "Record deleted",
                  collection=self.collection, record_id=record_id)

    async def invalidate_cache(self) -> None:
        """Drop every cached read of this collection and its derived namespaces."""
        await self.cache_service.invalidate_pattern(self.collection_prefix)
        for namespace in self._derived_namespaces:
            await self.cache_service.invalidate_pattern(namespace)
