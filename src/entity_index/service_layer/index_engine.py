"""Index engine - keeps the row store consistent with entity state.

The engine owns the row store it is given (or builds one from settings),
flattens attributes through the normalizer and composes search predicates.

Failure policy:
- If the store cannot be opened at start-up the engine starts degraded:
  writes are skipped and searches return an empty set.
- A store that stops answering after it was opened is "lost". Searches on a
  lost store return an empty set; writes raise ``StorageUnavailable`` so the
  caller knows the index is falling behind.
- While unavailable, every call first tries to reopen the store, at most
  once per ``reconnect_interval_seconds`` after a failed attempt. The first
  call after a loss always retries.
- ``WriteError`` is re-raised; callers decide whether to retry.
- Searches never raise for missing results or an unavailable store.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
import logging
import time
from typing import Any

from entity_index.config import Settings
from entity_index.domain.model import EntitySnapshot
from entity_index.domain.normalizer import flatten, type_of
from entity_index.exceptions import QueryError, StorageUnavailable, WriteError
from entity_index.observability.context import bind_entity
from entity_index.observability.metrics import (
    INDEX_OPERATIONS,
    ROWS_WRITTEN,
    SEARCH_LATENCY,
    STORE_AVAILABLE,
    track_latency,
)
from entity_index.observability.tracing import create_span
from entity_index.search.predicates import SearchPredicate
from entity_index.search.row_store import AbstractRowStore
from entity_index.search.storage_factory import create_row_store


logger = logging.getLogger(__name__)


class IndexEngine:
    """Attribute index over graph entities.

    Args:
        store: Row store to own. Built from ``settings`` when omitted.
        settings: Configuration; read from the environment when omitted.
    """

    def __init__(self, store: AbstractRowStore | None = None, *, settings: Settings | None = None) -> None:
        self.settings = settings if settings is not None else Settings()
        self._store = store if store is not None else create_row_store(self.settings)
        self._substring = self.settings.is_substring_match()
        self._reconnect_interval = self.settings.reconnect_interval_seconds
        self._available = False
        self._ever_opened = False
        self._closed = False
        self._next_reconnect_at = 0.0
        self.reconnect()

    def __enter__(self) -> IndexEngine:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def store(self) -> AbstractRowStore:
        return self._store

    @property
    def backend(self) -> str:
        return self._store.backend_name

    @property
    def is_available(self) -> bool:
        return self._available

    def reconnect(self) -> bool:
        """(Re)open the row store; returns whether the index is usable."""
        self._closed = False
        self._store.close()
        try:
            self._store.open()
        except StorageUnavailable as exc:
            logger.warning("Index store %s unavailable: %s", self.backend, exc)
            self._mark_unavailable()
            self._next_reconnect_at = time.monotonic() + self._reconnect_interval
            return False
        if self._ever_opened:
            logger.info("Index store %s reconnected", self.backend)
        self._available = True
        self._ever_opened = True
        STORE_AVAILABLE.labels(backend=self.backend).set(1)
        return True

    def close(self) -> None:
        """Release the row store. Only an explicit ``reconnect()`` reopens it."""
        self._store.close()
        self._closed = True
        self._mark_unavailable()

    def _mark_unavailable(self) -> None:
        self._available = False
        STORE_AVAILABLE.labels(backend=self.backend).set(0)

    def _lose_store(self) -> None:
        """Record that an opened store stopped answering; the next call retries."""
        self._mark_unavailable()
        self._next_reconnect_at = 0.0

    def _ensure_available(self) -> bool:
        if self._available:
            return True
        if self._closed or time.monotonic() < self._next_reconnect_at:
            return False
        return self.reconnect()

    @staticmethod
    def type_of(type_chain: Sequence[str] | str) -> str:
        """Representative type label for a type chain, most specific first."""
        return type_of(type_chain)

    def _write(self, operation: str, entity_id: str, action: Callable[[], int]) -> int:
        if not self._ensure_available():
            if self._closed or self._ever_opened:
                INDEX_OPERATIONS.labels(operation=operation, status="unavailable").inc()
                state = "closed" if self._closed else "unavailable"
                raise StorageUnavailable(f"Index store {self.backend} is {state}; {operation} of {entity_id} not applied")
            logger.debug("Skipping %s of %s: index store never opened", operation, entity_id)
            INDEX_OPERATIONS.labels(operation=operation, status="skipped").inc()
            return 0

        attributes = {"index.entity_id": entity_id, "index.backend": self.backend}
        with bind_entity(entity_id, operation), create_span(f"index.{operation}", attributes=attributes):
            try:
                count = action()
            except StorageUnavailable:
                INDEX_OPERATIONS.labels(operation=operation, status="unavailable").inc()
                logger.warning("Index store %s lost during %s of %s", self.backend, operation, entity_id)
                self._lose_store()
                raise
            except WriteError as exc:
                INDEX_OPERATIONS.labels(operation=operation, status="error").inc()
                logger.error("Index %s of %s rejected: %s", operation, entity_id, exc)
                raise

        INDEX_OPERATIONS.labels(operation=operation, status="ok").inc()
        return count

    def add(self, entity_id: str, entity_type: str, attributes: Mapping[str, Any]) -> int:
        """Insert rows for an entity that was never indexed before.

        Existing rows are not touched, so indexing the same entity twice
        through ``add`` accumulates duplicates; use ``update`` when unsure.

        Returns:
            Number of rows written.

        Raises:
            StorageUnavailable: If the store became unreachable.
            WriteError: If the store rejected the insert.
        """
        rows = flatten(entity_id, entity_type, attributes)

        def action() -> int:
            written = self._store.insert_rows(rows)
            if written:
                ROWS_WRITTEN.labels(backend=self.backend).inc(written)
            return written

        return self._write("add", entity_id, action)

    def update(self, entity_id: str, entity_type: str, attributes: Mapping[str, Any]) -> int:
        """Replace every row of an entity in one transaction.

        Works for entities that were never indexed, and removes the entity
        from the index when ``attributes`` is empty. On failure the previous
        rows stay in place.

        Returns:
            Number of rows written.
        """
        rows = flatten(entity_id, entity_type, attributes)

        def action() -> int:
            written = self._store.replace_entity(entity_id, rows)
            if written:
                ROWS_WRITTEN.labels(backend=self.backend).inc(written)
            return written

        return self._write("update", entity_id, action)

    def remove(self, entity_id: str) -> int:
        """Delete every row of an entity. Removing an absent entity is a no-op."""
        return self._write("remove", entity_id, lambda: self._store.delete_entity(entity_id))

    def index(self, snapshot: EntitySnapshot, *, new: bool = False) -> int:
        """Index a host snapshot; ``new=True`` skips deleting previous rows."""
        entity_type = type_of(snapshot.type_chain)
        if new:
            return self.add(snapshot.entity_id, entity_type, snapshot.attributes)
        return self.update(snapshot.entity_id, entity_type, snapshot.attributes)

    def search(
        self,
        value: str,
        key: str | None = None,
        types: Iterable[str] | str | None = None,
    ) -> set[str]:
        """Return ids of entities with a row matching every given condition.

        Args:
            value: Attribute value; compared exactly, or as a substring when
                ``value_match="substring"`` is configured.
            key: Attribute name the value must belong to.
            types: Type label or labels the row must carry.

        Raises:
            QueryError: If no condition was given or an argument is malformed.
        """
        try:
            predicate = SearchPredicate.build(value, key, types, substring=self._substring)
        except QueryError:
            INDEX_OPERATIONS.labels(operation="search", status="invalid").inc()
            raise

        if not self._ensure_available():
            INDEX_OPERATIONS.labels(operation="search", status="skipped").inc()
            return set()

        attributes: dict[str, Any] = {"index.backend": self.backend, "index.substring": predicate.substring}
        if predicate.key is not None:
            attributes["index.key"] = predicate.key
        if predicate.types:
            attributes["index.types"] = list(predicate.types)

        with create_span("index.search", attributes=attributes) as span:
            with track_latency(SEARCH_LATENCY, backend=self.backend):
                try:
                    entity_ids = self._store.find_entity_ids(predicate)
                except StorageUnavailable as exc:
                    INDEX_OPERATIONS.labels(operation="search", status="unavailable").inc()
                    logger.warning("Index search on %s failed, returning no results: %s", self.backend, exc)
                    self._lose_store()
                    return set()
            span.set_attribute("index.result_count", len(entity_ids))

        INDEX_OPERATIONS.labels(operation="search", status="ok").inc()
        return entity_ids

    def search_flat(
        self,
        value: str,
        key: str | None = None,
        types: Iterable[str] | str | None = None,
    ) -> list[str]:
        """Same as ``search`` but returns the ids as a sorted list."""
        return sorted(self.search(value, key, types))

    def health(self) -> dict[str, Any]:
        """Report availability and size of the index."""
        row_count = -1
        if self._ensure_available():
            try:
                row_count = self._store.count_rows()
            except StorageUnavailable as exc:
                logger.warning("Index health check failed: %s", exc)
                self._lose_store()
        return {
            "status": "healthy" if self._available else "degraded",
            **self._store.describe(),
            "value_match": "substring" if self._substring else "exact",
            "row_count": row_count,
        }
