"""In-memory row store for tests and hosts that do not persist the index."""

from __future__ import annotations

from collections.abc import Sequence
import threading

from entity_index.domain.model import IndexRow
from entity_index.exceptions import StorageUnavailable
from entity_index.search.predicates import SearchPredicate
from entity_index.search.row_store import DEFAULT_TABLE, AbstractRowStore, check_row_bounds


class InMemoryRowStore(AbstractRowStore):
    """Row store keeping rows in a dict keyed by entity id.

    A single lock serializes writers and readers, which makes
    ``replace_entity`` atomic with respect to ``find_entity_ids``.
    """

    backend_name = "memory"

    def __init__(self, table: str = DEFAULT_TABLE) -> None:
        super().__init__(table)
        self._rows: dict[str, list[IndexRow]] = {}
        self._lock = threading.Lock()
        self._open = False

    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        self._open = False

    def _ensure_open(self) -> None:
        if not self._open:
            raise StorageUnavailable("In-memory index is closed")

    def insert_rows(self, rows: Sequence[IndexRow]) -> int:
        self._ensure_open()
        for row in rows:
            check_row_bounds(row)
        with self._lock:
            for row in rows:
                self._rows.setdefault(row.entity_id, []).append(row)
        return len(rows)

    def delete_entity(self, entity_id: str) -> int:
        self._ensure_open()
        with self._lock:
            return len(self._rows.pop(entity_id, []))

    def replace_entity(self, entity_id: str, rows: Sequence[IndexRow]) -> int:
        self._ensure_open()
        for row in rows:
            check_row_bounds(row)
        with self._lock:
            self._rows.pop(entity_id, None)
            for row in rows:
                self._rows.setdefault(row.entity_id, []).append(row)
        return len(rows)

    def find_entity_ids(self, predicate: SearchPredicate) -> set[str]:
        self._ensure_open()
        with self._lock:
            return {
                entity_id
                for entity_id, rows in self._rows.items()
                if any(predicate.matches(row) for row in rows)
            }

    def count_rows(self) -> int:
        self._ensure_open()
        with self._lock:
            return sum(len(rows) for rows in self._rows.values())
