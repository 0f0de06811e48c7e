"""Row store abstraction behind the index engine.

Defines the storage layer following the Repository Pattern: the engine talks
to an ``AbstractRowStore`` and never to a database driver directly, so the
backing store can be SQLite, any SQLAlchemy-supported server, or memory.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, ClassVar

from entity_index.domain.model import ENTITY_ID_MAX_LENGTH, LABEL_MAX_LENGTH, IndexRow
from entity_index.exceptions import WriteError


if TYPE_CHECKING:
    from entity_index.search.predicates import SearchPredicate


DEFAULT_TABLE = "index_rows"


def check_row_bounds(row: IndexRow) -> None:
    """Reject rows that do not fit the column bounds of the schema.

    Raises:
        WriteError: If a bounded column is too long.
    """
    if len(row.entity_id) > ENTITY_ID_MAX_LENGTH:
        raise WriteError(f"entity_id longer than {ENTITY_ID_MAX_LENGTH} characters: {row.entity_id!r}")
    if len(row.type) > LABEL_MAX_LENGTH:
        raise WriteError(f"type longer than {LABEL_MAX_LENGTH} characters for entity {row.entity_id!r}")
    if len(row.key) > LABEL_MAX_LENGTH:
        raise WriteError(f"key longer than {LABEL_MAX_LENGTH} characters for entity {row.entity_id!r}")


class AbstractRowStore(ABC):
    """Abstract transactional store of index rows.

    Implementations must make ``replace_entity`` atomic: readers see either the
    old rows of the entity or the new ones, never a mix or an empty gap.
    """

    backend_name: ClassVar[str] = "abstract"

    def __init__(self, table: str = DEFAULT_TABLE) -> None:
        self.table = table

    def __enter__(self) -> AbstractRowStore:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @abstractmethod
    def open(self) -> None:
        """Acquire the connection and create the table if it is missing.

        Raises:
            StorageUnavailable: If the store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release every connection held by the store."""
        raise NotImplementedError

    @abstractmethod
    def insert_rows(self, rows: Sequence[IndexRow]) -> int:
        """Insert rows in one transaction and return how many were written."""
        raise NotImplementedError

    @abstractmethod
    def delete_entity(self, entity_id: str) -> int:
        """Delete every row of an entity and return how many were removed."""
        raise NotImplementedError

    @abstractmethod
    def replace_entity(self, entity_id: str, rows: Sequence[IndexRow]) -> int:
        """Delete the entity's rows and insert ``rows`` in a single transaction."""
        raise NotImplementedError

    @abstractmethod
    def find_entity_ids(self, predicate: SearchPredicate) -> set[str]:
        """Return distinct entity ids of rows matching the predicate."""
        raise NotImplementedError

    @abstractmethod
    def count_rows(self) -> int:
        """Return the number of stored rows."""
        raise NotImplementedError

    def describe(self) -> dict[str, str]:
        return {"backend": self.backend_name, "table": self.table}
