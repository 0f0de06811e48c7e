"""Storage factory for choosing between the SQLite, SQLAlchemy and in-memory backends."""

from entity_index.config import Settings
from entity_index.search.memory_storage import InMemoryRowStore
from entity_index.search.row_store import AbstractRowStore
from entity_index.search.sqlite_storage import SqliteRowStore


def create_row_store(settings: Settings) -> AbstractRowStore:
    """Create the row store selected by ``settings.backend``.

    The store is returned unopened; the engine owns opening and closing it.
    """
    if settings.backend == "memory":
        return InMemoryRowStore(table=settings.table)
    if settings.backend == "sqlalchemy":
        # Imported lazily so SQLite-only deployments never load SQLAlchemy
        from entity_index.search.sqlalchemy_storage import SqlAlchemyRowStore

        return SqlAlchemyRowStore(
            settings.sqlalchemy_url(),
            table=settings.table,
            timeout_seconds=settings.storage_timeout_seconds,
        )
    return SqliteRowStore(
        settings.sqlite_path,
        table=settings.table,
        timeout_seconds=settings.storage_timeout_seconds,
    )
