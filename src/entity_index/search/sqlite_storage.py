"""SQLite-based row store for the entity attribute index.

Follows the SQLite practices used elsewhere in the project:
- WAL mode with NORMAL synchronous so readers never block the writer
- One connection per thread, created lazily and tracked for shutdown
- Parameterized statements only; the table name is sanitized up front
- ``BEGIN IMMEDIATE`` transactions so replace-by-entity is atomic
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
import logging
from pathlib import Path
import sqlite3
import threading
import time

from entity_index.domain.model import ENTITY_ID_MAX_LENGTH, LABEL_MAX_LENGTH, IndexRow
from entity_index.exceptions import StorageUnavailable, WriteError
from entity_index.search.identifiers import sanitize_identifier
from entity_index.search.predicates import LIKE_ESCAPE_CHAR, SearchPredicate
from entity_index.search.row_store import DEFAULT_TABLE, AbstractRowStore
from entity_index.search.sqlite_pragmas import apply_connection_pragmas


logger = logging.getLogger(__name__)

_UNAVAILABLE_MARKERS = ("locked", "busy", "unable to open", "disk i/o", "closed database", "interrupted")

# VM instructions between deadline checks
_PROGRESS_STEPS = 1000


def _is_unavailable(exc: sqlite3.Error) -> bool:
    if isinstance(exc, sqlite3.ProgrammingError):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _UNAVAILABLE_MARKERS)


class SQLiteConnectionPool:
    """Thread-safe connection pool with thread-local connections."""

    def __init__(self, db_path: Path, *, timeout_seconds: float = 30.0):
        self.db_path = db_path
        self.timeout_seconds = timeout_seconds
        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections: list[sqlite3.Connection] = []

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a thread-local connection."""
        if getattr(self._local, "connection", None) is None:
            self._local.connection = self._create_connection()

        yield self._local.connection

    def _create_connection(self) -> sqlite3.Connection:
        """Create connection in autocommit mode; transactions are explicit."""
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout_seconds,
            isolation_level=None,
            check_same_thread=False,
        )
        apply_connection_pragmas(conn, busy_timeout_ms=int(self.timeout_seconds * 1000))
        with self._lock:
            self._connections.append(conn)
        return conn

    def close_all(self) -> None:
        """Close every connection handed out by this pool."""
        with self._lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error as exc:
                logger.warning("Failed to close SQLite connection for %s: %s", self.db_path, exc)
        self._local = threading.local()


class SqliteRowStore(AbstractRowStore):
    """Row store backed by a single SQLite database file."""

    backend_name = "sqlite"

    def __init__(
        self,
        db_path: str | Path,
        *,
        table: str = DEFAULT_TABLE,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(sanitize_identifier(table) or DEFAULT_TABLE)
        self.db_path = Path(db_path)
        self.timeout_seconds = timeout_seconds
        self._pool: SQLiteConnectionPool | None = None

        quoted = f'"{self.table}"'
        self._insert_sql = f'INSERT INTO {quoted} (entity_id, type, "key", value) VALUES (?, ?, ?, ?)'
        self._delete_sql = f"DELETE FROM {quoted} WHERE entity_id = ?"
        self._count_sql = f"SELECT COUNT(*) FROM {quoted}"

    def open(self) -> None:
        if self._pool is not None:
            return
        pool = SQLiteConnectionPool(self.db_path, timeout_seconds=self.timeout_seconds)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with pool.get_connection() as conn:
                self._create_schema(conn)
        except (OSError, sqlite3.Error) as exc:
            pool.close_all()
            raise StorageUnavailable(f"Could not open SQLite index at {self.db_path}: {exc}") from exc
        self._pool = pool
        logger.info("SQLite index ready at %s (table %s)", self.db_path, self.table)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close_all()
            self._pool = None

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create the rows table and its (entity_id, type) index."""
        conn.executescript(f"""
            CREATE TABLE IF NOT EXISTS "{self.table}" (
                entity_id VARCHAR({ENTITY_ID_MAX_LENGTH}) NOT NULL
                    CHECK (length(entity_id) <= {ENTITY_ID_MAX_LENGTH}),
                type VARCHAR({LABEL_MAX_LENGTH}) NOT NULL
                    CHECK (length(type) <= {LABEL_MAX_LENGTH}),
                "key" VARCHAR({LABEL_MAX_LENGTH}) NOT NULL
                    CHECK (length("key") <= {LABEL_MAX_LENGTH}),
                value TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS "idx_{self.table}_entity_type" ON "{self.table}" (entity_id, type);
        """)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Yield this thread's connection with the call deadline armed."""
        if self._pool is None:
            raise StorageUnavailable(f"SQLite index at {self.db_path} is not open")
        try:
            with self._pool.get_connection() as conn:
                deadline = time.monotonic() + self.timeout_seconds
                conn.set_progress_handler(lambda: int(time.monotonic() > deadline), _PROGRESS_STEPS)
                try:
                    yield conn
                finally:
                    conn.set_progress_handler(None, 0)
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"SQLite index at {self.db_path} is unusable: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements in one write transaction, mapping driver errors."""
        with self._connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageUnavailable(f"Could not start a write transaction: {exc}") from exc
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException as exc:
                conn.set_progress_handler(None, 0)
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                if isinstance(exc, sqlite3.Error):
                    if _is_unavailable(exc):
                        raise StorageUnavailable(f"SQLite write timed out or failed: {exc}") from exc
                    raise WriteError(f"SQLite rejected the write: {exc}") from exc
                raise

    def insert_rows(self, rows: Sequence[IndexRow]) -> int:
        if not rows:
            return 0
        with self._transaction() as conn:
            conn.executemany(self._insert_sql, [row.as_tuple() for row in rows])
        return len(rows)

    def delete_entity(self, entity_id: str) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(self._delete_sql, (entity_id,))
            return cursor.rowcount

    def replace_entity(self, entity_id: str, rows: Sequence[IndexRow]) -> int:
        with self._transaction() as conn:
            conn.execute(self._delete_sql, (entity_id,))
            if rows:
                conn.executemany(self._insert_sql, [row.as_tuple() for row in rows])
        return len(rows)

    def _select_sql(self, predicate: SearchPredicate) -> tuple[str, list[str]]:
        where: list[str] = []
        params: list[str] = []
        if predicate.value:
            if predicate.substring:
                where.append(f"value LIKE ? ESCAPE '{LIKE_ESCAPE_CHAR}'")
                params.append(predicate.like_pattern())
            else:
                where.append("value = ?")
                params.append(predicate.value)
        if predicate.key is not None:
            where.append('"key" = ?')
            params.append(predicate.key)
        if predicate.types:
            placeholders = ", ".join("?" for _ in predicate.types)
            where.append(f"type IN ({placeholders})")
            params.extend(predicate.types)

        sql = f'SELECT entity_id FROM "{self.table}" WHERE {" AND ".join(where)} GROUP BY entity_id'
        return sql, params

    def find_entity_ids(self, predicate: SearchPredicate) -> set[str]:
        sql, params = self._select_sql(predicate)
        with self._connection() as conn:
            return {row[0] for row in conn.execute(sql, params)}

    def count_rows(self) -> int:
        with self._connection() as conn:
            return int(conn.execute(self._count_sql).fetchone()[0])

    def describe(self) -> dict[str, str]:
        return {**super().describe(), "path": str(self.db_path)}
