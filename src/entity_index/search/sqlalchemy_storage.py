"""SQLAlchemy Core row store for server databases (MySQL, PostgreSQL, ...)."""

from __future__ import annotations

from collections.abc import Sequence
import logging
from typing import Any

from sqlalchemy import Column, Index, MetaData, String, Table, Text, create_engine, delete, func, insert, select
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import (
    ArgumentError,
    DataError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    NoSuchModuleError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)

from entity_index.domain.model import ENTITY_ID_MAX_LENGTH, LABEL_MAX_LENGTH, IndexRow
from entity_index.exceptions import StorageUnavailable, WriteError
from entity_index.search.identifiers import sanitize_identifier
from entity_index.search.predicates import LIKE_ESCAPE_CHAR, SearchPredicate
from entity_index.search.row_store import DEFAULT_TABLE, AbstractRowStore, check_row_bounds


logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)


# MySQL 8 ``*_0900_bin`` collations compare bytes without padding, so equality
# stays case, accent and trailing-space sensitive. MariaDB lacks them and gets
# ``utf8mb4_bin``, which still pads trailing spaces.
MYSQL_BINARY_COLLATION = "utf8mb4_0900_bin"
MARIADB_BINARY_COLLATION = "utf8mb4_bin"


def _label_type(length: int):
    return (
        String(length)
        .with_variant(mysql.VARCHAR(length, collation=MYSQL_BINARY_COLLATION), "mysql")
        .with_variant(mysql.VARCHAR(length, collation=MARIADB_BINARY_COLLATION), "mariadb")
    )


def _value_type():
    return (
        Text()
        .with_variant(mysql.LONGTEXT(collation=MYSQL_BINARY_COLLATION), "mysql")
        .with_variant(mysql.LONGTEXT(collation=MARIADB_BINARY_COLLATION), "mariadb")
    )


def build_rows_table(metadata: MetaData, name: str = DEFAULT_TABLE) -> Table:
    """Declare the rows table with its composite ``(entity_id, type)`` index.

    On MySQL and MariaDB every column uses a binary collation and ``value`` is
    ``LONGTEXT``; other dialects get plain ``VARCHAR``/``TEXT``.
    """
    table = Table(
        name,
        metadata,
        Column("entity_id", _label_type(ENTITY_ID_MAX_LENGTH), nullable=False),
        Column("type", _label_type(LABEL_MAX_LENGTH), nullable=False),
        Column("key", _label_type(LABEL_MAX_LENGTH), nullable=False),
        Column("value", _value_type(), nullable=False),
    )
    Index(f"ix_{name}_entity_type", table.c["entity_id"], table.c["type"])
    return table


def _connect_args(url: str, timeout_seconds: float) -> dict[str, Any]:
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        return {"timeout": timeout_seconds, "check_same_thread": False}
    if backend in ("mysql", "mariadb"):
        seconds = max(1, int(timeout_seconds))
        return {"connect_timeout": seconds, "read_timeout": seconds, "write_timeout": seconds}
    if backend == "postgresql":
        return {"connect_timeout": max(1, int(timeout_seconds))}
    return {}


class SqlAlchemyRowStore(AbstractRowStore):
    """Row store on any database reachable through a SQLAlchemy URL."""

    backend_name = "sqlalchemy"

    def __init__(
        self,
        url: str,
        *,
        table: str = DEFAULT_TABLE,
        timeout_seconds: float = 30.0,
        engine_options: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(sanitize_identifier(table) or DEFAULT_TABLE)
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._engine_options = engine_options or {}
        self._metadata = MetaData()
        self._table = build_rows_table(self._metadata, self.table)
        self._engine: Engine | None = None

    def open(self) -> None:
        if self._engine is not None:
            return
        try:
            options: dict[str, Any] = {
                "pool_pre_ping": True,
                "connect_args": _connect_args(self.url, self.timeout_seconds),
            }
            if make_url(self.url).get_backend_name() != "sqlite":
                options["pool_timeout"] = self.timeout_seconds
            options.update(self._engine_options)
            engine = create_engine(self.url, **options)
        except (ArgumentError, NoSuchModuleError, ImportError) as exc:
            raise StorageUnavailable(f"Could not create database engine: {exc}") from exc

        try:
            self._metadata.create_all(engine, checkfirst=True)
        except SQLAlchemyError as exc:
            engine.dispose()
            raise StorageUnavailable(f"Could not prepare index table {self.table}: {exc}") from exc

        self._engine = engine
        logger.info("SQL index ready on %s (table %s)", engine.url.render_as_string(hide_password=True), self.table)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise StorageUnavailable(f"Index table {self.table} is not open")
        return self._engine

    @staticmethod
    def _translate_write_error(exc: SQLAlchemyError) -> Exception:
        if isinstance(exc, _UNAVAILABLE_ERRORS):
            return StorageUnavailable(f"Database unavailable during write: {exc}")
        if isinstance(exc, (IntegrityError, DataError)):
            return WriteError(f"Database rejected the write: {exc.orig or exc}")
        return WriteError(f"Write failed: {exc}")

    def _row_params(self, rows: Sequence[IndexRow]) -> list[dict[str, str]]:
        return [{"entity_id": r.entity_id, "type": r.type, "key": r.key, "value": r.value} for r in rows]

    def insert_rows(self, rows: Sequence[IndexRow]) -> int:
        if not rows:
            return 0
        for row in rows:
            check_row_bounds(row)
        engine = self._require_engine()
        try:
            with engine.begin() as conn:
                conn.execute(insert(self._table), self._row_params(rows))
        except SQLAlchemyError as exc:
            raise self._translate_write_error(exc) from exc
        return len(rows)

    def delete_entity(self, entity_id: str) -> int:
        engine = self._require_engine()
        try:
            with engine.begin() as conn:
                result = conn.execute(delete(self._table).where(self._table.c["entity_id"] == entity_id))
                return result.rowcount
        except SQLAlchemyError as exc:
            raise self._translate_write_error(exc) from exc

    def replace_entity(self, entity_id: str, rows: Sequence[IndexRow]) -> int:
        for row in rows:
            check_row_bounds(row)
        engine = self._require_engine()
        try:
            with engine.begin() as conn:
                conn.execute(delete(self._table).where(self._table.c["entity_id"] == entity_id))
                if rows:
                    conn.execute(insert(self._table), self._row_params(rows))
        except SQLAlchemyError as exc:
            raise self._translate_write_error(exc) from exc
        return len(rows)

    def _select(self, predicate: SearchPredicate):
        columns = self._table.c
        conditions = []
        if predicate.value:
            if predicate.substring:
                conditions.append(columns["value"].like(predicate.like_pattern(), escape=LIKE_ESCAPE_CHAR))
            else:
                conditions.append(columns["value"] == predicate.value)
        if predicate.key is not None:
            conditions.append(columns["key"] == predicate.key)
        if predicate.types:
            conditions.append(columns["type"].in_(predicate.types))
        return select(columns["entity_id"]).where(*conditions).group_by(columns["entity_id"])

    def find_entity_ids(self, predicate: SearchPredicate) -> set[str]:
        engine = self._require_engine()
        try:
            with engine.connect() as conn:
                return set(conn.execute(self._select(predicate)).scalars())
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Search failed on table {self.table}: {exc}") from exc

    def count_rows(self) -> int:
        engine = self._require_engine()
        try:
            with engine.connect() as conn:
                return int(conn.execute(select(func.count()).select_from(self._table)).scalar_one())
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Could not count rows in {self.table}: {exc}") from exc
