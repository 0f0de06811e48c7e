"""Conjunctive search predicates over index rows."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from numbers import Number
from typing import Any

from entity_index.domain.model import IndexRow
from entity_index.exceptions import QueryError


LIKE_ESCAPE_CHAR = "\\"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return (
        value.replace(LIKE_ESCAPE_CHAR, LIKE_ESCAPE_CHAR * 2)
        .replace("%", LIKE_ESCAPE_CHAR + "%")
        .replace("_", LIKE_ESCAPE_CHAR + "_")
    )


def _normalize_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, Number) and not isinstance(value, bool):
        return str(value)
    raise QueryError(f"Search value must be a string, got {type(value).__name__}")


def _normalize_types(types: Iterable[str] | str | None) -> tuple[str, ...]:
    if types is None:
        return ()
    if isinstance(types, str):
        return (types,) if types else ()
    normalized: list[str] = []
    for type_name in types:
        if not isinstance(type_name, str):
            raise QueryError(f"Type filters must be strings, got {type(type_name).__name__}")
        if type_name and type_name not in normalized:
            normalized.append(type_name)
    return tuple(normalized)


@dataclass(frozen=True, slots=True)
class SearchPredicate:
    """Conditions ANDed together when selecting rows.

    Empty components are left out of the predicate: ``value=""`` does not
    constrain the value column, ``key=None`` does not constrain the key and an
    empty ``types`` tuple allows every type.
    """

    value: str = ""
    key: str | None = None
    types: tuple[str, ...] = ()
    substring: bool = False

    @classmethod
    def build(
        cls,
        value: Any,
        key: str | None = None,
        types: Iterable[str] | str | None = None,
        *,
        substring: bool = False,
    ) -> SearchPredicate:
        """Validate raw search arguments into a predicate.

        Raises:
            QueryError: If an argument has the wrong shape or every component
                is empty.
        """
        normalized_value = _normalize_value(value) or ""
        if key is not None and not isinstance(key, str):
            raise QueryError(f"Search key must be a string, got {type(key).__name__}")
        normalized_types = _normalize_types(types)

        predicate = cls(
            value=normalized_value,
            key=key or None,
            types=normalized_types,
            substring=substring,
        )
        if predicate.is_empty():
            raise QueryError("Search needs at least one of value, key or types")
        return predicate

    def is_empty(self) -> bool:
        return not self.value and self.key is None and not self.types

    def matches(self, row: IndexRow) -> bool:
        """Evaluate the predicate against a single row in Python."""
        if self.value:
            if self.substring:
                if self.value not in row.value:
                    return False
            elif row.value != self.value:
                return False
        if self.key is not None and row.key != self.key:
            return False
        if self.types and row.type not in self.types:
            return False
        return True

    def like_pattern(self) -> str:
        """Return the LIKE pattern used in substring mode."""
        return f"%{escape_like(self.value)}%"
