"""Flatten entity snapshots into index rows."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import re
from typing import Any

from entity_index.domain.model import DEFAULT_ENTITY_TYPE, IndexRow


# Namespace separators: PHP-style "\", dotted module paths and "::"
_NAMESPACE_SEPARATOR = re.compile(r"\\|\.|::")


def short_type_name(type_name: str) -> str:
    """Return the last namespace segment of a qualified type name."""
    segments = [segment for segment in _NAMESPACE_SEPARATOR.split(type_name) if segment]
    return segments[-1] if segments else type_name


def type_of(candidate_types: Sequence[str] | str) -> str:
    """Return the short name of the most specific type in the chain.

    Args:
        candidate_types: Type names ordered most specific first, or a single
            type name.

    Returns:
        Short name of the first entry, or ``"entity"`` for an empty chain.
    """
    if isinstance(candidate_types, str):
        candidate_types = [candidate_types]
    if not candidate_types or not candidate_types[0]:
        return DEFAULT_ENTITY_TYPE
    return short_type_name(candidate_types[0])


def _coerce_value(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def flatten(entity_id: str, type: str, attributes: Mapping[str, Any]) -> list[IndexRow]:
    """Produce one row per attribute; an empty map yields no rows."""
    return [
        IndexRow(entity_id=entity_id, type=type, key=str(key), value=_coerce_value(value))
        for key, value in attributes.items()
    ]
