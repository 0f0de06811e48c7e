"""Helpers for table and database names that end up inside SQL text."""

from __future__ import annotations

import re


_UNSAFE_IDENTIFIER_CHARS = re.compile(r"[^A-Za-z0-9_$]+")


def sanitize_identifier(name: str) -> str:
    """Strip every character that is not allowed in an unquoted identifier.

    Identifiers cannot be bound as statement parameters, so table names are
    reduced to ``[A-Za-z0-9_$]`` before being formatted into SQL.
    """
    return _UNSAFE_IDENTIFIER_CHARS.sub("", name)
