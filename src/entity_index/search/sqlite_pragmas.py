"""Shared SQLite PRAGMA helpers for consistent performance tuning."""

from __future__ import annotations

import sqlite3


def apply_connection_pragmas(
    conn: sqlite3.Connection,
    *,
    busy_timeout_ms: int = 30000,
    cache_size_kb: int = -16384,
    mmap_size_bytes: int = 67108864,
    temp_store: str = "MEMORY",
    foreign_keys: bool = False,
) -> None:
    """Apply PRAGMAs for a long-lived connection that both reads and writes."""
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute(f"PRAGMA cache_size = {int(cache_size_kb)}")
    conn.execute(f"PRAGMA mmap_size = {int(mmap_size_bytes)}")
    conn.execute(f"PRAGMA temp_store = {temp_store}")
    conn.execute(f"PRAGMA foreign_keys = {'ON' if foreign_keys else 'OFF'}")
