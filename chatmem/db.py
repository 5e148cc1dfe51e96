"""Async SQLite connection factory over aiosqlite.

The message store keeps one long-lived connection for the whole process.
The target file comes from settings unless a path is passed explicitly
(test isolation), and ``":memory:"`` is accepted for throwaway stores.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from chatmem.config import settings

MEMORY_PATH = ":memory:"


async def _configure(conn: aiosqlite.Connection, *, wal: bool) -> None:
    """Apply the pragmas every store connection runs with."""
    if wal:
        await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA busy_timeout=5000")


async def get_connection(path: Path | str | None = None) -> aiosqlite.Connection:
    """Open an aiosqlite connection.

    If *path* is given it takes priority; otherwise ``database_path`` from
    settings is used. Parent directories are created for file databases.
    """
    target = path if path is not None else settings.database_path
    if str(target) == MEMORY_PATH:
        conn = await aiosqlite.connect(MEMORY_PATH)
        await _configure(conn, wal=False)
        return conn

    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(target))
    await _configure(conn, wal=True)
    return conn
