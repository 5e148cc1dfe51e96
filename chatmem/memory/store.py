"""User-partitioned message log with optional per-message embeddings.

One aiosqlite connection is shared by every session in the process. Each
public operation takes the store lock, runs its statements, commits and
releases the lock before returning, so the lock is never held while a
caller waits on the network.

Similarity search is a linear scan over the user's embedded messages.
Chat histories are small enough that this stays cheap.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite

from chatmem.db import get_connection
from chatmem.errors import StorageError
from chatmem.memory import codec
from chatmem.memory.models import MessageRecord, RetrievedMessage, Role

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    TEXT NOT NULL DEFAULT '',
    role       TEXT NOT NULL,
    content    TEXT NOT NULL,
    summary    TEXT,
    embedding  BLOB,
    model      TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_messages_user_created
    ON messages(user_id, created_at DESC)
"""

_COLUMNS = "id, user_id, role, content, summary, embedding, model, created_at"


def _parse_timestamp(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        logger.warning("Unparseable created_at %r, using now", value)
        return datetime.now(UTC)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _row_to_record(row: Sequence) -> MessageRecord:
    blob = row[5]
    return MessageRecord(
        id=row[0],
        user_id=row[1],
        role=Role(row[2]),
        content=row[3],
        summary=row[4],
        embedding=codec.decode(blob) if blob is not None else None,
        model=row[6],
        created_at=_parse_timestamp(row[7]),
    )


class MemoryStore:
    """Persists chat messages in SQLite.

    Singleton accessed via ``MemoryStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"`` or ``":memory:"``).
    """

    _instance: MemoryStore | None = None

    def __init__(
        self,
        db_path: Path | str | None = None,
        dimension: int = codec.EMBEDDING_DIM,
    ) -> None:
        self._db_path = db_path
        self._dimension = dimension
        self._conn: aiosqlite.Connection | None = None
        self._closed = False
        self._lock = asyncio.Lock()

    @classmethod
    def get(cls) -> MemoryStore:
        """Return the shared MemoryStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    @property
    def dimension(self) -> int:
        return self._dimension

    # -- Lifecycle -------------------------------------------------------------

    async def open(self) -> None:
        """Open the connection and create the schema if needed.

        Operations open the store lazily, so this is only required to reopen
        a store after :meth:`close`.
        """
        async with self._lock:
            self._closed = False
            await self._ensure_open()

    async def close(self) -> None:
        """Close the connection. Later operations fail until :meth:`open`."""
        async with self._lock:
            self._closed = True
            if self._conn is not None:
                await self._conn.close()
                self._conn = None
                logger.info("Memory store closed")

    async def _ensure_open(self) -> aiosqlite.Connection:
        if self._closed:
            raise StorageError("Message store is closed")
        if self._conn is None:
            try:
                conn = await get_connection(self._db_path)
                await conn.execute(_CREATE_TABLE)
                await conn.execute(_CREATE_INDEX)
                await conn.commit()
            except aiosqlite.Error as exc:
                raise StorageError(f"Failed to open message store: {exc}") from exc
            self._conn = conn
            logger.info("Memory store opened (%s)", self._db_path or "default path")
        return self._conn

    async def _write(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        async with self._lock:
            conn = await self._ensure_open()
            try:
                cursor = await conn.execute(sql, params)
                await conn.commit()
            except aiosqlite.Error as exc:
                raise StorageError(str(exc)) from exc
            return cursor

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[tuple]:
        async with self._lock:
            conn = await self._ensure_open()
            try:
                cursor = await conn.execute(sql, params)
                rows = await cursor.fetchall()
            except aiosqlite.Error as exc:
                raise StorageError(str(exc)) from exc
            return list(rows)

    async def _count(self, sql: str, params: tuple = ()) -> int:
        rows = await self._fetchall(sql, params)
        return int(rows[0][0])

    # -- Write -----------------------------------------------------------------

    async def append(
        self,
        user_id: str,
        role: Role | str,
        content: str,
        model: str | None = None,
    ) -> int:
        """Insert a message without embedding or summary. Returns its id."""
        role = Role(role)
        now = datetime.now(UTC).isoformat()
        cursor = await self._write(
            "INSERT INTO messages (user_id, role, content, model, created_at)"
            " VALUES (?, ?, ?, ?, ?)",
            (user_id, role.value, content, model, now),
        )
        message_id = cursor.lastrowid
        logger.debug("Stored %s message %d for %s", role.value, message_id, user_id)
        return message_id

    async def attach_embedding(self, message_id: int, vector: Sequence[float]) -> bool:
        """Set the embedding of a message.

        Returns False when no message has *message_id*; that is not an error
        because embeddings are attached after the fact and may race a clear.
        """
        if len(vector) != self._dimension:
            raise ValueError(
                f"Embedding has {len(vector)} dimensions, expected {self._dimension}"
            )
        cursor = await self._write(
            "UPDATE messages SET embedding = ? WHERE id = ?",
            (codec.encode(vector), message_id),
        )
        if cursor.rowcount == 0:
            logger.debug("No message %d to attach an embedding to", message_id)
            return False
        return True

    async def set_summary(self, message_id: int, summary: str) -> bool:
        """Store a summary for a message. Returns False if the id is unknown."""
        cursor = await self._write(
            "UPDATE messages SET summary = ? WHERE id = ?", (summary, message_id)
        )
        return cursor.rowcount > 0

    async def clear(self, user_id: str) -> int:
        """Delete every message of a user. Returns the number removed."""
        cursor = await self._write("DELETE FROM messages WHERE user_id = ?", (user_id,))
        logger.info("Cleared %d messages for %s", cursor.rowcount, user_id)
        return cursor.rowcount

    # -- Read ------------------------------------------------------------------

    async def query_similar(
        self,
        user_id: str,
        query_vector: Sequence[float],
        top_k: int,
        min_similarity: float,
    ) -> list[RetrievedMessage]:
        """Rank a user's embedded messages by similarity to *query_vector*.

        Results below *min_similarity* are dropped, the rest are sorted by
        descending similarity (scan order among ties) and cut to *top_k*.
        """
        rows = await self._fetchall(
            f"SELECT {_COLUMNS} FROM messages"
            " WHERE user_id = ? AND embedding IS NOT NULL ORDER BY id ASC",
            (user_id,),
        )
        scored = []
        for row in rows:
            record = _row_to_record(row)
            score = codec.similarity(query_vector, record.embedding)
            if score >= min_similarity:
                scored.append(RetrievedMessage(record=record, similarity=score))
        scored.sort(key=lambda m: m.similarity, reverse=True)
        return scored[: max(top_k, 0)]

    async def recent(self, user_id: str, limit: int) -> list[MessageRecord]:
        """Return the last *limit* messages of a user, oldest first."""
        rows = await self._fetchall(
            f"SELECT {_COLUMNS} FROM messages WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, max(limit, 0)),
        )
        return [_row_to_record(row) for row in reversed(rows)]

    async def all_messages(self, user_id: str) -> list[MessageRecord]:
        """Return every message of a user, oldest first."""
        rows = await self._fetchall(
            f"SELECT {_COLUMNS} FROM messages WHERE user_id = ? ORDER BY id ASC",
            (user_id,),
        )
        return [_row_to_record(row) for row in rows]

    async def without_embedding(self, limit: int) -> list[MessageRecord]:
        """Return the oldest messages (any user) that still lack an embedding."""
        rows = await self._fetchall(
            f"SELECT {_COLUMNS} FROM messages WHERE embedding IS NULL ORDER BY id ASC LIMIT ?",
            (max(limit, 0),),
        )
        return [_row_to_record(row) for row in rows]

    async def total_count(self) -> int:
        return await self._count("SELECT COUNT(*) FROM messages")

    async def count_for_user(self, user_id: str) -> int:
        return await self._count("SELECT COUNT(*) FROM messages WHERE user_id = ?", (user_id,))

    async def embedded_count(self) -> int:
        return await self._count("SELECT COUNT(*) FROM messages WHERE embedding IS NOT NULL")
