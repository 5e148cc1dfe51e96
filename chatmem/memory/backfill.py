"""Embedding backfill: per-message detached tasks and the startup pass."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from chatmem.errors import ConfigurationError, StorageError, UpstreamError
from chatmem.llm.embedding import EmbeddingPurpose

if TYPE_CHECKING:
    from chatmem.llm.embedding import EmbeddingClient
    from chatmem.memory.store import MemoryStore

logger = logging.getLogger(__name__)

# Detached embedding backfills; kept referenced until they finish.
_background_tasks: set[asyncio.Task] = set()


async def backfill_embedding(
    store: MemoryStore,
    embeddings: EmbeddingClient,
    message_id: int,
    text: str,
) -> bool:
    """Embed *text* as a document and attach it to *message_id*.

    One attempt only. Failures are logged and reported as False, never
    raised, so this is safe to run detached from any session.
    """
    try:
        vector = await embeddings.embed(text, EmbeddingPurpose.DOCUMENT)
        return await store.attach_embedding(message_id, vector)
    except (UpstreamError, ConfigurationError) as exc:
        logger.warning("Embedding for message %d dropped: %s", message_id, exc)
    except (StorageError, ValueError) as exc:
        logger.warning("Could not attach embedding to message %d: %s", message_id, exc)
    return False


def spawn_backfill(
    store: MemoryStore,
    embeddings: EmbeddingClient,
    message_id: int,
    text: str,
) -> asyncio.Task:
    """Run :func:`backfill_embedding` as a fire-and-forget task."""
    task = asyncio.create_task(backfill_embedding(store, embeddings, message_id, text))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def drain_backfills() -> None:
    """Wait for every detached backfill still in flight."""
    if _background_tasks:
        logger.info("Waiting for %d pending embedding backfills", len(_background_tasks))
        await asyncio.gather(*list(_background_tasks))


async def backfill_missing_embeddings(
    store: MemoryStore,
    embeddings: EmbeddingClient,
    limit: int,
) -> int:
    """Embed up to *limit* of the oldest unembedded messages.

    Each message gets one attempt. Returns how many embeddings were attached.
    """
    pending = await store.without_embedding(limit)
    if not pending:
        return 0

    attached = 0
    for record in pending:
        if await backfill_embedding(store, embeddings, record.id, record.text):
            attached += 1

    logger.info("Backfilled %d/%d message embeddings", attached, len(pending))
    return attached
