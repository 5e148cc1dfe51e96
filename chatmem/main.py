"""chatmem server entry point."""

import asyncio
import logging

from chatmem.config import settings
from chatmem.errors import StorageError
from chatmem.llm.client import GeminiClient
from chatmem.llm.embedding import EmbeddingClient
from chatmem.memory.backfill import backfill_missing_embeddings, drain_backfills
from chatmem.memory.store import MemoryStore
from chatmem.server.app import ChatServer, create_app

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


async def serve() -> None:
    """Open the store, start the server and run until cancelled."""
    if settings.has_api_key():
        logger.info("GEMINI_API_KEY loaded")
    else:
        logger.warning("GEMINI_API_KEY is not set, chat requests will be rejected")

    store = MemoryStore.get()
    await store.open()
    total = await store.total_count()
    embedded = await store.embedded_count()
    logger.info(
        "Chat memory at %s: %d messages (%d embedded)",
        settings.database_path, total, embedded,
    )

    completions = GeminiClient()
    embeddings = EmbeddingClient()

    if settings.backfill_on_start and settings.has_api_key():
        try:
            await backfill_missing_embeddings(store, embeddings, settings.backfill_limit)
        except StorageError:
            logger.exception("Embedding backfill failed")

    server = ChatServer(create_app(store, completions, embeddings))
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()
        await drain_backfills()
        await store.close()


def main() -> None:
    """Start the chat server."""
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
