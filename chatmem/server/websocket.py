"""One WebSocket connection: reader, session worker and heartbeat.

The reader only records liveness and queues text frames, so pings keep
flowing while a long generation is in progress. The worker feeds queued
frames to the :class:`ConversationSession` one at a time. The heartbeat
pings the client every ``heartbeat_interval_s`` and closes the socket when
nothing has been heard for ``client_timeout_s``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING

from aiohttp import WSMsgType, web

from chatmem.bot.protocol import ErrorMessage
from chatmem.bot.session import ConversationSession
from chatmem.config import settings

if TYPE_CHECKING:
    from chatmem.bot.protocol import ServerMessage
    from chatmem.llm.client import GeminiClient
    from chatmem.llm.embedding import EmbeddingClient
    from chatmem.memory.store import MemoryStore

logger = logging.getLogger(__name__)


class ChatConnection:
    """Drives a :class:`ConversationSession` over an aiohttp WebSocket."""

    def __init__(
        self,
        ws: web.WebSocketResponse,
        store: MemoryStore,
        completions: GeminiClient,
        embeddings: EmbeddingClient,
        heartbeat_interval: float | None = None,
        client_timeout: float | None = None,
    ) -> None:
        self._ws = ws
        self._inbox: asyncio.Queue[str] = asyncio.Queue()
        self._heartbeat_interval = heartbeat_interval or settings.heartbeat_interval_s
        self._client_timeout = client_timeout or settings.client_timeout_s
        self._last_seen = time.monotonic()
        self.session = ConversationSession(
            send=self._send,
            store=store,
            completions=completions,
            embeddings=embeddings,
        )

    async def _send(self, message: ServerMessage) -> None:
        if self._ws.closed:
            logger.debug("Socket closed, dropping %s", message.kind)
            return
        try:
            await self._ws.send_str(message.to_json())
        except ConnectionResetError:
            logger.debug("Connection reset while sending %s", message.kind)

    async def run(self) -> None:
        """Serve the connection until the client leaves or times out."""
        worker = asyncio.create_task(self._work())
        heartbeat = asyncio.create_task(self._heartbeat())
        try:
            await self.session.start()
            async for msg in self._ws:
                self._last_seen = time.monotonic()
                if msg.type == WSMsgType.TEXT:
                    self._inbox.put_nowait(msg.data)
                elif msg.type == WSMsgType.PING:
                    await self._ws.pong(msg.data)
                elif msg.type == WSMsgType.BINARY:
                    await self._ws.send_bytes(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("WebSocket error: %s", self._ws.exception())
                    break
        finally:
            self.session.close()
            for task in (worker, heartbeat):
                task.cancel()
            await asyncio.gather(worker, heartbeat, return_exceptions=True)
            if not self._ws.closed:
                await self._ws.close()

    async def _work(self) -> None:
        while True:
            raw = await self._inbox.get()
            try:
                await self.session.handle_raw(raw)
            except Exception:
                logger.exception("Unhandled error while processing a message")
                with contextlib.suppress(Exception):
                    await self.session.emit(ErrorMessage(content="Internal server error"))

    async def _heartbeat(self) -> None:
        while not self._ws.closed:
            await asyncio.sleep(self._heartbeat_interval)
            if time.monotonic() - self._last_seen > self._client_timeout:
                logger.warning("Client heartbeat timed out, closing connection")
                await self._ws.close()
                return
            with contextlib.suppress(ConnectionResetError):
                await self._ws.ping()
