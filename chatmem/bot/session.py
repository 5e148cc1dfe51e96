"""Per-connection conversation session.

A session owns the transient state of one client connection (identity,
selected model, attached files) and runs each inbound command against the
shared :class:`~chatmem.memory.store.MemoryStore` and the Gemini clients.
Everything it has to say goes through the ``send`` callback.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from chatmem.bot.protocol import (
    ChatCommand,
    ClearContextCommand,
    ClearHistoryCommand,
    ErrorMessage,
    FileContext,
    GetHistoryCommand,
    HistoryItem,
    HistoryMessage,
    LoadingMessage,
    ResponseMessage,
    SetContextCommand,
    SwitchModelCommand,
    SystemMessage,
    ThinkingMessage,
    parse_inbound,
)
from chatmem.config import settings
from chatmem.errors import ConfigurationError, ProtocolError, StorageError, UpstreamError
from chatmem.llm.embedding import EmbeddingPurpose
from chatmem.llm.models import DEFAULT_MODEL, ChatModel, resolve
from chatmem.memory.backfill import spawn_backfill
from chatmem.memory.context import build_prompt
from chatmem.memory.models import Role, normalize_user_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from chatmem.bot.protocol import Command, ServerMessage
    from chatmem.llm.client import GeminiClient
    from chatmem.llm.embedding import EmbeddingClient
    from chatmem.memory.models import MessageRecord, RetrievedMessage
    from chatmem.memory.store import MemoryStore

logger = logging.getLogger(__name__)

class SessionState(Enum):
    IDLE = "idle"
    AWAITING_USER_ID = "awaiting_user_id"
    PROCESSING = "processing"


class ConversationSession:
    """State machine for a single client connection."""

    def __init__(
        self,
        send: Callable[[ServerMessage], Awaitable[None]],
        store: MemoryStore,
        completions: GeminiClient,
        embeddings: EmbeddingClient,
    ) -> None:
        self._send = send
        self._store = store
        self._completions = completions
        self._embeddings = embeddings

        self.user_id: str | None = None
        self.model: ChatModel = DEFAULT_MODEL
        self.file_contexts: list[FileContext] = []
        self.state = SessionState.AWAITING_USER_ID
        self.closed = False
        self._loading = False

        self._handlers = {
            ChatCommand: self._handle_chat,
            SetContextCommand: self._handle_set_context,
            SwitchModelCommand: self._handle_switch_model,
            ClearContextCommand: self._handle_clear_context,
            ClearHistoryCommand: self._handle_clear_history,
            GetHistoryCommand: self._handle_get_history,
        }

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Greet the client and report missing configuration once."""
        await self._notify(f"Connected to server, currently using {self.model.display_name}")
        try:
            self._completions.ensure_configured()
        except ConfigurationError as exc:
            await self._notify(f"{exc}; chat is unavailable until it is configured.")

    def close(self) -> None:
        """Mark the session closed. Further output is dropped."""
        self.closed = True
        logger.info("Session closed (user=%s)", self.user_id or "unidentified")

    async def emit(self, message: ServerMessage) -> None:
        if self.closed:
            logger.debug("Dropping %s for closed session", message.kind)
            return
        await self._send(message)

    async def _notify(self, text: str) -> None:
        await self.emit(SystemMessage(content=text))

    async def _error(self, text: str) -> None:
        await self.emit(ErrorMessage(content=text))

    # -- Dispatch --------------------------------------------------------------

    async def handle_raw(self, raw: str | bytes) -> None:
        """Parse and run one inbound frame. Protocol errors are reported, not raised."""
        try:
            inbound = parse_inbound(raw)
        except ProtocolError as exc:
            logger.info("Rejected inbound frame: %s", exc)
            await self._error(str(exc))
            return

        self._identify(inbound.user_id)
        await self.handle(inbound.command)

    async def handle(self, command: Command) -> None:
        if self.user_id is None:
            self._identify(None)
        handler = self._handlers[type(command)]
        await handler(command)

    def _identify(self, user_id: str | None) -> None:
        """Fix the session identity on first use; later ids are ignored."""
        if self.user_id is not None:
            return
        self.user_id = normalize_user_id(user_id)
        self.state = SessionState.IDLE
        logger.info("User connected: %s", self.user_id)

    # -- Chat turn -------------------------------------------------------------

    async def _handle_chat(self, command: ChatCommand) -> None:
        try:
            self._completions.ensure_configured()
        except ConfigurationError as exc:
            await self._error(str(exc))
            return

        self.state = SessionState.PROCESSING
        try:
            await self._run_turn(command.content)
        finally:
            self.state = SessionState.IDLE

    async def _run_turn(self, content: str) -> None:
        await self.emit(LoadingMessage(is_loading=True))
        self._loading = True
        try:
            await self._turn(content)
        finally:
            if self._loading:
                await self._stop_loading()

    async def _stop_loading(self) -> None:
        self._loading = False
        await self.emit(LoadingMessage(is_loading=False))

    async def _turn(self, content: str) -> None:
        user_id = self.user_id
        model = self.model
        files = list(self.file_contexts)

        try:
            user_msg_id = await self._store.append(user_id, Role.USER, content, model.key)
        except StorageError as exc:
            logger.warning("Could not store user message: %s", exc)
            user_msg_id = None

        query_vector = await self._embed_query(content)
        similar = await self._similar(user_id, query_vector)
        recent = await self._recent(user_id)

        if user_msg_id is not None and query_vector is not None:
            try:
                await self._store.attach_embedding(user_msg_id, query_vector)
            except (StorageError, ValueError) as exc:
                logger.warning("Could not attach query embedding: %s", exc)

        prompt = build_prompt(
            content,
            similar=similar,
            recent=recent,
            files=files,
            max_context_chars=settings.max_context_chars,
            max_recent=settings.max_recent_messages,
        )
        logger.debug(
            "Prompt for %s: %d chars, %d similar, %d recent, %d files",
            user_id, len(prompt), len(similar), len(recent), len(files),
        )

        try:
            result = await self._completions.generate(prompt, model)
        except (UpstreamError, ConfigurationError) as exc:
            logger.warning("Generation failed for %s: %s", user_id, exc)
            await self._stop_loading()
            await self._error(str(exc))
            return

        try:
            reply_id = await self._store.append(user_id, Role.MODEL, result.text, model.key)
        except StorageError as exc:
            logger.warning("Could not store model reply: %s", exc)
            reply_id = None

        await self._stop_loading()
        if result.thinking:
            await self.emit(ThinkingMessage(content=result.thinking))
        await self.emit(ResponseMessage(content=result.text, model=model.display_name))

        if reply_id is not None:
            spawn_backfill(self._store, self._embeddings, reply_id, result.text)

    async def _embed_query(self, content: str) -> list[float] | None:
        try:
            return await self._embeddings.embed(content, EmbeddingPurpose.QUERY)
        except (UpstreamError, ConfigurationError) as exc:
            logger.warning("Query embedding failed, continuing without retrieval: %s", exc)
            return None

    async def _similar(
        self, user_id: str, query_vector: list[float] | None
    ) -> list[RetrievedMessage]:
        if query_vector is None:
            return []
        try:
            return await self._store.query_similar(
                user_id,
                query_vector,
                settings.max_similar_messages,
                settings.min_similarity,
            )
        except StorageError as exc:
            logger.warning("Similarity query failed: %s", exc)
            return []

    async def _recent(self, user_id: str) -> list[MessageRecord]:
        try:
            return await self._store.recent(user_id, settings.max_recent_messages)
        except StorageError as exc:
            logger.warning("Recent-history query failed: %s", exc)
            return []

    # -- Other commands --------------------------------------------------------

    async def _handle_set_context(self, command: SetContextCommand) -> None:
        self.file_contexts = list(command.files)
        await self._notify(f"Set {len(self.file_contexts)} file(s) as context")

    async def _handle_switch_model(self, command: SwitchModelCommand) -> None:
        self.model = resolve(command.model)
        logger.info("Session %s switched to %s", self.user_id, self.model.key)
        await self._notify(f"Switched to {self.model.display_name}")

    async def _handle_clear_context(self, command: ClearContextCommand) -> None:
        self.file_contexts = []
        await self._notify("Cleared all file context")

    async def _handle_clear_history(self, command: ClearHistoryCommand) -> None:
        try:
            await self._store.clear(self.user_id)
        except StorageError as exc:
            await self._error(f"Failed to clear history: {exc}")
            return
        await self._notify("Cleared all chat history")

    async def _handle_get_history(self, command: GetHistoryCommand) -> None:
        try:
            records = await self._store.all_messages(self.user_id)
        except StorageError as exc:
            await self._error(f"Failed to load history: {exc}")
            return
        items = [
            HistoryItem(
                role=r.role.value,
                content=r.content,
                model=r.model,
                timestamp=r.created_at.isoformat(),
            )
            for r in records
        ]
        await self.emit(HistoryMessage(messages=items))
