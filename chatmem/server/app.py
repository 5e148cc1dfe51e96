"""aiohttp application: WebSocket chat, health check, uploads, static files.

Uses aiohttp's AppRunner/TCPSite for non-blocking start/stop.
"""

from __future__ import annotations

import logging
from typing import Any

from aiohttp import BodyPartReader, web

from chatmem.config import settings
from chatmem.llm.client import GeminiClient
from chatmem.llm.embedding import EmbeddingClient
from chatmem.llm.models import model_keys
from chatmem.memory.store import MemoryStore
from chatmem.server.websocket import ChatConnection

logger = logging.getLogger(__name__)

STORE_KEY = web.AppKey("store", MemoryStore)
COMPLETIONS_KEY = web.AppKey("completions", GeminiClient)
EMBEDDINGS_KEY = web.AppKey("embeddings", EmbeddingClient)


async def _handle_ws(request: web.Request) -> web.WebSocketResponse:
    """GET /ws: one conversation session per connection."""
    ws = web.WebSocketResponse(autoping=False)
    await ws.prepare(request)
    logger.info("WebSocket connected from %s", request.remote)

    connection = ChatConnection(
        ws,
        store=request.app[STORE_KEY],
        completions=request.app[COMPLETIONS_KEY],
        embeddings=request.app[EMBEDDINGS_KEY],
    )
    await connection.run()
    logger.info("WebSocket disconnected from %s", request.remote)
    return ws


async def _health(request: web.Request) -> web.Response:
    """GET /api/health: basic liveness check."""
    return web.json_response(
        {
            "status": "ok",
            "message": "Backend server is running",
            "models": model_keys(),
        }
    )


def _upload_error(message: str) -> web.Response:
    return web.json_response(
        {"status": "error", "files": None, "error": message}, status=400
    )


async def _handle_upload(request: web.Request) -> web.Response:
    """POST /api/upload: read multipart text files and echo their contents."""
    try:
        reader = await request.multipart()
    except (AssertionError, KeyError, ValueError):
        return _upload_error("Expected a multipart/form-data body")

    files: list[dict[str, Any]] = []
    while True:
        part = await reader.next()
        if part is None:
            break
        if not isinstance(part, BodyPartReader) or not part.filename:
            continue

        data = await part.read()
        if len(data) > settings.max_upload_bytes:
            return _upload_error(f"File {part.filename} exceeds {settings.max_upload_bytes} bytes")
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            return _upload_error(f"File {part.filename} is not valid UTF-8: {exc}")

        files.append({"name": part.filename, "content": text, "size": len(data)})

    if not files:
        return _upload_error("No files were uploaded")

    logger.info("Upload accepted: %s", ", ".join(f["name"] for f in files))
    return web.json_response({"status": "success", "files": files, "error": None})


async def _index(request: web.Request) -> web.FileResponse:
    """GET /: the frontend entry page."""
    return web.FileResponse(settings.static_dir / "index.html")


def create_app(
    store: MemoryStore | None = None,
    completions: GeminiClient | None = None,
    embeddings: EmbeddingClient | None = None,
) -> web.Application:
    """Build the aiohttp Application with routes and shared services."""
    app = web.Application(client_max_size=settings.max_upload_bytes + 1024 * 1024)
    app[STORE_KEY] = store or MemoryStore.get()
    app[COMPLETIONS_KEY] = completions or GeminiClient()
    app[EMBEDDINGS_KEY] = embeddings or EmbeddingClient()

    app.router.add_get("/ws", _handle_ws)
    app.router.add_get("/api/health", _health)
    app.router.add_post("/api/upload", _handle_upload)

    if settings.static_dir.is_dir():
        app.router.add_get("/", _index)
        app.router.add_static("/", settings.static_dir)
        logger.info("Serving static files from %s", settings.static_dir)

    return app


class ChatServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        app: web.Application | None = None,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self.app = app
        self.host = host or settings.host
        self.port = port or settings.port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for HTTP and WebSocket clients."""
        app = self.app or create_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(
            "Server listening on http://%s:%d (models: %s)",
            self.host,
            self.port,
            ", ".join(model_keys()),
        )

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Server stopped")
