"""Async Gemini ``embedContent`` client.

Returned vectors are already normalized to unit length, so callers can
store and compare them directly.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from chatmem.config import settings
from chatmem.errors import UpstreamError
from chatmem.llm.client import require_api_key
from chatmem.memory import codec

logger = logging.getLogger(__name__)


class EmbeddingPurpose(StrEnum):
    """Gemini task type for an embedding request."""

    DOCUMENT = "RETRIEVAL_DOCUMENT"
    QUERY = "RETRIEVAL_QUERY"


class _Embedding(BaseModel):
    values: list[float] = Field(default_factory=list)


class _EmbedResponse(BaseModel):
    """The subset of an ``embedContent`` response this client reads."""

    embedding: _Embedding | None = None


class EmbeddingClient:
    """Embeds text with the configured Gemini embedding model."""

    def __init__(
        self,
        model: str | None = None,
        dimension: int | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.model = model or settings.embedding_model
        self.dimension = dimension or settings.embedding_dimension
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout_s

    async def embed(self, text: str, purpose: EmbeddingPurpose) -> list[float]:
        """Return the unit-length embedding of *text*.

        Raises:
            ConfigurationError: GEMINI_API_KEY is missing.
            UpstreamError: the request failed or returned no usable vector.
        """
        api_key = require_api_key()
        body: dict[str, Any] = {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
            "taskType": purpose.value,
            "outputDimensionality": self.dimension,
        }
        url = f"{self.base_url}/models/{self.model}:embedContent"
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Embedding request failed: {exc}") from exc

        if resp.status_code != 200:
            raise UpstreamError(f"Embedding API error ({resp.status_code}): {resp.text}")

        try:
            payload = _EmbedResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            raise UpstreamError(f"Could not decode embedding response: {exc}") from exc

        values = payload.embedding.values if payload.embedding else []
        if not values:
            raise UpstreamError("Embedding response contained no values")
        if len(values) != self.dimension:
            raise UpstreamError(
                f"Embedding has {len(values)} dimensions, expected {self.dimension}"
            )
        return codec.normalize(values)
