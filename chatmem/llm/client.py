"""Async Gemini ``generateContent`` client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from chatmem.config import settings
from chatmem.errors import ConfigurationError, UpstreamError
from chatmem.llm.models import ChatModel

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_TEXT = "No response received from Gemini."

_THINKING_CONFIG: dict[str, Any] = {
    "temperature": 1.0,
    "maxOutputTokens": 65536,
    "thinkingConfig": {"includeThoughts": True},
}


@dataclass
class GenerationResult:
    """Final reply text plus the optional thinking trace."""

    text: str
    thinking: str | None = None


def require_api_key() -> str:
    """Return the Gemini API key or raise ConfigurationError."""
    if not settings.has_api_key():
        raise ConfigurationError("GEMINI_API_KEY is not set")
    return settings.gemini_api_key


class _Part(BaseModel):
    text: str | None = None
    thought: bool | None = None


class _Content(BaseModel):
    parts: list[_Part] | None = None


class _Candidate(BaseModel):
    content: _Content | None = None


class _GenerateResponse(BaseModel):
    """The subset of a ``generateContent`` response this client reads."""

    candidates: list[_Candidate] | None = None


def _parse_candidates(payload: _GenerateResponse) -> GenerationResult:
    """Split the first candidate's parts into reply text and thinking."""
    text = ""
    thinking = None
    if payload.candidates and payload.candidates[0].content:
        for part in payload.candidates[0].content.parts or []:
            if part.text is None:
                continue
            if part.thought:
                thinking = part.text
            else:
                text = part.text
    return GenerationResult(text=text or EMPTY_RESPONSE_TEXT, thinking=thinking)


class GeminiClient:
    """Calls ``models/<name>:generateContent`` with a single user turn."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout_s

    def ensure_configured(self) -> None:
        require_api_key()

    async def generate(self, prompt: str, model: ChatModel) -> GenerationResult:
        """Generate a reply for *prompt*.

        Raises:
            ConfigurationError: GEMINI_API_KEY is missing.
            UpstreamError: the request failed or the body could not be decoded.
        """
        api_key = require_api_key()
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        if model.supports_thinking:
            body["generationConfig"] = _THINKING_CONFIG

        url = f"{self.base_url}/models/{model.api_name}:generateContent"
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Request to Gemini failed: {exc}") from exc

        if resp.status_code != 200:
            logger.warning("Gemini returned %d for %s", resp.status_code, model.api_name)
            raise UpstreamError(f"Gemini API error ({resp.status_code}): {resp.text}")

        try:
            payload = _GenerateResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            raise UpstreamError(f"Could not decode Gemini response: {exc}") from exc

        result = _parse_candidates(payload)
        logger.info(
            "Gemini %s replied: %d chars%s",
            model.key,
            len(result.text),
            " (with thinking)" if result.thinking else "",
        )
        return result
