"""Gemini model catalogue and name resolution."""

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class ChatModel(Enum):
    """Generation models a session can switch between.

    Each value is ``(storage key, API name, display name)``.
    """

    FLASH = ("flash", "gemini-2.0-flash", "Gemini 2.0 Flash")
    FLASH_25 = ("flash-2.5", "gemini-2.5-flash", "Gemini 2.5 Flash")
    PRO_25 = ("pro-2.5", "gemini-2.5-pro", "Gemini 2.5 Pro")

    def __init__(self, key: str, api_name: str, display_name: str) -> None:
        self.key = key
        self.api_name = api_name
        self.display_name = display_name

    @property
    def supports_thinking(self) -> bool:
        return self is ChatModel.PRO_25


DEFAULT_MODEL = ChatModel.FLASH

# Lookup by storage key or full API name, both lower-case.
_BY_NAME: dict[str, ChatModel] = {}
for _model in ChatModel:
    _BY_NAME[_model.key] = _model
    _BY_NAME[_model.api_name] = _model


def resolve(name: str | None) -> ChatModel:
    """Resolve a storage key or API name. Unknown names fall back to the default."""
    model = _BY_NAME.get((name or "").strip().lower())
    if model is None:
        logger.info("Unknown model %r, using %s", name, DEFAULT_MODEL.key)
        return DEFAULT_MODEL
    return model


def model_keys() -> list[str]:
    """Storage keys of every supported model, lightest first."""
    return [m.key for m in ChatModel]
