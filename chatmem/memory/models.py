"""Data models for persisted chat memory."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel

ANONYMOUS_USER = "anonymous"


class Role(StrEnum):
    """Author of a stored message."""

    USER = "user"
    MODEL = "model"


class MessageRecord(BaseModel):
    """A single persisted conversation message."""

    id: int
    user_id: str
    role: Role
    content: str
    summary: str | None = None
    embedding: list[float] | None = None
    model: str | None = None
    created_at: datetime

    @property
    def text(self) -> str:
        """The summary when one exists, otherwise the full content."""
        return self.summary if self.summary is not None else self.content


class RetrievedMessage(BaseModel):
    """A stored message paired with its similarity to a query vector."""

    record: MessageRecord
    similarity: float


def normalize_user_id(user_id: str | None) -> str:
    """Map a missing or blank identity to the anonymous partition."""
    if user_id is None or not user_id.strip():
        return ANONYMOUS_USER
    return user_id
