"""WebSocket wire protocol.

Every frame is a JSON envelope ``{"type": <tag>, "data": {...}}``. Inbound
envelopes may also carry ``user_id``. Commands without a payload omit
``data``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import BaseModel, ValidationError

from chatmem.errors import ProtocolError

# -- Inbound -------------------------------------------------------------------


class FileContext(BaseModel):
    """A text file attached to the session as reference material."""

    name: str
    content: str


class ChatCommand(BaseModel):
    content: str


class SetContextCommand(BaseModel):
    files: list[FileContext]


class SwitchModelCommand(BaseModel):
    model: str


class ClearContextCommand(BaseModel):
    pass


class ClearHistoryCommand(BaseModel):
    pass


class GetHistoryCommand(BaseModel):
    pass


Command = (
    ChatCommand
    | SetContextCommand
    | SwitchModelCommand
    | ClearContextCommand
    | ClearHistoryCommand
    | GetHistoryCommand
)

COMMANDS: dict[str, type[BaseModel]] = {
    "chat": ChatCommand,
    "set_context": SetContextCommand,
    "switch_model": SwitchModelCommand,
    "clear_context": ClearContextCommand,
    "clear_history": ClearHistoryCommand,
    "get_history": GetHistoryCommand,
}


class _Envelope(BaseModel):
    type: str
    data: dict[str, Any] | None = None
    user_id: str | None = None


@dataclass
class Inbound:
    """A parsed inbound frame."""

    command: Command
    user_id: str | None = None


def parse_inbound(raw: str | bytes) -> Inbound:
    """Parse a client frame.

    Raises:
        ProtocolError: the frame is not a valid envelope, the type is not
            one of :data:`COMMANDS`, or the payload does not match it.
    """
    try:
        envelope = _Envelope.model_validate_json(raw)
    except ValidationError as exc:
        raise ProtocolError("Malformed message; expected a JSON object with a 'type'") from exc

    command_cls = COMMANDS.get(envelope.type)
    if command_cls is None:
        raise ProtocolError(f"Unknown message type: {envelope.type}")

    try:
        command = command_cls.model_validate(envelope.data or {})
    except ValidationError as exc:
        raise ProtocolError(f"Invalid payload for '{envelope.type}' message") from exc

    return Inbound(command=command, user_id=envelope.user_id)


# -- Outbound ------------------------------------------------------------------


class ServerMessage(BaseModel):
    """Base for outbound messages; ``kind`` is the envelope tag."""

    kind: ClassVar[str]

    def to_wire(self) -> dict[str, Any]:
        return {"type": self.kind, "data": self.model_dump(mode="json")}

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False)


class ResponseMessage(ServerMessage):
    kind: ClassVar[str] = "response"

    content: str
    model: str


class ThinkingMessage(ServerMessage):
    kind: ClassVar[str] = "thinking"

    content: str


class SystemMessage(ServerMessage):
    kind: ClassVar[str] = "system"

    content: str


class ErrorMessage(ServerMessage):
    kind: ClassVar[str] = "error"

    content: str


class LoadingMessage(ServerMessage):
    kind: ClassVar[str] = "loading"

    is_loading: bool


class HistoryItem(BaseModel):
    role: str
    content: str
    model: str | None = None
    timestamp: str


class HistoryMessage(ServerMessage):
    kind: ClassVar[str] = "history"

    messages: list[HistoryItem]
