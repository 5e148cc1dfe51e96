"""Tests for the WebSocket wire protocol."""

import json

import pytest

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
    parse_inbound,
)
from chatmem.errors import ProtocolError


class TestParseInbound:
    def test_chat_with_user_id(self):
        inbound = parse_inbound(
            json.dumps({"type": "chat", "data": {"content": "hello"}, "user_id": "abc"})
        )
        assert inbound.command == ChatCommand(content="hello")
        assert inbound.user_id == "abc"

    def test_user_id_optional(self):
        inbound = parse_inbound('{"type": "get_history"}')
        assert isinstance(inbound.command, GetHistoryCommand)
        assert inbound.user_id is None

    def test_set_context(self):
        inbound = parse_inbound(
            json.dumps(
                {
                    "type": "set_context",
                    "data": {"files": [{"name": "a.txt", "content": "alpha"}]},
                }
            )
        )
        assert inbound.command == SetContextCommand(
            files=[FileContext(name="a.txt", content="alpha")]
        )

    def test_switch_model(self):
        inbound = parse_inbound('{"type": "switch_model", "data": {"model": "pro-2.5"}}')
        assert inbound.command == SwitchModelCommand(model="pro-2.5")

    @pytest.mark.parametrize(
        ("tag", "cls"),
        [("clear_context", ClearContextCommand), ("clear_history", ClearHistoryCommand)],
    )
    def test_unit_commands(self, tag, cls):
        assert isinstance(parse_inbound(json.dumps({"type": tag})).command, cls)

    def test_invalid_json(self):
        with pytest.raises(ProtocolError, match="Malformed"):
            parse_inbound("hello there")

    def test_not_an_object(self):
        with pytest.raises(ProtocolError):
            parse_inbound("[1, 2, 3]")

    def test_missing_type(self):
        with pytest.raises(ProtocolError):
            parse_inbound('{"data": {"content": "hi"}}')

    def test_unknown_type(self):
        with pytest.raises(ProtocolError, match="Unknown message type: dance"):
            parse_inbound('{"type": "dance"}')

    def test_payload_mismatch(self):
        with pytest.raises(ProtocolError, match="Invalid payload for 'chat'"):
            parse_inbound('{"type": "chat", "data": {"text": "wrong field"}}')

    def test_chat_requires_data(self):
        with pytest.raises(ProtocolError):
            parse_inbound('{"type": "chat"}')


class TestServerMessages:
    def test_response_envelope(self):
        msg = ResponseMessage(content="hi", model="Gemini 2.0 Flash")
        assert json.loads(msg.to_json()) == {
            "type": "response",
            "data": {"content": "hi", "model": "Gemini 2.0 Flash"},
        }

    def test_loading_envelope(self):
        assert LoadingMessage(is_loading=True).to_wire() == {
            "type": "loading",
            "data": {"is_loading": True},
        }

    def test_error_envelope(self):
        assert ErrorMessage(content="boom").to_wire()["type"] == "error"

    def test_history_envelope(self):
        msg = HistoryMessage(
            messages=[
                HistoryItem(
                    role="user", content="hi", model=None, timestamp="2025-01-01T00:00:00+00:00"
                )
            ]
        )
        wire = json.loads(msg.to_json())
        assert wire["type"] == "history"
        assert wire["data"]["messages"][0] == {
            "role": "user",
            "content": "hi",
            "model": None,
            "timestamp": "2025-01-01T00:00:00+00:00",
        }

    def test_non_ascii_preserved(self):
        assert "你好" in ResponseMessage(content="你好", model="m").to_json()
