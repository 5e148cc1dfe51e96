"""Tests for prompt context assembly."""

from datetime import UTC, datetime

from chatmem.bot.protocol import FileContext
from chatmem.memory.context import (
    ELLIPSIS,
    RECENT_HEADER,
    RETRIEVED_HEADER,
    SEPARATOR,
    USER_PREFIX,
    build_file_context,
    build_prompt,
    build_recent_context,
    build_retrieved_context,
)
from chatmem.memory.models import MessageRecord, RetrievedMessage, Role

_NOW = datetime(2025, 1, 1, tzinfo=UTC)


def _record(
    msg_id: int, content: str, role: Role = Role.USER, summary: str | None = None
) -> MessageRecord:
    return MessageRecord(
        id=msg_id, user_id="u1", role=role, content=content, summary=summary, created_at=_NOW
    )


def _hit(msg_id: int, content: str, similarity: float, **kwargs) -> RetrievedMessage:
    return RetrievedMessage(record=_record(msg_id, content, **kwargs), similarity=similarity)


# -- build_retrieved_context ---------------------------------------------------


def test_retrieved_empty() -> None:
    assert build_retrieved_context([], 4000) == ""


def test_retrieved_formats_entries_in_order() -> None:
    text = build_retrieved_context(
        [
            _hit(1, "I like tea", 0.876),
            _hit(2, "Tea is great", 0.61, role=Role.MODEL),
        ],
        4000,
    )
    assert text == (
        RETRIEVED_HEADER
        + "[User] (relevance: 88%): I like tea\n\n"
        + "[Assistant] (relevance: 61%): Tea is great\n\n"
        + SEPARATOR
    )


def test_retrieved_prefers_summary() -> None:
    text = build_retrieved_context([_hit(1, "long original", 0.9, summary="gist")], 4000)
    assert "gist" in text
    assert "long original" not in text


def test_retrieved_respects_budget_without_cutting_entries() -> None:
    hits = [_hit(i, "x" * 100, 0.9) for i in range(10)]
    entry_len = len("[User] (relevance: 90%): " + "x" * 100 + "\n\n")
    budget = len(RETRIEVED_HEADER) + 3 * entry_len + 10

    text = build_retrieved_context(hits, budget)

    assert text.count("[User]") == 3
    assert len(text) - len(SEPARATOR) <= budget
    assert text.endswith(SEPARATOR)


def test_retrieved_stops_at_first_overflowing_entry() -> None:
    hits = [_hit(1, "short", 0.9), _hit(2, "y" * 500, 0.8), _hit(3, "tiny", 0.7)]
    text = build_retrieved_context(hits, len(RETRIEVED_HEADER) + 200)
    assert "short" in text
    assert "y" * 500 not in text
    assert "tiny" not in text


def test_retrieved_budget_too_small_keeps_frame() -> None:
    text = build_retrieved_context([_hit(1, "hello", 0.9)], 5)
    assert text == RETRIEVED_HEADER + SEPARATOR


# -- build_recent_context ------------------------------------------------------


def test_recent_empty() -> None:
    assert build_recent_context([], 4) == ""


def test_recent_keeps_last_n() -> None:
    records = [_record(i, f"msg {i}") for i in range(6)]
    text = build_recent_context(records, 4)
    assert "msg 1" not in text
    assert text == (
        RECENT_HEADER
        + "[User]: msg 2\n\n[User]: msg 3\n\n[User]: msg 4\n\n[User]: msg 5\n\n"
        + SEPARATOR
    )


def test_recent_truncates_long_entries() -> None:
    content = "a" * 250
    text = build_recent_context([_record(1, content)], 4)
    entry = text[len(RECENT_HEADER) : -len(SEPARATOR)]
    body = entry.removeprefix("[User]: ").removesuffix("\n\n")
    assert body == "a" * 200 + ELLIPSIS
    assert len(body) == 200 + len(ELLIPSIS)


def test_recent_exactly_200_not_truncated() -> None:
    text = build_recent_context([_record(1, "b" * 200)], 4)
    assert ELLIPSIS not in text


def test_recent_uses_summary_and_role_labels() -> None:
    records = [
        _record(1, "question"),
        _record(2, "very long answer", role=Role.MODEL, summary="answer gist"),
    ]
    text = build_recent_context(records, 4)
    assert "[User]: question" in text
    assert "[Assistant]: answer gist" in text
    assert "very long answer" not in text


# -- build_file_context --------------------------------------------------------


def test_file_context_empty() -> None:
    assert build_file_context([]) == ""


def test_file_context_numbers_files() -> None:
    files = [
        FileContext(name="a.txt", content="alpha"),
        FileContext(name="b.md", content="beta"),
    ]
    text = build_file_context(files)
    assert "--- File 1 (a.txt) ---\nalpha\n\n" in text
    assert "--- File 2 (b.md) ---\nbeta\n\n" in text
    assert text.endswith(SEPARATOR)


# -- build_prompt --------------------------------------------------------------


def _prompt(similar, recent, files=()) -> str:
    return build_prompt(
        "What now?",
        similar=similar,
        recent=recent,
        files=list(files),
        max_context_chars=4000,
        max_recent=4,
    )


def test_prompt_plain_message() -> None:
    assert _prompt([], []) == USER_PREFIX + "What now?"


def test_prompt_includes_recent_when_retrieval_is_thin() -> None:
    prompt = _prompt([_hit(1, "related", 0.8)], [_record(2, "previous turn")])
    assert prompt.startswith(RETRIEVED_HEADER)
    assert RECENT_HEADER in prompt
    assert prompt.index(RETRIEVED_HEADER) < prompt.index(RECENT_HEADER)
    assert prompt.endswith(USER_PREFIX + "What now?")


def test_prompt_skips_recent_with_two_similar() -> None:
    similar = [_hit(1, "related", 0.8), _hit(2, "also related", 0.7)]
    prompt = _prompt(similar, [_record(3, "previous turn")])
    assert RECENT_HEADER not in prompt
    assert "previous turn" not in prompt


def test_prompt_orders_sections() -> None:
    files = [FileContext(name="notes.txt", content="file body")]
    prompt = _prompt([], [_record(1, "previous turn")], files)
    assert prompt.index(RECENT_HEADER) < prompt.index("notes.txt") < prompt.index(USER_PREFIX)
