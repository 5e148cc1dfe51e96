"""Prompt context assembly from retrieved history, recent turns and files.

Everything here is pure string formatting so the output is deterministic
for a given input.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from chatmem.memory.models import MessageRecord, RetrievedMessage, Role

if TYPE_CHECKING:
    from chatmem.bot.protocol import FileContext

RETRIEVED_HEADER = "Relevant messages from earlier in this conversation:\n\n"
RECENT_HEADER = "Recent conversation:\n\n"
FILES_HEADER = "The user attached the following files as reference context:\n\n"
SEPARATOR = "---\n\n"
USER_PREFIX = "User message: "

RECENT_ENTRY_MAX_CHARS = 200
ELLIPSIS = "..."

# Recent turns are added only when retrieval returns fewer results than this.
MIN_SIMILAR_FOR_NO_RECENT = 2

_ROLE_LABELS = {Role.USER: "User", Role.MODEL: "Assistant"}


def role_label(role: Role) -> str:
    return _ROLE_LABELS[role]


def build_retrieved_context(results: Sequence[RetrievedMessage], max_chars: int) -> str:
    """Format similarity results under a character budget.

    Entries are appended in the given order until the next one would push
    the text past *max_chars*; an entry is never cut in half.
    """
    if not results:
        return ""

    parts = [RETRIEVED_HEADER]
    total = len(RETRIEVED_HEADER)
    for result in results:
        record = result.record
        entry = (
            f"[{role_label(record.role)}] (relevance: {result.similarity * 100:.0f}%): "
            f"{record.text}\n\n"
        )
        if total + len(entry) > max_chars:
            break
        parts.append(entry)
        total += len(entry)

    parts.append(SEPARATOR)
    return "".join(parts)


def _truncate(text: str, limit: int = RECENT_ENTRY_MAX_CHARS) -> str:
    if len(text) > limit:
        return text[:limit] + ELLIPSIS
    return text


def build_recent_context(records: Sequence[MessageRecord], max_messages: int) -> str:
    """Format the last *max_messages* records, shortening long entries."""
    if not records:
        return ""

    window = records[-max_messages:] if max_messages > 0 else []
    parts = [RECENT_HEADER]
    parts.extend(f"[{role_label(r.role)}]: {_truncate(r.text)}\n\n" for r in window)
    parts.append(SEPARATOR)
    return "".join(parts)


def build_file_context(files: Sequence[FileContext]) -> str:
    """Format attached files as numbered blocks."""
    if not files:
        return ""

    parts = [FILES_HEADER]
    for i, f in enumerate(files, start=1):
        parts.append(f"--- File {i} ({f.name}) ---\n{f.content}\n\n")
    parts.append(SEPARATOR)
    return "".join(parts)


def build_prompt(
    user_text: str,
    *,
    similar: Sequence[RetrievedMessage],
    recent: Sequence[MessageRecord],
    files: Sequence[FileContext],
    max_context_chars: int,
    max_recent: int,
) -> str:
    """Assemble the full prompt sent to the model for one turn."""
    prompt = build_retrieved_context(similar, max_context_chars)
    if len(similar) < MIN_SIMILAR_FOR_NO_RECENT:
        prompt += build_recent_context(recent, max_recent)
    prompt += build_file_context(files)
    return f"{prompt}{USER_PREFIX}{user_text}"
