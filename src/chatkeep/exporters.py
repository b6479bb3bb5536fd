"""
Renderers used by ``SessionStore.export_conversation``.

Each renderer is a pure function of the session snapshot; no clock or locale
is consulted except ``exported_at`` for the JSON variant, which the caller
passes in.
"""

from __future__ import annotations

import json
from typing import Sequence

from .errors import ValidationError
from .models import Analytics, Message, SessionMetadata

RULE = "-" * 50

#: Accepted format names -> (canonical format, file extension).
FORMATS: dict[str, tuple[str, str]] = {
    "json": ("json", "json"),
    "markdown": ("markdown", "md"),
    "md": ("markdown", "md"),
    "text": ("text", "txt"),
    "txt": ("text", "txt"),
    "csv": ("csv", "csv"),
}


def resolve_format(fmt: str) -> tuple[str, str]:
    """Return ``(canonical_name, extension)`` for *fmt*."""
    try:
        return FORMATS[fmt.lower()]
    except (KeyError, AttributeError):
        raise ValidationError(
            f"Unsupported export format {fmt!r}; expected one of "
            f"{', '.join(sorted(set(name for name, _ in FORMATS.values())))}"
        ) from None


def _minutes(ms: int) -> int:
    return round(ms / 60000)


def to_json(
    metadata: SessionMetadata,
    messages: Sequence[Message],
    analytics: Analytics,
    exported_at: str,
) -> str:
    payload = {
        "metadata": metadata.to_dict(),
        "conversationHistory": [m.to_dict() for m in messages],
        "analytics": analytics.to_dict(),
        "exportedAt": exported_at,
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def to_markdown(
    session_name: str | None,
    metadata: SessionMetadata,
    messages: Sequence[Message],
    analytics: Analytics,
) -> str:
    lines = [
        "# Conversation Export",
        "",
        f"**Session:** {session_name or 'Unsaved Session'}",
        f"**Created:** {metadata.created_at}",
        f"**Messages:** {analytics.total_messages}",
        f"**Duration:** {_minutes(analytics.conversation_duration_ms)} minutes",
        "",
        "---",
        "",
    ]
    for message in messages:
        role = "User" if message.role == "user" else "Assistant"
        lines.append(f"## {role} ({message.timestamp})")
        lines.append("")
        lines.append(message.content)
        lines.append("")
    return "\n".join(lines) + "\n"


def to_text(
    session_name: str | None,
    metadata: SessionMetadata,
    messages: Sequence[Message],
) -> str:
    lines = [
        "CONVERSATION EXPORT",
        "=" * 19,
        "",
        f"Session: {session_name or 'Unsaved Session'}",
        f"Created: {metadata.created_at}",
        f"Messages: {len(messages)}",
        "",
    ]
    for message in messages:
        lines.append(f"[{message.timestamp}] {message.role.upper()}:")
        lines.append(message.content)
        lines.append("")
        lines.append(RULE)
        lines.append("")
    return "\n".join(lines) + "\n"


def _csv_quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def to_csv(messages: Sequence[Message]) -> str:
    rows = ["Timestamp,Role,Content,MessageID"]
    for m in messages:
        rows.append(f"{m.timestamp},{m.role},{_csv_quote(m.content)},{m.message_id}")
    return "\n".join(rows) + "\n"
