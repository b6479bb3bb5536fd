"""
Data model for sessions and vector records.

The on-disk JSON uses camelCase keys; the ``to_dict`` / ``from_dict``
helpers translate between that and the snake_case attributes used here.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import InvalidFormatError, ValidationError
from .helpers import generate_message_id

ROLES = ("user", "assistant")


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are treated as UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        # fromisoformat() only accepts a trailing "Z" from Python 3.11 on.
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp: {value!r}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class SaveState(enum.Enum):
    """Persistence state of the active session."""

    IDLE = "idle"
    DIRTY = "dirty"
    SAVING = "saving"


@dataclass(frozen=True)
class Message:
    role: str
    content: str
    timestamp: str
    message_id: str
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "role": self.role,
                "content": self.content,
                "timestamp": self.timestamp,
                "messageId": self.message_id,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Message":
        """Build a message from its file representation.

        Raises :class:`InvalidFormatError` when a required field is missing
        or has the wrong type.
        """
        if not isinstance(data, dict):
            raise InvalidFormatError(f"Message entry is not an object: {data!r}")
        role = data.get("role")
        content = data.get("content")
        if role not in ROLES:
            raise InvalidFormatError(f"Message has invalid role: {role!r}")
        if not isinstance(content, str):
            raise InvalidFormatError("Message content must be a string")
        known = {"role", "content", "timestamp", "messageId"}
        return cls(
            role=role,
            content=content,
            timestamp=str(data.get("timestamp") or utc_now_iso()),
            message_id=str(data.get("messageId") or generate_message_id()),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class SessionMetadata:
    session_id: str
    created_at: str = field(default_factory=utc_now_iso)
    last_modified: str = field(default_factory=utc_now_iso)
    message_count: int = 0
    session_name: str | None = None
    original_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
            "messageCount": self.message_count,
            "sessionId": self.session_id,
        }
        if self.session_name is not None:
            data["sessionName"] = self.session_name
        if self.original_name is not None:
            data["originalName"] = self.original_name
        return data

    @classmethod
    def from_dict(
        cls, data: Any, fallback_id: str, message_count: int = 0
    ) -> "SessionMetadata":
        # messageCount is recomputed from the history, never trusted.
        if not isinstance(data, dict):
            data = {}
        now = utc_now_iso()
        return cls(
            session_id=str(data.get("sessionId") or fallback_id),
            created_at=str(data.get("createdAt") or now),
            last_modified=str(data.get("lastModified") or now),
            message_count=message_count,
            session_name=data.get("sessionName"),
            original_name=data.get("originalName"),
        )


@dataclass(frozen=True)
class SearchOptions:
    """Filters accepted by ``SessionStore.search``.

    ``from_date`` / ``to_date`` are inclusive bounds and accept either a
    ``datetime`` or an ISO-8601 string.
    """

    role: str | None = None
    case_sensitive: bool = False
    exact_match: bool = False
    from_date: datetime | str | None = None
    to_date: datetime | str | None = None


@dataclass(frozen=True)
class Analytics:
    total_messages: int
    user_messages: int
    assistant_messages: int
    conversation_duration_ms: int
    average_message_length: int
    most_active_hour: int
    created_at: str
    last_modified: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalMessages": self.total_messages,
            "userMessages": self.user_messages,
            "assistantMessages": self.assistant_messages,
            "conversationDuration": self.conversation_duration_ms,
            "averageMessageLength": self.average_message_length,
            "mostActiveHour": self.most_active_hour,
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
        }


@dataclass(frozen=True)
class SessionSummary:
    """One entry of ``SessionStore.list_available_sessions``."""

    name: str
    path: str
    original_name: str | None = None
    message_count: int = 0
    modified_at: float | None = None
    error: str | None = None


@dataclass(frozen=True)
class VectorRecord:
    id: str
    embedding: tuple[float, ...]
    metadata: dict[str, Any]
    inserted_at: int

    @property
    def dimensions(self) -> int:
        return len(self.embedding)


@dataclass(frozen=True)
class SearchHit:
    id: str
    similarity: float
    metadata: dict[str, Any]
