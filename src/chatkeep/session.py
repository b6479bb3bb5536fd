"""
SessionStore: the active conversation plus a directory of saved sessions.

Usage example::

    from chatkeep import SessionStore

    store = SessionStore(save_dir="./save")
    await store.initialize()

    store.add_message("user", "My name is Arme")
    store.add_message("assistant", "Hi Arme")
    await store.save("first chat")          # -> ./save/first_chat.json

    fresh = SessionStore(save_dir="./save")
    await fresh.load("first chat")
    fresh.search("arme")                    # both messages, in order
"""

from __future__ import annotations

import json
import logging
import re
from collections import Counter
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator

import aiofiles.os

from . import exporters
from .config import Settings
from .errors import (
    ChatkeepError,
    InvalidFormatError,
    NotFoundError,
    StorageIOError,
    ValidationError,
)
from .fileio import ensure_dir, read_text, write_json_atomic, write_text_atomic
from .helpers import generate_message_id, generate_session_id, sanitize_name, unix_time
from .models import (
    ROLES,
    Analytics,
    Message,
    SaveState,
    SearchOptions,
    SessionMetadata,
    SessionSummary,
    parse_timestamp,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

UNSAVED_NAME = "unsaved_session"

_EXPORT_FILE = re.compile(r"_export_\d+\.json$")
_BACKUP_FILE = re.compile(r"_backup_\d+\.json$")


def _decode_session(text: str, source: Path) -> dict[str, Any]:
    """Parse a session file and check its top-level shape."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidFormatError(f"{source.name} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("conversationHistory"), list):
        raise InvalidFormatError(
            f"{source.name} has no 'conversationHistory' array"
        )
    return data


def _parse_session(text: str, source: Path) -> tuple[list[Message], SessionMetadata]:
    data = _decode_session(text, source)
    messages = [Message.from_dict(m) for m in data["conversationHistory"]]
    metadata = SessionMetadata.from_dict(
        data.get("metadata"),
        fallback_id=generate_session_id(),
        message_count=len(messages),
    )
    return messages, metadata


def _message_time(message: Message) -> datetime | None:
    try:
        return parse_timestamp(message.timestamp)
    except ValidationError:
        return None


class SessionStore:
    """
    One active conversation and the directory it is saved into.

    Responsibilities
    ----------------
    * **Record** – ``add_message`` appends to the in-memory history and marks
      the session dirty.
    * **Persist** – ``save`` / ``load`` / ``delete_session`` operate on
      ``<save_dir>/<sanitized name>.json``; ``create_backup`` writes
      timestamped snapshots under ``<save_dir>/backups``.
    * **Inspect** – ``search``, ``analytics`` and ``export_conversation``
      read the in-memory history without changing it.
    * **Scan** – ``list_available_sessions`` and
      ``get_last_modified_session`` walk the directory and skip bad files.

    Single-target operations raise and leave the in-memory session as it was.
    Overlapping ``save`` calls on one file are not serialised here.

    Parameters
    ----------
    settings:
        Configuration; defaults to ``Settings()``.
    save_dir:
        Shortcut overriding ``settings.save_dir``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        save_dir: str | Path | None = None,
    ) -> None:
        settings = settings or Settings()
        if save_dir is not None:
            settings = settings.with_save_dir(save_dir)
        self._settings = settings
        self._messages: list[Message] = []
        self._metadata = SessionMetadata(session_id=generate_session_id())
        self._session_name: str | None = None
        self._state = SaveState.IDLE

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def save_dir(self) -> Path:
        return self._settings.save_dir

    @property
    def backup_dir(self) -> Path:
        return self._settings.backup_dir

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def metadata(self) -> SessionMetadata:
        return replace(self._metadata)

    @property
    def session_name(self) -> str | None:
        return self._session_name

    @property
    def state(self) -> SaveState:
        return self._state

    @property
    def has_unsaved_changes(self) -> bool:
        return self._state is SaveState.DIRTY

    # ------------------------------------------------------------------
    # In-memory operations
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the save and backup directories if they are missing."""
        try:
            await ensure_dir(self.save_dir)
            await ensure_dir(self.backup_dir)
        except StorageIOError as exc:
            logger.warning("Could not create save directories: %s", exc)
            return
        logger.debug("Save directory ready: %s", self.save_dir)

    def add_message(
        self,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Append a message and mark the session dirty."""
        if role not in ROLES:
            raise ValidationError(f"role must be one of {ROLES}, got {role!r}")
        if not isinstance(content, str):
            raise ValidationError("content must be a string")

        message = Message(
            role=role,
            content=content,
            timestamp=utc_now_iso(),
            message_id=generate_message_id(),
            extra=dict(metadata or {}),
        )
        self._messages.append(message)
        self._metadata.message_count = len(self._messages)
        self._metadata.last_modified = message.timestamp
        self._state = SaveState.DIRTY
        return message

    def clear(self) -> None:
        """Drop the current session without saving it."""
        self._messages = []
        self._metadata = SessionMetadata(session_id=generate_session_id())
        self._session_name = None
        self._state = SaveState.IDLE
        logger.info("Current session cleared")

    def history(self, last_n: int = 0) -> list[Message]:
        """Return the whole history, or only the last *last_n* messages."""
        if last_n <= 0:
            return list(self._messages)
        return self._messages[-last_n:]

    def session_info(self) -> dict[str, Any]:
        return {
            "sessionName": self._session_name,
            "messageCount": len(self._messages),
            "metadata": self._metadata.to_dict(),
            "hasUnsavedChanges": self.has_unsaved_changes,
            "state": self._state.value,
        }

    def search(
        self,
        query: str,
        options: SearchOptions | None = None,
        **overrides: Any,
    ) -> list[Message]:
        """
        Return the messages matching *query*, in history order.

        ``role`` and the date bounds are applied first; then either whole
        content equality (``exact_match``) or substring containment.
        Keyword arguments override fields of *options*.
        """
        opts = options or SearchOptions()
        if overrides:
            opts = replace(opts, **overrides)

        results = list(self._messages)
        if opts.role:
            results = [m for m in results if m.role == opts.role]

        if opts.from_date is not None or opts.to_date is not None:
            lower = parse_timestamp(opts.from_date) if opts.from_date is not None else None
            upper = parse_timestamp(opts.to_date) if opts.to_date is not None else None
            dated = []
            for m in results:
                ts = _message_time(m)
                if ts is None:
                    continue
                if lower is not None and ts < lower:
                    continue
                if upper is not None and ts > upper:
                    continue
                dated.append(m)
            results = dated

        needle = query if opts.case_sensitive else query.lower()

        def matches(message: Message) -> bool:
            content = message.content if opts.case_sensitive else message.content.lower()
            return content == needle if opts.exact_match else needle in content

        return [m for m in results if matches(m)]

    def analytics(self) -> Analytics:
        messages = self._messages
        total = len(messages)
        users = sum(1 for m in messages if m.role == "user")
        assistants = sum(1 for m in messages if m.role == "assistant")

        duration_ms = 0
        if total >= 2:
            first, last = _message_time(messages[0]), _message_time(messages[-1])
            if first is not None and last is not None:
                duration_ms = int((last - first).total_seconds() * 1000)

        avg_len = round(sum(len(m.content) for m in messages) / total) if total else 0

        hours: Counter[int] = Counter()
        for m in messages:
            ts = _message_time(m)
            if ts is not None:
                hours[ts.hour] += 1
        most_active = min(hours, key=lambda h: (-hours[h], h)) if hours else 0

        return Analytics(
            total_messages=total,
            user_messages=users,
            assistant_messages=assistants,
            conversation_duration_ms=duration_ms,
            average_message_length=avg_len,
            most_active_hour=most_active,
            created_at=self._metadata.created_at,
            last_modified=self._metadata.last_modified,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _payload(self, extra_meta: dict[str, Any]) -> dict[str, Any]:
        meta = self._metadata.to_dict()
        meta.update(extra_meta)
        return {
            "metadata": meta,
            "conversationHistory": [m.to_dict() for m in self._messages],
        }

    async def save(self, name: str) -> Path:
        """Write the session to ``<save_dir>/<sanitized name>.json``."""
        sanitized = sanitize_name(name)
        path = self.save_dir / f"{sanitized}.json"
        payload = self._payload(
            {"sessionName": sanitized, "originalName": name, "savedAt": utc_now_iso()}
        )

        previous = self._state
        self._state = SaveState.SAVING
        try:
            await ensure_dir(self.save_dir)
            size = await write_json_atomic(path, payload)
        except StorageIOError as exc:
            self._state = previous
            logger.error("Failed to save session %r: %s", name, exc)
            raise

        self._metadata.session_name = sanitized
        self._metadata.original_name = name
        self._session_name = sanitized
        self._state = SaveState.IDLE
        logger.info(
            "Session saved to %s (%d messages, %d bytes)",
            path,
            len(self._messages),
            size,
        )
        return path

    async def load(self, name: str) -> Path:
        """
        Replace the in-memory session with the one saved under *name*.

        The exact name is tried first, then its sanitized form. Nothing in
        memory changes unless the file is found and fully valid.
        """
        if not name or not name.strip():
            raise ValidationError("Session name cannot be empty")

        candidates = [name]
        sanitized = sanitize_name(name)
        if sanitized != name:
            candidates.append(sanitized)

        for candidate in candidates:
            # Only plain file names; never follow a path out of save_dir.
            if Path(candidate).name != candidate:
                continue
            path = self.save_dir / f"{candidate}.json"
            try:
                text = await read_text(path)
            except FileNotFoundError:
                continue
            messages, metadata = _parse_session(text, path)
            self._replace(messages, metadata, metadata.session_name or sanitized)
            self._state = SaveState.IDLE
            logger.info("Session loaded from %s (%d messages)", path, len(messages))
            return path

        raise NotFoundError(f"Session {name!r} not found in {self.save_dir}")

    def _replace(
        self, messages: list[Message], metadata: SessionMetadata, name: str
    ) -> None:
        self._messages = messages
        self._metadata = metadata
        self._session_name = name

    async def load_last_session(self) -> bool:
        """Load the most recently modified valid session, if there is one."""
        name = await self.get_last_modified_session()
        if name is None:
            logger.info("No previous session found to load")
            return False
        try:
            await self.load(name)
        except ChatkeepError as exc:
            logger.warning("Error loading last session %r: %s", name, exc)
            return False
        return True

    async def delete_session(self, name: str) -> Path:
        sanitized = sanitize_name(name)
        path = self.save_dir / f"{sanitized}.json"
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            raise NotFoundError(f"Session {name!r} not found") from None
        except OSError as exc:
            raise StorageIOError(f"Failed to delete session {name!r}: {exc}") from exc

        logger.info("Session %r deleted", name)
        if self._session_name == sanitized:
            self.clear()
        return path

    # ------------------------------------------------------------------
    # Export and backup
    # ------------------------------------------------------------------

    async def export_conversation(
        self, fmt: str = "json", filename: str | None = None
    ) -> Path:
        """
        Write the conversation as ``json``, ``markdown``, ``text`` or ``csv``.

        Without *filename* the file is
        ``<save_dir>/<name>_export_<unix time>.<ext>``.
        """
        canonical, ext = exporters.resolve_format(fmt)
        if filename is None:
            name = self._session_name or UNSAVED_NAME
            filename = f"{name}_export_{unix_time()}.{ext}"
        path = self.save_dir / filename

        analytics = self.analytics()
        if canonical == "json":
            content = exporters.to_json(
                self._metadata, self._messages, analytics, utc_now_iso()
            )
        elif canonical == "markdown":
            content = exporters.to_markdown(
                self._session_name, self._metadata, self._messages, analytics
            )
        elif canonical == "text":
            content = exporters.to_text(self._session_name, self._metadata, self._messages)
        else:
            content = exporters.to_csv(self._messages)

        try:
            await ensure_dir(path.parent)
            await write_text_atomic(path, content)
        except StorageIOError as exc:
            logger.error("Failed to export conversation: %s", exc)
            raise
        logger.info("Conversation exported as %s to %s", canonical, path)
        return path

    async def create_backup(self) -> Path | None:
        """Snapshot the session under ``backups/``; ``None`` if there is nothing to back up."""
        if not self._messages:
            logger.info("No conversation to back up")
            return None

        name = self._session_name or UNSAVED_NAME
        path = self.backup_dir / f"{name}_backup_{unix_time()}.json"
        payload = self._payload(
            {
                "sessionName": name,
                "backupCreatedAt": utc_now_iso(),
                "originalSessionName": self._session_name,
            }
        )
        await ensure_dir(self.backup_dir)
        await write_json_atomic(path, payload)
        logger.info("Backup created: %s", path.name)
        return path

    async def list_backups(self) -> list[str]:
        try:
            entries = await aiofiles.os.listdir(self.backup_dir)
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageIOError(f"Could not list {self.backup_dir}: {exc}") from exc
        return sorted(e[: -len(".json")] for e in entries if e.endswith(".json"))

    async def restore_backup(self, backup_name: str) -> Path:
        """Replace the in-memory session with a backup snapshot."""
        if not backup_name or not backup_name.strip():
            raise ValidationError("Backup name cannot be empty")
        stem = backup_name[: -len(".json")] if backup_name.endswith(".json") else backup_name
        if Path(stem).name != stem:
            raise ValidationError(f"Invalid backup name: {backup_name!r}")

        path = self.backup_dir / f"{stem}.json"
        try:
            text = await read_text(path)
        except FileNotFoundError:
            raise NotFoundError(f"Backup {backup_name!r} not found") from None

        messages, metadata = _parse_session(text, path)
        self._replace(messages, metadata, metadata.session_name or stem)
        # The restored content is not yet in the primary session file.
        self._state = SaveState.DIRTY if messages else SaveState.IDLE
        logger.info("Session restored from backup %s (%d messages)", path.name, len(messages))
        return path

    # ------------------------------------------------------------------
    # Directory scans
    # ------------------------------------------------------------------

    def _is_session_file(self, filename: str) -> bool:
        return (
            filename.endswith(".json")
            and filename != self._settings.vector_store_filename
            and not _EXPORT_FILE.search(filename)
            and not _BACKUP_FILE.search(filename)
        )

    async def _scan(self) -> AsyncIterator[tuple[Path, Any, Any]]:
        """
        Yield ``(path, stat, data)`` for each session file, or
        ``(path, None, exc)`` when the file could not be read or decoded.
        """
        try:
            entries = await aiofiles.os.listdir(self.save_dir)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageIOError(f"Could not list {self.save_dir}: {exc}") from exc

        for filename in sorted(entries):
            if not self._is_session_file(filename):
                continue
            path = self.save_dir / filename
            try:
                stat = await aiofiles.os.stat(path)
                if stat.st_size == 0:
                    raise InvalidFormatError(f"{filename} is empty")
                data = _decode_session(await read_text(path), path)
            except (OSError, InvalidFormatError) as exc:
                yield path, None, exc
                continue
            yield path, stat, data

    async def list_available_sessions(self) -> list[SessionSummary]:
        """
        Describe every saved session. Files that cannot be read are
        reported with ``error`` set instead of aborting the listing.
        """
        sessions: list[SessionSummary] = []
        async for path, stat, data in self._scan():
            if stat is None:
                logger.warning("Skipping unreadable session file %s: %s", path.name, data)
                sessions.append(
                    SessionSummary(name=path.stem, path=str(path), error=str(data))
                )
                continue
            meta = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
            sessions.append(
                SessionSummary(
                    name=path.stem,
                    path=str(path),
                    original_name=meta.get("originalName") or path.stem,
                    message_count=len(data["conversationHistory"]),
                    modified_at=stat.st_mtime,
                )
            )
        return sessions

    async def get_last_modified_session(self) -> str | None:
        """Name of the newest valid session file, or ``None``."""
        best_name: str | None = None
        best_mtime = float("-inf")
        async for path, stat, data in self._scan():
            if stat is None:
                logger.warning("Skipping invalid session file %s: %s", path.name, data)
                continue
            if stat.st_mtime > best_mtime:
                best_mtime = stat.st_mtime
                best_name = path.stem
        return best_name
