"""
chatkeep: local conversation persistence and semantic recall for a
single-user chat tool.

Provides a session store with search, export and backups, a save-on-exit
controller, and a JSON-backed vector store with cosine-similarity search.
"""

from .autosave import AutosaveController
from .config import Settings
from .errors import (
    ChatkeepError,
    InvalidFormatError,
    NotFoundError,
    StorageIOError,
    ValidationError,
)
from .memory import MemoryManager
from .models import Message, SaveState, SearchOptions, SessionMetadata, VectorRecord
from .session import SessionStore
from .store import VectorMemoryStore

__all__ = [
    "AutosaveController",
    "ChatkeepError",
    "InvalidFormatError",
    "MemoryManager",
    "Message",
    "NotFoundError",
    "SaveState",
    "SearchOptions",
    "SessionMetadata",
    "SessionStore",
    "Settings",
    "StorageIOError",
    "ValidationError",
    "VectorMemoryStore",
    "VectorRecord",
]
