"""
Shared pytest fixtures for chatkeep tests.

Every test gets its own temporary save directory and a deterministic fake
embedder, so nothing touches the real ``./save`` folder and no model is
downloaded. Coroutines are driven with ``asyncio.run``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest

from chatkeep.config import Settings
from chatkeep.memory import MemoryManager
from chatkeep.session import SessionStore
from chatkeep.store import VectorMemoryStore


class FakeEmbedder:
    """
    Maps text to a unit vector derived from its MD5 hash. Identical text
    always gets an identical 16-dimensional vector.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        digest = hashlib.md5(text.encode()).digest()
        vec = [(b - 128) / 128.0 for b in digest]
        norm = sum(x * x for x in vec) ** 0.5 or 1.0
        return [x / norm for x in vec]


def write_session_file(directory: Path, name: str, messages: list[dict], **metadata) -> Path:
    """Write a session file in the on-disk format, bypassing SessionStore."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.json"
    meta = {"sessionName": name, "sessionId": f"session_{name}", **metadata}
    path.write_text(
        json.dumps({"metadata": meta, "conversationHistory": messages}),
        encoding="utf-8",
    )
    return path


@pytest.fixture()
def save_dir(tmp_path: Path) -> Path:
    return tmp_path / "save"


@pytest.fixture()
def settings(save_dir: Path) -> Settings:
    return Settings(save_dir=save_dir, flush_every=3)


@pytest.fixture()
def session_store(settings: Settings) -> SessionStore:
    return SessionStore(settings)


@pytest.fixture()
def vector_store(settings: Settings) -> VectorMemoryStore:
    return VectorMemoryStore(settings=settings)


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def memory_manager(vector_store: VectorMemoryStore, embedder: FakeEmbedder) -> MemoryManager:
    """MemoryManager wired to a temporary store and the fake embedder."""
    return MemoryManager(vector_store, embedder)
