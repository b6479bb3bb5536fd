"""
MemoryManager: remember and recall conversation text by meaning.

Usage example::

    from chatkeep import MemoryManager, VectorMemoryStore

    memory = MemoryManager(VectorMemoryStore("./save/vector-store.json"))

    ids = await memory.remember("The user's name is Arme.", role="user")

    for hit in await memory.recall("What is the user called?"):
        print(hit["content"], hit["similarity"])
"""

from __future__ import annotations

import logging
from typing import Any

from .embedding import EmbeddingProvider, SentenceTransformerEmbedder
from .helpers import DEFAULT_CHUNK_SIZE, chunk_text, generate_id
from .session import SessionStore
from .store import VectorMemoryStore

logger = logging.getLogger(__name__)


class MemoryManager:
    """
    Text-level layer over :class:`VectorMemoryStore`.

    Responsibilities
    ----------------
    * **Remember** – splits long text into chunks, embeds each chunk and
      stores it with the original text in its metadata.
    * **Recall** – embeds a query and returns the nearest stored chunks.
    * **Manage** – delete single memories and report store statistics.

    Parameters
    ----------
    store:
        The vector store to write into.
    embedder:
        Anything with ``embed(text) -> list[float]``. Defaults to a
        sentence-transformers model.
    chunk_size:
        Maximum characters per stored chunk.
    """

    def __init__(
        self,
        store: VectorMemoryStore,
        embedder: EmbeddingProvider | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._store = store
        self._embedder = embedder or SentenceTransformerEmbedder()
        self.chunk_size = chunk_size

    @property
    def store(self) -> VectorMemoryStore:
        return self._store

    async def remember(
        self,
        content: str,
        role: str | None = None,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> list[str]:
        """
        Embed and store *content*; returns the ids of the stored chunks.

        Blank content stores nothing.
        """
        base_meta: dict[str, Any] = dict(metadata or {})
        if role is not None:
            base_meta["role"] = role
        if session_id is not None:
            base_meta["session_id"] = session_id

        stored: list[str] = []
        for chunk in chunk_text(content, self.chunk_size):
            mem_id = generate_id()
            meta = dict(base_meta)
            meta["content"] = chunk
            await self._store.store(mem_id, self._embedder.embed(chunk), meta)
            stored.append(mem_id)
        return stored

    async def remember_session(self, session: SessionStore) -> list[str]:
        """Index every message of *session*, tagged with its session id."""
        session_id = session.metadata.session_id
        ids: list[str] = []
        for message in session.messages:
            ids.extend(
                await self.remember(
                    message.content,
                    role=message.role,
                    session_id=session_id,
                    metadata={"message_id": message.message_id},
                )
            )
        logger.info("Indexed %d memory chunks from session %s", len(ids), session_id)
        return ids

    async def recall(
        self,
        query: str,
        k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[dict[str, Any]]:
        """
        Return the stored chunks nearest to *query*.

        Each dict has keys ``id``, ``content``, ``similarity`` and
        ``metadata``; hits below *min_similarity* are dropped.
        """
        if await self._store.count() == 0:
            return []
        hits = await self._store.search(self._embedder.embed(query), k)
        return [
            {
                "id": hit.id,
                "content": hit.metadata.get("content", ""),
                "similarity": hit.similarity,
                "metadata": hit.metadata,
            }
            for hit in hits
            if hit.similarity >= min_similarity
        ]

    async def forget(self, memory_id: str) -> bool:
        return await self._store.delete(memory_id)

    async def stats(self) -> dict[str, Any]:
        return await self._store.get_stats()

    async def flush(self) -> None:
        await self._store.save()
