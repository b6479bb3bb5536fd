"""
Embedding providers.

The stores never embed anything themselves; callers hand them vectors.
:class:`MemoryManager` accepts any object with an ``embed(text)`` method and
defaults to a local sentence-transformers model.
"""

from __future__ import annotations

from typing import Protocol

from sentence_transformers import SentenceTransformer

from .config import DEFAULT_MODEL


class EmbeddingProvider(Protocol):
    def embed(self, text: str) -> list[float]:
        """Return a fixed-dimension vector for *text*."""
        ...


class SentenceTransformerEmbedder:
    """Embed text with a HuggingFace sentence-transformers model."""

    def __init__(self, model_name: str = DEFAULT_MODEL) -> None:
        self.model_name = model_name
        self._model: SentenceTransformer | None = None

    @property
    def model(self) -> SentenceTransformer:
        # Loading the model is slow; defer it to the first embed() call.
        if self._model is None:
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, text: str) -> list[float]:
        vector = self.model.encode(text, normalize_embeddings=True)
        return [float(x) for x in vector]
