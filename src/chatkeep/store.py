"""
Persistent vector store with brute-force cosine-similarity search.

The whole store lives in memory and is mirrored to a single JSON file::

    {"vectors":  {"<id>": {"embedding": [float, ...]}},
     "metadata": {"<id>": {..., "timestamp": int, "dimensions": int}},
     "lastSaved": ISO8601, "count": int}

Search scores every stored embedding (O(n * d)); no index is built, which is
fine for a single user's local history.
"""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from .config import Settings
from .errors import InvalidFormatError, StorageIOError, ValidationError
from .fileio import ensure_dir, read_text, write_json_atomic
from .helpers import rank_by_cosine
from .models import SearchHit, VectorRecord, utc_now_iso

logger = logging.getLogger(__name__)


def _as_vector(vector: Sequence[float], what: str = "vector") -> tuple[float, ...]:
    try:
        values = tuple(float(x) for x in vector)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{what} must be a sequence of numbers") from exc
    if not values:
        raise ValidationError(f"{what} cannot be empty")
    if not all(math.isfinite(x) for x in values):
        raise ValidationError(f"{what} contains NaN or infinite values")
    return values


class VectorMemoryStore:
    """
    id -> (embedding, metadata) mapping persisted to one JSON file.

    The file is read lazily on first use. Every ``flush_every``-th insert,
    every successful ``delete`` and every ``clear`` rewrites the whole file.
    A failed flush is logged; the in-memory change stays and goes out with
    the next successful flush.

    All embeddings share one dimensionality, fixed by the first record;
    anything else is rejected with :class:`ValidationError`.

    Parameters
    ----------
    path:
        Location of the JSON file; defaults to ``settings.vector_store_path``.
    flush_every:
        Number of inserts between automatic flushes; defaults to
        ``settings.flush_every``.
    settings:
        Configuration used for the defaults above.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        flush_every: int | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or Settings()
        self._path = Path(path) if path is not None else settings.vector_store_path
        self._flush_every = flush_every if flush_every is not None else settings.flush_every
        if self._flush_every < 1:
            raise ValidationError(f"flush_every must be >= 1, got {self._flush_every}")
        self._records: dict[str, VectorRecord] = {}
        self._loaded = False
        self._inserts_since_flush = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def dimensions(self) -> int:
        """Established embedding dimension, 0 while the store is empty."""
        for record in self._records.values():
            return record.dimensions
        return 0

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Read the store file once. A missing or malformed file means an empty store."""
        if self._loaded:
            return
        try:
            text = await read_text(self._path)
        except FileNotFoundError:
            logger.info("No existing vector store at %s, starting fresh", self._path)
            self._loaded = True
            return
        except (StorageIOError, InvalidFormatError) as exc:
            logger.warning("Could not read vector store, starting empty: %s", exc)
            self._loaded = True
            return

        try:
            records = self._decode(text)
        except ValueError as exc:
            logger.warning("Malformed vector store %s, starting empty: %s", self._path, exc)
            records = {}

        self._records = records
        self._loaded = True
        logger.info("Loaded %d vectors from %s", len(records), self._path)

    def _decode(self, text: str) -> dict[str, VectorRecord]:
        data = json.loads(text)
        if not isinstance(data, dict) or not isinstance(data.get("vectors"), dict):
            raise ValueError("missing 'vectors' object")
        all_meta = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}

        records: dict[str, VectorRecord] = {}
        dims = 0
        for id_, item in data["vectors"].items():
            try:
                embedding = _as_vector(item["embedding"], "embedding")
            except (KeyError, TypeError, ValidationError) as exc:
                logger.warning("Skipping stored vector %r: %s", id_, exc)
                continue
            if dims and len(embedding) != dims:
                logger.warning(
                    "Skipping stored vector %r: %d dimensions, expected %d",
                    id_,
                    len(embedding),
                    dims,
                )
                continue
            dims = len(embedding)
            meta = all_meta.get(id_)
            meta = dict(meta) if isinstance(meta, dict) else {}
            inserted_at = meta.get("timestamp")
            if not isinstance(inserted_at, (int, float)) or not math.isfinite(inserted_at):
                inserted_at = 0
            records[id_] = VectorRecord(
                id=id_,
                embedding=embedding,
                metadata=meta,
                inserted_at=int(inserted_at),
            )
        return records

    def _payload(self) -> dict[str, Any]:
        return {
            "vectors": {
                id_: {"embedding": list(r.embedding)} for id_, r in self._records.items()
            },
            "metadata": {id_: r.metadata for id_, r in self._records.items()},
            "lastSaved": utc_now_iso(),
            "count": len(self._records),
        }

    async def save(self) -> None:
        """Rewrite the whole store file."""
        await self._ensure_loaded()
        await ensure_dir(self._path.parent)
        await write_json_atomic(self._path, self._payload())
        self._inserts_since_flush = 0
        logger.info("Saved %d vectors to %s", len(self._records), self._path)

    async def _flush(self) -> None:
        try:
            await self.save()
        except StorageIOError as exc:
            logger.error("Error saving vector store: %s", exc)

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def store(
        self,
        id: str,
        vector: Sequence[float],
        metadata: dict[str, Any] | None = None,
    ) -> VectorRecord:
        """
        Insert or fully replace the record under *id*.

        ``timestamp`` (ms since the epoch) and ``dimensions`` are added to the
        metadata. A replaced record keeps its place in insertion order.
        """
        await self._ensure_loaded()
        if not isinstance(id, str) or not id:
            raise ValidationError("id must be a non-empty string")
        embedding = _as_vector(vector)

        established = self.dimensions
        if established and len(embedding) != established:
            raise ValidationError(
                f"Embedding for {id!r} has {len(embedding)} dimensions; "
                f"this store holds {established}-dimensional vectors"
            )

        now_ms = int(time.time() * 1000)
        meta = dict(metadata or {})
        meta["timestamp"] = now_ms
        meta["dimensions"] = len(embedding)
        record = VectorRecord(id=id, embedding=embedding, metadata=meta, inserted_at=now_ms)
        self._records[id] = record
        logger.debug("Stored vector %r (%d items total)", id, len(self._records))

        self._inserts_since_flush += 1
        if self._inserts_since_flush >= self._flush_every:
            await self._flush()
        return replace(record, metadata=dict(meta))

    async def delete(self, id: str) -> bool:
        """Remove *id*; returns ``False`` (and does nothing) if it is absent."""
        await self._ensure_loaded()
        if id not in self._records:
            return False
        del self._records[id]
        logger.info("Deleted vector %r", id)
        await self._flush()
        return True

    async def clear(self) -> None:
        await self._ensure_loaded()
        self._records.clear()
        await self._flush()
        logger.info("Cleared all vectors")

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def search(self, query_vector: Sequence[float], k: int = 5) -> list[SearchHit]:
        """
        Return up to *k* records most similar to *query_vector*.

        Hits are ordered by descending cosine similarity; equal scores keep
        insertion order.
        """
        if not isinstance(k, int) or isinstance(k, bool) or k <= 0:
            raise ValidationError(f"k must be a positive integer, got {k!r}")
        await self._ensure_loaded()
        query = _as_vector(query_vector, "query vector")
        if not self._records:
            return []
        if len(query) != self.dimensions:
            raise ValidationError(
                f"Query has {len(query)} dimensions; store holds {self.dimensions}"
            )

        records = list(self._records.values())
        matrix = np.array([r.embedding for r in records], dtype=float)
        ranked = rank_by_cosine(query, matrix, k)
        logger.debug("Found %d similar vectors among %d stored", len(ranked), len(records))
        return [
            SearchHit(id=records[i].id, similarity=score, metadata=dict(records[i].metadata))
            for i, score in ranked
        ]

    async def get(self, id: str) -> VectorRecord | None:
        """Return a copy of the record for *id*, or ``None``."""
        await self._ensure_loaded()
        record = self._records.get(id)
        if record is None:
            return None
        return replace(record, metadata=dict(record.metadata))

    async def ids(self) -> list[str]:
        await self._ensure_loaded()
        return list(self._records)

    async def count(self) -> int:
        await self._ensure_loaded()
        return len(self._records)

    async def get_stats(self) -> dict[str, Any]:
        await self._ensure_loaded()
        return {
            "totalVectors": len(self._records),
            "dimensions": self.dimensions,
            "approxSizeBytes": len(json.dumps(self._payload())),
        }
