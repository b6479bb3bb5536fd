"""
Small pure helpers shared by the stores.

  - Session name sanitisation and id generation
  - Cosine similarity and top-k ranking for the vector store
  - Chunking of long texts before they are embedded
"""

from __future__ import annotations

import random
import re
import string
import time
import uuid
from typing import Sequence

import numpy as np

from .errors import ValidationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Characters outside this class are replaced with ``_`` in session names.
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9\-_]")

#: Maximum number of characters per chunk when splitting long texts.
DEFAULT_CHUNK_SIZE: int = 500

_BASE36 = string.digits + string.ascii_lowercase


# ---------------------------------------------------------------------------
# Names and ids
# ---------------------------------------------------------------------------


def sanitize_name(name: str) -> str:
    """
    Return a filesystem-safe version of *name*.

    Every character outside ``[A-Za-z0-9_-]`` becomes ``_``. The mapping is
    deterministic and idempotent: ``sanitize_name(sanitize_name(x)) ==
    sanitize_name(x)``.
    """
    if name is None or not str(name).strip():
        raise ValidationError("Session name cannot be empty")
    return _UNSAFE_NAME_CHARS.sub("_", str(name))


def unix_time() -> int:
    return int(time.time())


def _random_base36(length: int) -> str:
    return "".join(random.choice(_BASE36) for _ in range(length))


def generate_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{_random_base36(9)}"


def generate_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{_random_base36(6)}"


def generate_id() -> str:
    """Return a new unique memory ID."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    ``(a . b) / (|a| |b|)``. A zero-length vector has similarity 0.0 with
    everything.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValidationError(
            f"Dimension mismatch: {va.shape[0]} vs {vb.shape[0]}"
        )
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def rank_by_cosine(
    query: Sequence[float],
    matrix: np.ndarray,
    k: int,
) -> list[tuple[int, float]]:
    """
    Score every row of *matrix* against *query* and return the best *k*
    ``(row_index, similarity)`` pairs, highest first.

    Equal scores keep row order (stable sort), so earlier rows win ties.
    """
    if k <= 0:
        raise ValidationError(f"k must be positive, got {k}")
    if matrix.size == 0:
        return []

    q = np.asarray(query, dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms > 0, dots / norms, 0.0)

    order = np.argsort(-sims, kind="stable")[:k]
    return [(int(i), float(sims[i])) for i in order]


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


def chunk_text(text: str, max_chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """
    Split *text* into chunks of at most *max_chunk_size* characters.

    Paragraphs (blank-line separated) are packed together until the next
    one would overflow; a paragraph that is too long on its own is split on
    sentence boundaries instead.
    """
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]
    if not paragraphs:
        return [text.strip()] if text.strip() else []

    chunks: list[str] = []
    current: list[str] = []
    size = 0

    for para in paragraphs:
        if len(para) > max_chunk_size:
            if current:
                chunks.append("\n\n".join(current))
                current, size = [], 0
            buf: list[str] = []
            buf_size = 0
            for sent in _split_sentences(para):
                if buf and buf_size + len(sent) > max_chunk_size:
                    chunks.append(" ".join(buf))
                    buf, buf_size = [], 0
                buf.append(sent)
                buf_size += len(sent)
            if buf:
                chunks.append(" ".join(buf))
            continue

        if current and size + len(para) > max_chunk_size:
            chunks.append("\n\n".join(current))
            current, size = [], 0
        current.append(para)
        size += len(para)

    if current:
        chunks.append("\n\n".join(current))
    return chunks


def _split_sentences(text: str) -> list[str]:
    parts = re.split(r"(?<=[.!?])\s+", text)
    return [p.strip() for p in parts if p.strip()]
