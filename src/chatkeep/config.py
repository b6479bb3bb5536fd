"""
Runtime configuration and logging setup.

Configuration (environment variables, all optional):
    CHATKEEP_SAVE_DIR     - directory holding session files (default: ./save)
    CHATKEEP_FLUSH_EVERY  - vector store flush interval in inserts (default: 10)
    CHATKEEP_AUTOSAVE     - "1"/"true" enables save-on-exit (default: off)
    CHATKEEP_MODEL        - sentence-transformers model (default: all-MiniLM-L6-v2)
    CHATKEEP_LOG_LEVEL    - logging level name (default: INFO)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from .errors import ValidationError

DEFAULT_SAVE_DIR = "./save"
DEFAULT_MODEL = "all-MiniLM-L6-v2"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Every recognised option with its default value."""

    save_dir: Path = Path(DEFAULT_SAVE_DIR)
    backup_dirname: str = "backups"
    vector_store_filename: str = "vector-store.json"
    flush_every: int = 10
    autosave_on_exit: bool = False
    embedding_model: str = DEFAULT_MODEL
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        object.__setattr__(self, "save_dir", Path(self.save_dir))
        if self.flush_every < 1:
            raise ValidationError(f"flush_every must be >= 1, got {self.flush_every}")

    @property
    def backup_dir(self) -> Path:
        return self.save_dir / self.backup_dirname

    @property
    def vector_store_path(self) -> Path:
        return self.save_dir / self.vector_store_filename

    def with_save_dir(self, save_dir: str | Path) -> "Settings":
        return replace(self, save_dir=Path(save_dir))

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Build settings from ``CHATKEEP_*`` environment variables."""
        env = os.environ if environ is None else environ
        flush_raw = env.get("CHATKEEP_FLUSH_EVERY")
        try:
            flush_every = int(flush_raw) if flush_raw else cls.flush_every
        except ValueError as exc:
            raise ValidationError(f"CHATKEEP_FLUSH_EVERY is not an integer: {flush_raw!r}") from exc
        return cls(
            save_dir=Path(env.get("CHATKEEP_SAVE_DIR", DEFAULT_SAVE_DIR)),
            flush_every=flush_every,
            autosave_on_exit=env.get("CHATKEEP_AUTOSAVE", "").strip().lower() in _TRUTHY,
            embedding_model=env.get("CHATKEEP_MODEL", DEFAULT_MODEL),
            log_level=env.get("CHATKEEP_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str | int = "INFO") -> None:
    """Attach a stderr handler to the ``chatkeep`` logger.

    Only entry points call this; library modules just use
    ``logging.getLogger(__name__)``.
    """
    root = logging.getLogger("chatkeep")
    root.setLevel(level)
    if not any(getattr(h, "_chatkeep", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handler._chatkeep = True  # type: ignore[attr-defined]
        root.addHandler(handler)
