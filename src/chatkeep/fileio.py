"""
Asynchronous file helpers built on aiofiles.

Writes go to ``<path>.tmp`` first and are moved over the destination with
``os.replace`` so readers never observe a half-written file.
"""

from __future__ import annotations

import contextlib
import json
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from .errors import InvalidFormatError, StorageIOError


async def ensure_dir(path: Path) -> None:
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as exc:
        raise StorageIOError(f"Could not create directory {path}: {exc}") from exc


async def write_text_atomic(path: Path, text: str) -> None:
    tmp = path.with_name(path.name + ".tmp")
    try:
        async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
            await f.write(text)
        await aiofiles.os.replace(tmp, path)
    except OSError as exc:
        with contextlib.suppress(OSError):
            await aiofiles.os.remove(tmp)
        raise StorageIOError(f"Could not write {path}: {exc}") from exc


async def write_json_atomic(path: Path, payload: Any) -> int:
    """Serialise *payload* to *path*; returns the number of characters written."""
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    await write_text_atomic(path, text)
    return len(text)


async def read_text(path: Path) -> str:
    """
    Read *path* as UTF-8. ``FileNotFoundError`` propagates, undecodable
    bytes raise :class:`InvalidFormatError` and other errors are wrapped.
    """
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return await f.read()
    except FileNotFoundError:
        raise
    except UnicodeDecodeError as exc:
        raise InvalidFormatError(f"{path.name} is not valid UTF-8: {exc}") from exc
    except OSError as exc:
        raise StorageIOError(f"Could not read {path}: {exc}") from exc
