"""Key-value persistence backends for familycal.

The calendar store only needs an opaque async ``get``/``set``/``remove``
capability. Two backends are provided: an in-memory one (tests, ephemeral
runs) and a JSON file backend that keeps one file per key and writes each
file atomically.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Async key-value persistence capability consumed by CalendarStore."""

    async def get(self, key: str) -> Optional[Any]:
        """Return the JSON-compatible value stored under ``key`` or None."""
        ...

    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value under ``key``, replacing any previous value."""
        ...

    async def remove(self, key: str) -> None:
        """Delete ``key``; missing keys are ignored."""
        ...

    async def keys(self, prefix: str = "") -> list[str]:
        """Return stored keys starting with ``prefix``."""
        ...


class MemoryKeyValueStore:
    """In-memory backend. Values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileKeyValueStore:
    """One JSON file per key under ``directory``.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so readers never observe a half-written file.
    Blocking file I/O runs in a worker thread.
    """

    SUFFIX = ".json"

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory).expanduser()
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path_for(self, key: str) -> Path:
        if not key:
            raise ValueError("key must be a non-empty string")
        return self._dir / f"{quote(key, safe='')}{self.SUFFIX}"

    def _read(self, key: str) -> Optional[Any]:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to read %s: %s", path, exc)
            return None

    def _write(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        tmp_path: Optional[Path] = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self._dir, delete=False, encoding="utf-8", suffix=".tmp"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(value, tf, ensure_ascii=False)
                tf.flush()
                os.fsync(tf.fileno())
            tmp_path.replace(path)
        except Exception:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise

    def _remove(self, key: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            self._path_for(key).unlink()

    def _keys(self, prefix: str) -> list[str]:
        keys = []
        for path in self._dir.glob(f"*{self.SUFFIX}"):
            key = unquote(path.name[: -len(self.SUFFIX)])
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    async def keys(self, prefix: str = "") -> list[str]:
        return await asyncio.to_thread(self._keys, prefix)
