"""A small JSON key/value document persisted on disk.

This is the client's durable storage: the location history, the session token
and the user profile each live under one key of the same document.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable

from location_tracker.errors import StorageError

logger = logging.getLogger(__name__)


class JsonKeyValueStore:
    """Key -> JSON value store backed by one file.

    Every write persists the whole document (write to ``*.tmp`` then replace), so a
    reader never sees a half-written file. Access is serialized with a lock.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def get_item(self, key: str, default: Any = None) -> Any:
        """Return the stored value, or ``default`` if the key is absent.

        Raises:
            StorageError: If the file exists but cannot be read.
        """

        with self._lock:
            return self._read().get(key, default)

    def set_item(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key`` and persist.

        Raises:
            StorageError: If the document cannot be written.
        """

        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key not in data:
                return
            del data[key]
            self._write(data)

    def update(self, key: str, fn: Callable[[Any], Any]) -> Any:
        """Read-modify-write one key atomically: ``value = fn(old_value)``."""

        with self._lock:
            data = self._read()
            value = fn(data.get(key))
            data[key] = value
            self._write(data)
            return value

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._read().keys())

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise StorageError(f"Cannot read {self._path}: {exc}") from exc
        if not text:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            # Store file corrupted: keep a backup and start fresh
            backup = self._path.with_suffix(self._path.suffix + ".broken")
            logger.warning("Store file %s is corrupted; moved to %s", self._path, backup)
            try:
                backup.write_text(text, encoding="utf-8")
            except OSError as exc:
                raise StorageError(f"Cannot back up corrupted {self._path}: {exc}") from exc
            return {}
        if not isinstance(data, dict):
            logger.warning("Store file %s does not hold an object; ignoring it", self._path)
            return {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self._path)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Cannot write {self._path}: {exc}") from exc
