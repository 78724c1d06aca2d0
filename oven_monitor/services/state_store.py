"""KeyValueStore: small durable JSON file for settings and active sessions."""

import json
import os
import tempfile
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional, Union

import structlog

from ..errors import PersistenceError


logger = structlog.get_logger(__name__)


class KeyValueStore:
    """Durable local key-value store.

    The whole mapping is rewritten on every change through a temporary file
    and ``os.replace``, so a crash leaves either the old or the new file.
    With no path the store lives in memory only.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._data: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not read state file, starting empty",
                           path=str(self.path), error=str(e))
            return

        if isinstance(data, dict):
            self._data = data
        else:
            logger.warning("Ignoring state file without a top-level object", path=str(self.path))

    def _save(self) -> None:
        if self.path is None:
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(self._data, f, indent=2, ensure_ascii=False)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            logger.error("Failed to write state file", path=str(self.path), error=str(e))
            raise PersistenceError(str(e)) from e

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            value = self._data.get(key, default)
            return deepcopy(value)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            previous = self._data.get(key)
            existed = key in self._data
            self._data[key] = deepcopy(value)
            try:
                self._save()
            except PersistenceError:
                if existed:
                    self._data[key] = previous
                else:
                    self._data.pop(key, None)
                raise

    def delete(self, key: str) -> None:
        with self._lock:
            if key not in self._data:
                return
            previous = self._data.pop(key)
            try:
                self._save()
            except PersistenceError:
                self._data[key] = previous
                raise


__all__ = ["KeyValueStore"]
