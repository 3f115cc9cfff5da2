"""
Module: kv.py
Description: Key-value stores backing the agent's persisted state.

Key Components:
- KeyValueStore: Protocol every store implements (get/set/remove)
- MemoryStore: Process-lifetime store, used as the session scope
- JsonFileStore: On-disk store, used as the long-lived scope
- StorageKeys: Well-known keys for persisted agent state

Stores raise StorageError on failure. Callers that must not fail
(queue persistence, identity writes) catch and log it.

Dependencies: json, os, pathlib, tempfile, threading
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from mindtrack.errors import StorageError, StorageQuotaExceeded
from mindtrack.utils.logger import get_logger

logger = get_logger(__name__)


class StorageKeys:
    """Keys of the persisted agent state."""

    USER_ID = "tracker_user_id"
    SESSION_ID = "tracker_session_id"
    PENDING_EVENTS = "tracker_pending_events"
    USER_ATTRIBUTES = "tracker_user_attrs"


class KeyValueStore(Protocol):
    """String key to string value store."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStore:
    """
    In-memory store living as long as the process.

    Used as the session-scoped store: a new process is a new session.
    An optional byte quota mimics browser storage limits.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        if quota_bytes is not None and quota_bytes <= 0:
            raise ValueError("quota_bytes must be positive")
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError("value must be a string")
        if self.quota_bytes is not None:
            used = sum(
                len(k) + len(v) for k, v in self._data.items() if k != key
            )
            if used + len(key) + len(value) > self.quota_bytes:
                raise StorageQuotaExceeded(
                    f"Writing {key!r} would exceed quota of {self.quota_bytes} bytes"
                )
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        """Drop every key, starting a new scope."""
        self._data.clear()


class JsonFileStore:
    """
    Store persisted as a single JSON object on disk.

    Every write rewrites the whole document through a temporary file
    and an atomic rename, so a crash leaves either the old or the new
    document. An unreadable document is treated as empty.
    """

    def __init__(self, path: Union[str, Path]):
        if not path:
            raise ValueError("path must be a non-empty path")
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e

        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable store file", path=str(self.path))
            return {}

        if not isinstance(data, dict):
            logger.warning("Discarding store file without an object", path=str(self.path))
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _dump(self, data: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError("value must be a string")
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._dump(data)
