"""Key-value persistence used by every tasksync component.

The host application is expected to provide a string-keyed store of
JSON-serializable values. Two implementations ship with tasksync: an
in-memory store and a store backed by a single JSON file.
"""

import asyncio
import copy
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from .exceptions import StorageFailureError
from .records import TaskRecord, records_from_list, records_to_list

logger = logging.getLogger(__name__)

# =============================================================================
# Persisted keys
# =============================================================================

DEVICE_ID_KEY = "device_id"
PAIRED_DEVICES_KEY = "paired_devices"
SYNC_STATE_KEY = "sync_state"
LAST_SYNC_TIME_KEY = "last_sync_time"
VERSION_HISTORY_KEY = "version_history"
VERSION_CONFIG_KEY = "version_config"
PENDING_CHANGES_KEY = "pending_changes"
SYNCED_IDS_KEY = "synced_ids"
TASKS_KEY = "todos"


class KeyValueStore(ABC):
    """Async get/set/delete store for JSON-serializable values."""

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the value stored under ``key`` or None if absent."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; removing a missing key is a no-op."""


class MemoryStore(KeyValueStore):
    """In-memory store.

    Values are round-tripped through JSON on write so that callers get the
    same failures (and the same isolation from later mutation) as with a
    persistent store.
    """

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, key: str) -> Any:
        return copy.deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            raise StorageFailureError(f"Value for {key!r} is not JSON-serializable: {e}") from e

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileStore(KeyValueStore):
    """Store holding all keys in one JSON file.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash never leaves a truncated file behind.
    """

    def __init__(self, path: Path):
        """Initialize the file store.

        Args:
            path: JSON file to read and write. Parent directories are
                  created on first write.
        """
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageFailureError(f"Failed to read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageFailureError(f"Store file {self.path} does not hold an object")
        return data

    def _write_all(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise StorageFailureError(f"Failed to write {self.path}: {e}") from e
        logger.debug(f"Wrote {len(data)} key(s) to {self.path}")

    async def get(self, key: str) -> Any:
        async with self._lock:
            return self._read_all().get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = self._read_all()
            if key in data:
                del data[key]
                self._write_all(data)


class KeyValueTaskStore:
    """The application's live task list, persisted under a single key.

    The sync coordinator reads the current records from here at the start of
    a cycle and installs the reconciled set at commit time.
    """

    def __init__(self, store: KeyValueStore, key: str = TASKS_KEY):
        self.store = store
        self.key = key

    async def load(self) -> list[TaskRecord]:
        raw = await self.store.get(self.key)
        if raw is None:
            return []
        try:
            return records_from_list(raw)
        except ValueError as e:
            raise StorageFailureError(f"Stored task list is malformed: {e}") from e

    async def replace(self, records: list[TaskRecord]) -> None:
        await self.store.set(self.key, records_to_list(records))
