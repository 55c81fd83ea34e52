"""Buffer of local changes that have not yet been confirmed synced."""

import logging
from typing import Iterable, Optional

from .exceptions import StorageFailureError
from .records import TaskRecord, records_from_list, records_to_list
from .storage import PENDING_CHANGES_KEY, KeyValueStore

logger = logging.getLogger(__name__)


class PendingChangeBuffer:
    """Maps record id to the most recent local version of that record.

    The buffer is persisted under ``pending_changes`` on every mutation and
    replayed by ``load()``, so edits staged before a restart are not lost.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._changes: dict[str, TaskRecord] = {}

    def __len__(self) -> int:
        return len(self._changes)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._changes

    def get(self, record_id: str) -> Optional[TaskRecord]:
        return self._changes.get(record_id)

    def snapshot(self) -> dict[str, TaskRecord]:
        """Return a shallow copy of the buffered changes."""
        return dict(self._changes)

    async def load(self) -> None:
        """Replay the persisted buffer."""
        raw = await self.store.get(PENDING_CHANGES_KEY)
        if not raw:
            self._changes = {}
            return
        try:
            records = records_from_list(raw)
        except ValueError as e:
            raise StorageFailureError(f"Stored pending changes are malformed: {e}") from e
        self._changes = {record.id: record for record in records}
        logger.debug(f"Replayed {len(self._changes)} pending change(s)")

    async def _persist(self, changes: dict[str, TaskRecord]) -> None:
        await self.store.set(PENDING_CHANGES_KEY, records_to_list(changes.values()))
        self._changes = changes

    async def stage(self, record: TaskRecord) -> None:
        """Insert or overwrite the buffered entry for ``record.id``."""
        changes = dict(self._changes)
        changes[record.id] = record
        await self._persist(changes)

    async def unstage(self, record_id: str) -> None:
        """Remove the entry for ``record_id`` if present."""
        if record_id not in self._changes:
            return
        changes = dict(self._changes)
        del changes[record_id]
        await self._persist(changes)

    async def unstage_synced(self, synced: dict[str, TaskRecord]) -> int:
        """Remove entries that were included in a committed sync cycle.

        An entry is only removed if the buffered version is still the one
        that was synced; a newer edit staged while the cycle was running
        stays in the buffer.

        Args:
            synced: Snapshot of the buffer taken when the cycle started

        Returns:
            Number of entries removed
        """
        changes = {
            record_id: record
            for record_id, record in self._changes.items()
            if synced.get(record_id) is not record
        }
        removed = len(self._changes) - len(changes)
        if removed:
            await self._persist(changes)
        return removed

    async def restore(self, snapshot: dict[str, TaskRecord]) -> None:
        """Replace the buffer with an earlier snapshot."""
        await self._persist(dict(snapshot))

    async def clear(self) -> None:
        await self._persist({})

    def records(self) -> Iterable[TaskRecord]:
        return list(self._changes.values())
