"""Conflict resolution for sync cycles.

Given a list of conflicts (the same record changed locally and remotely),
the resolver picks one winner per conflict according to the configured
policy. All winners are computed before the caller merges anything.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..devices import DeviceRecord
from ..records import TaskRecord
from .state import ConflictPolicy

logger = logging.getLogger(__name__)


@dataclass
class SyncConflict:
    """A record changed both locally and remotely."""

    item_id: str
    """Id of the conflicting record"""

    local_version: TaskRecord
    """Version from the local pending-change buffer"""

    remote_version: TaskRecord
    """Version downloaded from the provider"""

    peer_device: DeviceRecord
    """Device that produced the remote version"""


ConflictCallback = Callable[[SyncConflict], Awaitable[TaskRecord]]


class ConflictResolver:
    """Picks a winner for each conflict according to a ConflictPolicy."""

    def __init__(
        self,
        local_device_id: str,
        policy: ConflictPolicy = ConflictPolicy.LAST_MODIFIED,
        device_priority_order: Optional[list[str]] = None,
    ):
        """Initialize conflict resolver.

        Args:
            local_device_id: Id of this device (owner of local versions)
            policy: Resolution policy
            device_priority_order: Device ids, highest priority first
        """
        self.local_device_id = local_device_id
        self.policy = policy
        self.device_priority_order = list(device_priority_order or [])
        self._callbacks: list[ConflictCallback] = []

    def add_conflict_callback(self, callback: ConflictCallback) -> None:
        self._callbacks.append(callback)

    def remove_conflict_callback(self, callback: ConflictCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    @property
    def callbacks(self) -> list[ConflictCallback]:
        return list(self._callbacks)

    async def resolve(self, conflicts: list[SyncConflict]) -> list[TaskRecord]:
        """Resolve every conflict.

        Args:
            conflicts: Conflicts detected in one sync cycle

        Returns:
            Winning record for each conflict, in the same order
        """
        winners = []
        for conflict in conflicts:
            winner = await self.resolve_one(conflict)
            logger.debug(
                f"Conflict on {conflict.item_id} resolved by {self.policy.value}: "
                f"{'local' if winner is conflict.local_version else 'remote'} wins"
            )
            winners.append(winner)
        return winners

    async def resolve_one(self, conflict: SyncConflict) -> TaskRecord:
        """Resolve a single conflict."""
        if self.policy == ConflictPolicy.LAST_MODIFIED:
            return self._by_last_modified(conflict)
        if self.policy == ConflictPolicy.DEVICE_PRIORITY:
            return self._by_device_priority(conflict)
        if self.policy == ConflictPolicy.MANUAL:
            return await self._by_callback(conflict)
        # Unknown policy, keep the local version
        return conflict.local_version

    def _by_last_modified(self, conflict: SyncConflict) -> TaskRecord:
        """Newest updated_at wins; exact ties go to the local version."""
        if conflict.remote_version.updated_at > conflict.local_version.updated_at:
            return conflict.remote_version
        return conflict.local_version

    def _rank(self, device_id: Optional[str]) -> Optional[int]:
        if device_id is None or device_id not in self.device_priority_order:
            return None
        return self.device_priority_order.index(device_id)

    def _by_device_priority(self, conflict: SyncConflict) -> TaskRecord:
        """Lower index in device_priority_order wins.

        A device missing from the list ranks below every listed device.
        When neither side is listed, or both rank equally, fall back to
        last-modified.
        """
        local_rank = self._rank(conflict.local_version.device_id or self.local_device_id)
        remote_rank = self._rank(conflict.remote_version.device_id or conflict.peer_device.id)

        if local_rank is None and remote_rank is None:
            return self._by_last_modified(conflict)
        if remote_rank is None:
            return conflict.local_version
        if local_rank is None:
            return conflict.remote_version
        if local_rank == remote_rank:
            return self._by_last_modified(conflict)
        return conflict.local_version if local_rank < remote_rank else conflict.remote_version

    async def _by_callback(self, conflict: SyncConflict) -> TaskRecord:
        """Ask the first registered callback; without one keep the local version."""
        if not self._callbacks:
            logger.debug(
                f"No conflict callback registered, keeping local version of {conflict.item_id}"
            )
            return conflict.local_version
        return await self._callbacks[0](conflict)
