"""Record comparison logic for sync cycles."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..records import TaskRecord


class MergeAction(str, Enum):
    """Actions that can be taken for a record during a sync cycle."""

    KEEP_LOCAL = "keep_local"
    """Keep the local version and upload it"""

    TAKE_REMOTE = "take_remote"
    """Replace (or create) the local record with the remote version"""

    DELETE_LOCAL = "delete_local"
    """Record was deleted remotely, drop it locally"""

    DELETE_REMOTE = "delete_remote"
    """Record was deleted locally, drop it from the remote set"""

    SKIP = "skip"
    """Both sides agree (no action needed)"""

    CONFLICT = "conflict"
    """Record changed on both sides"""


@dataclass
class MergeDecision:
    """Represents a decision about how to reconcile one record."""

    action: MergeAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    local_record: Optional[TaskRecord]
    """Local record (if exists)"""

    remote_record: Optional[TaskRecord]
    """Remote record (if exists)"""

    record_id: str
    """Id of the record"""

    @property
    def result(self) -> Optional[TaskRecord]:
        """Record that survives this decision (conflicts are resolved elsewhere)."""
        if self.action == MergeAction.KEEP_LOCAL:
            return self.local_record
        if self.action == MergeAction.TAKE_REMOTE:
            return self.remote_record
        if self.action == MergeAction.SKIP:
            return self.remote_record or self.local_record
        return None


class RecordComparator:
    """Compares local and remote record sets to determine merge actions.

    A record is in conflict when a pending local change and a remote record
    share an id but differ in ``updated_at``. A record present on only one
    side is a creation or a deletion; ``synced_ids`` (the ids present after
    the last successful cycle) tells the two apart.
    """

    def __init__(self, synced_ids: Optional[set[str]] = None):
        """Initialize record comparator.

        Args:
            synced_ids: Record ids present on both sides after the last
                successful cycle
        """
        self.synced_ids = synced_ids or set()

    def compare_records(
        self,
        local_records: list[TaskRecord],
        pending: dict[str, TaskRecord],
        remote_records: list[TaskRecord],
    ) -> list[MergeDecision]:
        """Compare local and remote records and determine merge actions.

        Args:
            local_records: Live local records
            pending: Buffered local changes (override ``local_records``)
            remote_records: Records just downloaded from the provider

        Returns:
            List of MergeDecision, remote order first, then local-only
            records in local order
        """
        local_map: dict[str, TaskRecord] = {r.id: r for r in local_records}
        local_order = [r.id for r in local_records]
        for record_id, record in pending.items():
            if record_id not in local_map:
                local_order.append(record_id)
            local_map[record_id] = record

        decisions: list[MergeDecision] = []
        seen: set[str] = set()

        for remote in remote_records:
            if remote.id in seen:
                # Duplicate id in the remote array, first occurrence wins
                continue
            seen.add(remote.id)
            decisions.append(
                self._compare_single_record(
                    remote.id, local_map.get(remote.id), remote, remote.id in pending
                )
            )

        for record_id in local_order:
            if record_id in seen:
                continue
            seen.add(record_id)
            decisions.append(
                self._compare_single_record(
                    record_id, local_map[record_id], None, record_id in pending
                )
            )

        return decisions

    def _compare_single_record(
        self,
        record_id: str,
        local: Optional[TaskRecord],
        remote: Optional[TaskRecord],
        is_pending: bool,
    ) -> MergeDecision:
        # Case 1: Record exists on both sides
        if local and remote:
            return self._compare_existing_records(record_id, local, remote, is_pending)

        # Case 2: Record only exists locally
        if local and not remote:
            return self._handle_local_only(record_id, local, is_pending)

        # Case 3: Record only exists remotely
        if remote and not local:
            return self._handle_remote_only(record_id, remote)

        # Should never happen
        return MergeDecision(
            action=MergeAction.SKIP,
            reason="No record found",
            local_record=None,
            remote_record=None,
            record_id=record_id,
        )

    def _compare_existing_records(
        self,
        record_id: str,
        local: TaskRecord,
        remote: TaskRecord,
        is_pending: bool,
    ) -> MergeDecision:
        """Compare records that exist on both sides."""
        if is_pending:
            if local.updated_at != remote.updated_at:
                return MergeDecision(
                    action=MergeAction.CONFLICT,
                    reason=(
                        f"Changed on both sides "
                        f"(local {local.updated_at.isoformat()}, "
                        f"remote {remote.updated_at.isoformat()})"
                    ),
                    local_record=local,
                    remote_record=remote,
                    record_id=record_id,
                )
            return MergeDecision(
                action=MergeAction.SKIP,
                reason="Pending change already present remotely",
                local_record=local,
                remote_record=remote,
                record_id=record_id,
            )

        if local.to_dict() == remote.to_dict():
            return MergeDecision(
                action=MergeAction.SKIP,
                reason="Records are identical",
                local_record=local,
                remote_record=remote,
                record_id=record_id,
            )

        return MergeDecision(
            action=MergeAction.TAKE_REMOTE,
            reason="Remote version is newer than unchanged local record",
            local_record=local,
            remote_record=remote,
            record_id=record_id,
        )

    def _handle_local_only(
        self, record_id: str, local: TaskRecord, is_pending: bool
    ) -> MergeDecision:
        """Handle record that only exists locally."""
        if is_pending:
            return MergeDecision(
                action=MergeAction.KEEP_LOCAL,
                reason="New or changed local record",
                local_record=local,
                remote_record=None,
                record_id=record_id,
            )
        if record_id in self.synced_ids:
            return MergeDecision(
                action=MergeAction.DELETE_LOCAL,
                reason="Record deleted remotely",
                local_record=local,
                remote_record=None,
                record_id=record_id,
            )
        return MergeDecision(
            action=MergeAction.KEEP_LOCAL,
            reason="Local record never synced",
            local_record=local,
            remote_record=None,
            record_id=record_id,
        )

    def _handle_remote_only(self, record_id: str, remote: TaskRecord) -> MergeDecision:
        """Handle record that only exists remotely."""
        if record_id in self.synced_ids:
            return MergeDecision(
                action=MergeAction.DELETE_REMOTE,
                reason="Record deleted locally",
                local_record=None,
                remote_record=remote,
                record_id=record_id,
            )
        return MergeDecision(
            action=MergeAction.TAKE_REMOTE,
            reason="New remote record",
            local_record=None,
            remote_record=remote,
            record_id=record_id,
        )
