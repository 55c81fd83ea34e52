"""Version history: an append-only, retention-bounded log of checkpoints.

Each version holds a full deep copy of the task records at creation time
plus a descriptive list of changes. The log is kept newest first and is
pruned from the oldest end by age and by count.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

from .exceptions import StorageFailureError, VersionNotFoundError
from .records import TaskRecord
from .storage import VERSION_CONFIG_KEY, VERSION_HISTORY_KEY, KeyValueStore
from .utils import (
    format_iso_timestamp,
    generate_time_based_id,
    parse_iso_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    """Kind of change between two record sets."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class VersionChange:
    """A single record-level change."""

    type: ChangeType
    """Kind of change"""

    todo_id: str
    """Id of the changed record"""

    before: Optional[TaskRecord] = None
    """Record before the change (update, delete)"""

    after: Optional[TaskRecord] = None
    """Record after the change (create, update)"""

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "todoId": self.todo_id,
            "before": self.before.to_dict() if self.before else None,
            "after": self.after.to_dict() if self.after else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VersionChange":
        return cls(
            type=ChangeType(data["type"]),
            todo_id=data["todoId"],
            before=TaskRecord.from_dict(data["before"]) if data.get("before") else None,
            after=TaskRecord.from_dict(data["after"]) if data.get("after") else None,
        )


@dataclass(frozen=True)
class Version:
    """An immutable checkpoint of the full record set."""

    id: str
    timestamp: datetime
    description: str
    changes: list[VersionChange]
    snapshot: list[TaskRecord]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": format_iso_timestamp(self.timestamp),
            "description": self.description,
            "changes": [change.to_dict() for change in self.changes],
            "snapshot": [record.to_dict() for record in self.snapshot],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Version":
        timestamp = parse_iso_timestamp(data.get("timestamp"))
        if timestamp is None:
            raise ValueError(f"Version {data.get('id')} has no valid timestamp")
        return cls(
            id=data["id"],
            timestamp=timestamp,
            description=data.get("description", ""),
            changes=[VersionChange.from_dict(c) for c in data.get("changes", [])],
            snapshot=[TaskRecord.from_dict(r) for r in data.get("snapshot", [])],
        )


@dataclass
class VersionConfig:
    """Retention settings for the version log."""

    enabled: bool = True
    """Whether versions are recorded at all"""

    max_versions: int = 50
    """Maximum number of versions kept"""

    retention_days: int = 30
    """Versions older than this many days are dropped"""

    auto_cleanup: bool = True
    """Prune after every new version and on config changes"""

    def __post_init__(self) -> None:
        if self.max_versions < 0:
            raise ValueError(f"max_versions must not be negative, got {self.max_versions}")
        if self.retention_days < 0:
            raise ValueError(
                f"retention_days must not be negative, got {self.retention_days}"
            )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "maxVersions": self.max_versions,
            "retentionDays": self.retention_days,
            "autoCleanup": self.auto_cleanup,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VersionConfig":
        defaults = cls()
        return cls(
            enabled=bool(data.get("enabled", defaults.enabled)),
            max_versions=int(data.get("maxVersions", defaults.max_versions)),
            retention_days=int(data.get("retentionDays", defaults.retention_days)),
            auto_cleanup=bool(data.get("autoCleanup", defaults.auto_cleanup)),
        )

    def updated(self, **changes: Any) -> "VersionConfig":
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"Unknown version config field(s): {', '.join(sorted(unknown))}")
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(changes)
        return VersionConfig(**values)


def diff_records(
    before: list[TaskRecord], after: list[TaskRecord]
) -> list[VersionChange]:
    """Compute the changes that turn ``before`` into ``after``.

    Deletions and updates come first in the order of ``before``, then
    creations in the order of ``after``. Records count as updated when
    their serialized content differs.

    Examples:
        >>> diff_records([], [])
        []
    """
    before_map = {r.id: r for r in before}
    after_map = {r.id: r for r in after}
    changes: list[VersionChange] = []
    seen: set[str] = set()

    for record_id, old in before_map.items():
        seen.add(record_id)
        new = after_map.get(record_id)
        if new is None:
            changes.append(VersionChange(ChangeType.DELETE, record_id, before=old))
        elif old.to_dict() != new.to_dict():
            changes.append(VersionChange(ChangeType.UPDATE, record_id, before=old, after=new))

    for record_id, new in after_map.items():
        if record_id not in seen:
            changes.append(VersionChange(ChangeType.CREATE, record_id, after=new))

    return changes


class VersionStore:
    """Owns the version log and its retention settings."""

    def __init__(self, store: KeyValueStore, now: Callable[[], datetime] = utcnow):
        """Initialize version store.

        Args:
            store: Key-value store for the log and the config
            now: Clock used for version timestamps and age-based retention
        """
        self.store = store
        self._now = now
        self._versions: list[Version] = []
        self._config = VersionConfig()
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Load config and log, then prune if auto-cleanup is on."""
        raw_config = await self.store.get(VERSION_CONFIG_KEY)
        raw_versions = await self.store.get(VERSION_HISTORY_KEY) or []
        try:
            self._config = VersionConfig.from_dict(raw_config) if raw_config else VersionConfig()
            versions = [Version.from_dict(v) for v in raw_versions]
            self._versions = sorted(versions, key=lambda v: v.timestamp, reverse=True)
        except (KeyError, TypeError, ValueError) as e:
            raise StorageFailureError(f"Stored version history is malformed: {e}") from e
        logger.debug(f"Loaded {len(self._versions)} version(s)")

        if self._config.enabled and self._config.auto_cleanup:
            await self.cleanup()

    # =========================
    # Config
    # =========================

    def get_config(self) -> VersionConfig:
        return self._config.updated()

    async def update_config(self, **changes: Any) -> VersionConfig:
        """Apply and persist config changes; prune if auto-cleanup ends up on."""
        config = self._config.updated(**changes)
        await self.store.set(VERSION_CONFIG_KEY, config.to_dict())
        self._config = config
        if config.enabled and config.auto_cleanup:
            await self.cleanup()
        return self.get_config()

    # =========================
    # Log access
    # =========================

    def get_versions(self) -> list[Version]:
        """Copies of all versions, newest first."""
        return copy.deepcopy(self._versions)

    def get_version(self, version_id: str) -> Optional[Version]:
        version = self._find(version_id)
        return copy.deepcopy(version) if version is not None else None

    def _find(self, version_id: str) -> Optional[Version]:
        for version in self._versions:
            if version.id == version_id:
                return version
        return None

    def _require(self, version_id: str) -> Version:
        version = self._find(version_id)
        if version is None:
            raise VersionNotFoundError(version_id)
        return version

    async def _save(self, versions: list[Version]) -> None:
        await self.store.set(VERSION_HISTORY_KEY, [v.to_dict() for v in versions])

    def _next_timestamp(self) -> datetime:
        timestamp = self._now()
        if self._versions and timestamp <= self._versions[0].timestamp:
            timestamp = self._versions[0].timestamp + timedelta(microseconds=1)
        return timestamp

    async def create_version(
        self,
        description: str,
        changes: list[VersionChange],
        snapshot: list[TaskRecord],
    ) -> Optional[Version]:
        """Append a checkpoint to the log.

        Args:
            description: Human-readable description
            changes: Descriptive change list
            snapshot: Full record set at this point (deep-copied)

        Returns:
            A copy of the new Version, or None when version history is disabled

        Raises:
            StorageFailureError: If the log cannot be persisted
        """
        if not self._config.enabled:
            return None

        async with self._lock:
            timestamp = self._next_timestamp()
            existing = {v.id for v in self._versions}
            version_id = generate_time_based_id(timestamp)
            while version_id in existing:
                version_id = generate_time_based_id(timestamp)

            version = Version(
                id=version_id,
                timestamp=timestamp,
                description=description,
                changes=copy.deepcopy(list(changes)),
                snapshot=copy.deepcopy(list(snapshot)),
            )
            versions = [version] + self._versions
            await self._save(versions)
            self._versions = versions
            logger.debug(f"Created version {version.id}: {description}")

            if self._config.auto_cleanup:
                try:
                    await self._cleanup()
                except Exception as e:
                    # The checkpoint is already stored; pruning is retried next time
                    logger.warning(f"Version cleanup after {version.id} failed: {e}")

        return copy.deepcopy(version)

    async def delete_version(self, version_id: str) -> None:
        async with self._lock:
            versions = [v for v in self._versions if v.id != version_id]
            if len(versions) == len(self._versions):
                return
            await self._save(versions)
            self._versions = versions

    # =========================
    # Retention
    # =========================

    async def cleanup(self) -> int:
        """Drop versions older than ``retention_days``, then beyond ``max_versions``.

        Returns:
            Number of versions removed
        """
        async with self._lock:
            return await self._cleanup()

    async def _cleanup(self) -> int:
        if not self._config.enabled:
            return 0

        cutoff = self._now() - timedelta(days=self._config.retention_days)
        keep = len(self._versions)
        # The log is newest first, so expired versions form a tail
        for index, version in enumerate(self._versions):
            if version.timestamp <= cutoff:
                keep = index
                break
        keep = min(keep, self._config.max_versions)

        removed = len(self._versions) - keep
        if removed <= 0:
            return 0

        versions = self._versions[:keep]
        await self._save(versions)
        self._versions = versions
        logger.debug(f"Pruned {removed} version(s), {len(versions)} kept")
        return removed

    # =========================
    # Diff and rollback
    # =========================

    def compare_versions(self, version_id_a: str, version_id_b: str) -> list[VersionChange]:
        """Diff the snapshots of two versions (A is the base).

        Raises:
            VersionNotFoundError: If either id is unknown
        """
        version_a = self._require(version_id_a)
        version_b = self._require(version_id_b)
        return diff_records(
            copy.deepcopy(version_a.snapshot), copy.deepcopy(version_b.snapshot)
        )

    def rollback_to_version(self, version_id: str) -> list[TaskRecord]:
        """Return a copy of a version's snapshot for the caller to install.

        Rolling back does not itself append a version.

        Raises:
            VersionNotFoundError: If the id is unknown
        """
        return copy.deepcopy(self._require(version_id).snapshot)
