"""Persisted synchronization settings and sync history.

This module stores the singleton SyncState and the set of record ids that
were present after the last successful cycle. The latter is what lets the
merge step tell a deletion on one side apart from a creation on the other.
"""

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Optional

from ..exceptions import StorageFailureError
from ..storage import SYNC_STATE_KEY, SYNCED_IDS_KEY, KeyValueStore
from ..utils import DEFAULT_SYNC_INTERVAL_MINUTES

logger = logging.getLogger(__name__)


class ConflictPolicy(str, Enum):
    """How conflicting edits of the same record are resolved."""

    MANUAL = "manual"
    """Ask the first registered conflict callback"""

    LAST_MODIFIED = "lastModified"
    """Newest updated_at wins, local wins ties"""

    DEVICE_PRIORITY = "devicePriority"
    """Device ranked higher in device_priority_order wins"""


@dataclass
class SyncState:
    """Synchronization settings for this installation."""

    enabled: bool = False
    """Whether sync is turned on"""

    auto_sync: bool = True
    """Whether a repeating timer triggers sync cycles"""

    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES
    """Minutes between automatic sync cycles"""

    conflict_policy: ConflictPolicy = ConflictPolicy.LAST_MODIFIED
    """Policy used to resolve conflicts"""

    device_priority_order: Optional[list[str]] = None
    """Device ids, highest priority first"""

    provider: Optional[str] = None
    """Name of the provider last enabled"""

    def __post_init__(self) -> None:
        if isinstance(self.conflict_policy, str) and not isinstance(
            self.conflict_policy, ConflictPolicy
        ):
            self.conflict_policy = ConflictPolicy(self.conflict_policy)
        if self.sync_interval_minutes <= 0:
            raise ValueError(
                f"sync_interval_minutes must be positive, got {self.sync_interval_minutes}"
            )

    def to_dict(self) -> dict:
        """Convert state to dictionary for JSON serialization."""
        return {
            "enabled": self.enabled,
            "autoSync": self.auto_sync,
            "syncInterval": self.sync_interval_minutes,
            "conflictResolution": self.conflict_policy.value,
            "devicePriority": (
                list(self.device_priority_order)
                if self.device_priority_order is not None
                else None
            ),
            "provider": self.provider,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        """Create SyncState from dictionary, filling gaps with defaults."""
        defaults = cls()
        return cls(
            enabled=bool(data.get("enabled", defaults.enabled)),
            auto_sync=bool(data.get("autoSync", defaults.auto_sync)),
            sync_interval_minutes=int(
                data.get("syncInterval", defaults.sync_interval_minutes)
            ),
            conflict_policy=ConflictPolicy(
                data.get("conflictResolution", defaults.conflict_policy.value)
            ),
            device_priority_order=data.get("devicePriority"),
            provider=data.get("provider"),
        )

    def updated(self, **changes: Any) -> "SyncState":
        """Return a copy of this state with ``changes`` applied.

        Raises:
            TypeError: If a change names an unknown field
        """
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"Unknown sync state field(s): {', '.join(sorted(unknown))}")
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(changes)
        return SyncState(**values)


@dataclass
class SyncHistory:
    """Record ids present on both sides after the last successful cycle."""

    synced_ids: set[str] = field(default_factory=set)


class SyncStateManager:
    """Loads and saves SyncState and SyncHistory in the key-value store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def load_state(self) -> SyncState:
        """Load the sync state, returning defaults when nothing is stored."""
        data = await self.store.get(SYNC_STATE_KEY)
        if not data:
            logger.debug("No sync state stored, using defaults")
            return SyncState()
        try:
            return SyncState.from_dict(data)
        except (TypeError, ValueError) as e:
            raise StorageFailureError(f"Stored sync state is malformed: {e}") from e

    async def save_state(self, state: SyncState) -> None:
        await self.store.set(SYNC_STATE_KEY, state.to_dict())
        logger.debug(f"Saved sync state: {state.to_dict()}")

    async def load_history(self) -> SyncHistory:
        data = await self.store.get(SYNCED_IDS_KEY)
        return SyncHistory(synced_ids=set(data or []))

    async def save_history(self, history: SyncHistory) -> None:
        await self.store.set(SYNCED_IDS_KEY, sorted(history.synced_ids))
        logger.debug(f"Saved sync history with {len(history.synced_ids)} record id(s)")
