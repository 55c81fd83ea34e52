"""Sync engine for tasksync - coordinator, conflict resolution and providers."""

from .comparator import MergeAction, MergeDecision, RecordComparator
from .engine import SyncCoordinator, SyncResult, SyncStatus
from .providers import (
    DocumentStoreProvider,
    MemoryProvider,
    MemoryRemote,
    SyncProvider,
    WebDAVProvider,
    available_providers,
    create_provider,
    register_provider,
)
from .resolver import ConflictCallback, ConflictResolver, SyncConflict
from .state import ConflictPolicy, SyncHistory, SyncState, SyncStateManager

__all__ = [
    "SyncCoordinator",
    "SyncResult",
    "SyncStatus",
    "RecordComparator",
    "MergeAction",
    "MergeDecision",
    "ConflictResolver",
    "ConflictCallback",
    "SyncConflict",
    "ConflictPolicy",
    "SyncState",
    "SyncHistory",
    "SyncStateManager",
    "SyncProvider",
    "DocumentStoreProvider",
    "WebDAVProvider",
    "MemoryProvider",
    "MemoryRemote",
    "register_provider",
    "create_provider",
    "available_providers",
]
