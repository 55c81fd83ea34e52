"""tasksync - multi-device synchronization and version history for to-do lists."""

from .config import Config, ProviderConfig, config
from .devices import DeviceRecord, DeviceRegistry
from .exceptions import (
    InvalidRemoteDataError,
    PairingError,
    ProviderAuthenticationError,
    ProviderConfigError,
    ProviderUnavailableError,
    StorageFailureError,
    SyncDisabledError,
    SyncInProgressError,
    TaskSyncError,
    VersionNotFoundError,
)
from .pending import PendingChangeBuffer
from .records import TaskRecord, decode_records, encode_records
from .scheduler import AsyncioScheduler, ManualScheduler, Scheduler, Ticket
from .storage import JsonFileStore, KeyValueStore, KeyValueTaskStore, MemoryStore
from .sync import (
    ConflictPolicy,
    ConflictResolver,
    SyncConflict,
    SyncCoordinator,
    SyncResult,
    SyncState,
    SyncStatus,
)
from .versions import (
    ChangeType,
    Version,
    VersionChange,
    VersionConfig,
    VersionStore,
    diff_records,
)

__all__ = [
    "Config",
    "ProviderConfig",
    "config",
    "DeviceRecord",
    "DeviceRegistry",
    "PendingChangeBuffer",
    "TaskRecord",
    "encode_records",
    "decode_records",
    "Scheduler",
    "Ticket",
    "AsyncioScheduler",
    "ManualScheduler",
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "KeyValueTaskStore",
    "SyncCoordinator",
    "SyncResult",
    "SyncStatus",
    "SyncState",
    "SyncConflict",
    "ConflictPolicy",
    "ConflictResolver",
    "Version",
    "VersionChange",
    "VersionConfig",
    "VersionStore",
    "ChangeType",
    "diff_records",
    "TaskSyncError",
    "StorageFailureError",
    "ProviderConfigError",
    "ProviderUnavailableError",
    "ProviderAuthenticationError",
    "InvalidRemoteDataError",
    "SyncInProgressError",
    "SyncDisabledError",
    "PairingError",
    "VersionNotFoundError",
]
