"""Exception hierarchy for tasksync."""


class TaskSyncError(Exception):
    """Base exception for all tasksync errors."""


class StorageFailureError(TaskSyncError):
    """Reading from or writing to the key-value store failed."""


class ProviderConfigError(TaskSyncError):
    """Provider name is unknown or its options are incomplete."""


class ProviderUnavailableError(TaskSyncError):
    """Remote provider could not be reached or rejected the request."""


class ProviderAuthenticationError(ProviderUnavailableError):
    """Remote provider rejected the configured credentials."""


class InvalidRemoteDataError(ProviderUnavailableError):
    """Remote resource could not be parsed as a list of task records."""


class SyncInProgressError(TaskSyncError):
    """A sync cycle is already running for this provider."""


class SyncDisabledError(TaskSyncError):
    """Sync was requested while synchronization is disabled."""


class PairingError(TaskSyncError):
    """Device cannot be paired (self-pair or already paired)."""


class VersionNotFoundError(TaskSyncError):
    """Referenced version does not exist in the version log."""

    def __init__(self, version_id: str):
        super().__init__(f"Version not found: {version_id}")
        self.version_id = version_id
