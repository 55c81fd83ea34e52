"""Provider contract.

A provider stores the complete task-record set in one remote resource.
``upload_records`` replaces that resource wholesale and must be safe to
retry; a failed upload leaves either the old or the new contents behind,
never a truncated mix. ``download_records`` returns the whole set.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ...records import TaskRecord
from ...storage import LAST_SYNC_TIME_KEY, KeyValueStore
from ...utils import format_iso_timestamp, parse_iso_timestamp

logger = logging.getLogger(__name__)


class SyncProvider(ABC):
    """Abstract base class for sync providers."""

    name: str = ""
    """Registry name of the provider"""

    def __init__(self, store: KeyValueStore):
        """Initialize provider.

        Args:
            store: Key-value store used to persist the last sync time
        """
        self.store = store

    @abstractmethod
    async def initialize(self) -> None:
        """Connect to the remote and verify access.

        Raises:
            ProviderUnavailableError: If the remote cannot be reached
        """

    @abstractmethod
    async def upload_records(self, records: list[TaskRecord]) -> None:
        """Replace the remote record set with ``records``.

        Raises:
            ProviderUnavailableError: If the upload fails
        """

    @abstractmethod
    async def download_records(self) -> list[TaskRecord]:
        """Return the complete remote record set (empty if none exists yet).

        Raises:
            ProviderUnavailableError: If the download fails
            InvalidRemoteDataError: If the remote contents are malformed
        """

    async def get_last_sync_time(self) -> Optional[datetime]:
        return parse_iso_timestamp(await self.store.get(LAST_SYNC_TIME_KEY))

    async def set_last_sync_time(self, when: datetime) -> None:
        await self.store.set(LAST_SYNC_TIME_KEY, format_iso_timestamp(when))

    async def close(self) -> None:
        """Release network resources. The default implementation does nothing."""
