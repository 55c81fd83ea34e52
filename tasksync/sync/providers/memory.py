"""In-process provider, mainly for tests and local experiments.

Several providers can share one ``MemoryRemote`` to simulate devices
syncing through the same backend. The remote keeps the encoded JSON text,
so records go through the same wire codec as with a real server.
"""

import logging
from typing import Optional

from ...exceptions import ProviderUnavailableError
from ...records import TaskRecord, decode_records, encode_records
from ...storage import KeyValueStore
from .base import SyncProvider

logger = logging.getLogger(__name__)


class MemoryRemote:
    """A remote resource held in memory."""

    def __init__(self) -> None:
        self.payload: Optional[str] = None
        self.available = True
        self.uploads = 0
        self.downloads = 0

    def check(self) -> None:
        if not self.available:
            raise ProviderUnavailableError("Memory remote is offline")


class MemoryProvider(SyncProvider):
    """Provider backed by a MemoryRemote."""

    name = "memory"

    def __init__(self, store: KeyValueStore, remote: Optional[MemoryRemote] = None):
        super().__init__(store)
        self.remote = remote or MemoryRemote()

    async def initialize(self) -> None:
        self.remote.check()

    async def upload_records(self, records: list[TaskRecord]) -> None:
        self.remote.check()
        # Encode first so a failure leaves the previous payload in place
        payload = encode_records(records)
        self.remote.payload = payload
        self.remote.uploads += 1

    async def download_records(self) -> list[TaskRecord]:
        self.remote.check()
        self.remote.downloads += 1
        if self.remote.payload is None:
            return []
        return decode_records(self.remote.payload)
