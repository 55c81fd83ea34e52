"""Provider backed by a single JSON file on a WebDAV server.

Uploads are written to a temporary file next to the target and then moved
over it with ``Overwrite: T``, so readers never observe a partially written
file.
"""

import logging
import uuid
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Optional
from xml.etree import ElementTree

from ...exceptions import ProviderUnavailableError
from ...records import TaskRecord, decode_records, encode_records
from ...storage import KeyValueStore
from .http import HttpSyncProvider

logger = logging.getLogger(__name__)

_PROPFIND_LASTMOD = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop><d:getlastmodified/></d:prop></d:propfind>'
)


class WebDAVProvider(HttpSyncProvider):
    """Stores all task records as a JSON array in one WebDAV file."""

    name = "webdav"

    def __init__(
        self,
        store: KeyValueStore,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        path: str = "todos.json",
        **kwargs,
    ):
        """Initialize WebDAV provider.

        Args:
            store: Key-value store used to persist the last sync time
            url: WebDAV collection URL
            username: Basic auth user name
            password: Basic auth password
            path: File holding the record set, relative to ``url``
            **kwargs: Passed to HttpSyncProvider (retries, timeout, transport)
        """
        auth = (username, password or "") if username else None
        super().__init__(store, url, auth=auth, **kwargs)
        self.path = path.lstrip("/")

    async def initialize(self) -> None:
        """Test the connection by listing the collection root."""
        await self._request("PROPFIND", "", headers={"Depth": "0"})
        logger.debug(f"WebDAV collection reachable at {self.url}")

    async def upload_records(self, records: list[TaskRecord]) -> None:
        payload = encode_records(records).encode("utf-8")
        temp_path = f"{self.path}.{uuid.uuid4().hex}.tmp"

        await self._request(
            "PUT",
            temp_path,
            content=payload,
            headers={"Content-Type": "application/json"},
        )
        try:
            await self._request(
                "MOVE",
                temp_path,
                headers={"Destination": self._url(self.path), "Overwrite": "T"},
            )
        except ProviderUnavailableError:
            try:
                await self._request("DELETE", temp_path, accept=(404,))
            except ProviderUnavailableError as e:
                logger.warning(f"Failed to remove temporary file {temp_path}: {e}")
            raise
        logger.debug(f"Uploaded {len(records)} record(s) to {self.path}")

    async def download_records(self) -> list[TaskRecord]:
        response = await self._request("GET", self.path, accept=(404,))
        if response.status_code == 404:
            return []
        records = decode_records(response.content)
        logger.debug(f"Downloaded {len(records)} record(s) from {self.path}")
        return records

    async def get_last_sync_time(self) -> Optional[datetime]:
        """Stored last sync time, else the remote file's modification time."""
        stored = await super().get_last_sync_time()
        if stored is not None:
            return stored
        try:
            return await self.remote_modified_time()
        except ProviderUnavailableError as e:
            logger.warning(f"Failed to read remote modification time: {e}")
            return None

    async def remote_modified_time(self) -> Optional[datetime]:
        """Return ``getlastmodified`` of the remote file, or None if absent."""
        response = await self._request(
            "PROPFIND",
            self.path,
            accept=(404,),
            content=_PROPFIND_LASTMOD.encode("utf-8"),
            headers={"Depth": "0", "Content-Type": "application/xml"},
        )
        if response.status_code == 404:
            return None
        try:
            root = ElementTree.fromstring(response.content)
        except ElementTree.ParseError as e:
            logger.debug(f"Unparsable PROPFIND response: {e}")
            return None
        node = root.find(".//{DAV:}getlastmodified")
        if node is None or not node.text:
            return None
        try:
            return parsedate_to_datetime(node.text.strip())
        except (TypeError, ValueError):
            return None
