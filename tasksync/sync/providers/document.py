"""Provider backed by a hosted JSON document store.

The whole record set lives in one document::

    PUT {url}/{collection}/{document}
    {"records": [...], "updatedAt": "2025-01-15T10:30:00+00:00"}

Writing a single document in a single request keeps the upload atomic on
the server side and makes it safe to repeat.
"""

import json
import logging
from typing import Optional

import httpx

from ...exceptions import InvalidRemoteDataError
from ...records import TaskRecord, records_from_list, records_to_list
from ...storage import KeyValueStore
from ...utils import format_iso_timestamp, utcnow
from .http import HttpSyncProvider

logger = logging.getLogger(__name__)


class DocumentStoreProvider(HttpSyncProvider):
    """Stores all task records in one document of a remote collection."""

    name = "document"

    def __init__(
        self,
        store: KeyValueStore,
        url: str,
        api_key: Optional[str] = None,
        collection: str = "todos",
        document: str = "records",
        **kwargs,
    ):
        """Initialize document store provider.

        Args:
            store: Key-value store used to persist the last sync time
            url: Base URL of the document store API
            api_key: Bearer token sent with every request
            collection: Collection holding the document
            document: Document id holding the record set
            **kwargs: Passed to HttpSyncProvider (retries, timeout, transport)
        """
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        super().__init__(store, url, headers=headers, **kwargs)
        self.collection = collection
        self.document = document

    @property
    def document_path(self) -> str:
        return f"{self.collection}/{self.document}"

    async def initialize(self) -> None:
        """Verify that the document endpoint is reachable and authorized."""
        response = await self._request("GET", self.document_path, accept=(404,))
        logger.debug(
            f"Document store reachable at {self.url} "
            f"(document {'exists' if response.status_code != 404 else 'not created yet'})"
        )

    async def upload_records(self, records: list[TaskRecord]) -> None:
        body = {
            "records": records_to_list(records),
            "updatedAt": format_iso_timestamp(utcnow()),
        }
        await self._request(
            "PUT",
            self.document_path,
            content=json.dumps(body, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        logger.debug(f"Uploaded {len(records)} record(s) to {self.document_path}")

    async def download_records(self) -> list[TaskRecord]:
        response = await self._request("GET", self.document_path, accept=(404,))
        if response.status_code == 404 or not response.content:
            return []
        return self._parse_document(response)

    def _parse_document(self, response: httpx.Response) -> list[TaskRecord]:
        try:
            body = response.json()
            if isinstance(body, dict):
                items = body.get("records", [])
            else:
                items = body
            records = records_from_list(items)
        except ValueError as e:
            raise InvalidRemoteDataError(
                f"Malformed document at {self.document_path}: {e}"
            ) from e
        logger.debug(f"Downloaded {len(records)} record(s) from {self.document_path}")
        return records
