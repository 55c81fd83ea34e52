"""Task record model and the JSON wire codec shared by providers and storage.

A task record is owned by the application's CRUD layer. The sync core only
needs its ``id`` and ``updated_at``; everything else travels as an opaque
payload. On the wire and in storage a record is a flat JSON object whose
date fields are ISO-8601 strings.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from .exceptions import InvalidRemoteDataError
from .utils import format_iso_timestamp, parse_iso_timestamp

DATE_FIELDS = ("createdAt", "updatedAt", "dueDate", "reminderTime")
"""Top-level fields carried as ISO-8601 strings on the wire"""


@dataclass
class TaskRecord:
    """A single to-do item as seen by the sync core."""

    id: str
    """Unique record id"""

    updated_at: datetime
    """Time of the last modification (timezone-aware)"""

    data: dict[str, Any] = field(default_factory=dict)
    """Opaque payload (title, completed, dueDate, ...)"""

    device_id: Optional[str] = None
    """Device that produced this version of the record"""

    def to_dict(self) -> dict[str, Any]:
        """Convert the record to its flat JSON form."""
        result: dict[str, Any] = {"id": self.id}
        for key, value in self.data.items():
            if isinstance(value, datetime):
                value = format_iso_timestamp(value)
            result[key] = value
        result["updatedAt"] = format_iso_timestamp(self.updated_at)
        if self.device_id is not None:
            result["deviceId"] = self.device_id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskRecord":
        """Create a TaskRecord from its flat JSON form.

        Raises:
            ValueError: If ``id`` or a valid ``updatedAt`` is missing
        """
        if not isinstance(data, dict):
            raise ValueError(f"Task record must be an object, got {type(data).__name__}")

        payload = dict(data)
        record_id = payload.pop("id", None)
        if not record_id:
            raise ValueError("Task record has no id")

        updated_at = parse_iso_timestamp(payload.pop("updatedAt", None))
        if updated_at is None:
            raise ValueError(f"Task record {record_id} has no valid updatedAt")

        device_id = payload.pop("deviceId", None)

        for key in DATE_FIELDS:
            if key in payload and payload[key] is not None:
                parsed = parse_iso_timestamp(payload[key])
                if parsed is not None:
                    payload[key] = parsed

        return cls(
            id=str(record_id),
            updated_at=updated_at,
            data=payload,
            device_id=device_id,
        )

    def with_device(self, device_id: str) -> "TaskRecord":
        """Return a copy of this record stamped with ``device_id``."""
        return TaskRecord(
            id=self.id,
            updated_at=self.updated_at,
            data=dict(self.data),
            device_id=device_id,
        )


def records_to_list(records: Iterable[TaskRecord]) -> list[dict[str, Any]]:
    """Convert records to a list of JSON-ready dictionaries."""
    return [record.to_dict() for record in records]


def records_from_list(items: Any) -> list[TaskRecord]:
    """Rebuild records from a decoded JSON array.

    Raises:
        ValueError: If ``items`` is not a list or contains an invalid record
    """
    if not isinstance(items, list):
        raise ValueError(f"Expected a list of task records, got {type(items).__name__}")
    return [TaskRecord.from_dict(item) for item in items]


def encode_records(records: Iterable[TaskRecord]) -> str:
    """Serialize records to the provider wire format (a JSON array)."""
    return json.dumps(records_to_list(records), ensure_ascii=False)


def decode_records(payload: str | bytes) -> list[TaskRecord]:
    """Parse the provider wire format back into records.

    Args:
        payload: JSON text holding an array of task records

    Returns:
        List of TaskRecord in the order they appear in the array

    Raises:
        InvalidRemoteDataError: If the payload is not a valid record array
    """
    try:
        return records_from_list(json.loads(payload))
    except ValueError as e:
        # json.JSONDecodeError is a ValueError too
        raise InvalidRemoteDataError(f"Malformed remote record set: {e}") from e
