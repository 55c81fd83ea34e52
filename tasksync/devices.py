"""Device identity, pairing and presence tracking.

The registry owns three pieces of state:

- this device's id, generated once and persisted under ``device_id``
- the list of paired peer devices, persisted under ``paired_devices``
- an in-memory presence set that is never persisted, so presence must be
  re-established after every restart
"""

import logging
import socket
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional

from .exceptions import PairingError, StorageFailureError
from .storage import DEVICE_ID_KEY, PAIRED_DEVICES_KEY, KeyValueStore
from .utils import (
    format_iso_timestamp,
    generate_time_based_id,
    parse_iso_timestamp,
    platform_tag,
)

logger = logging.getLogger(__name__)


@dataclass
class DeviceRecord:
    """A device taking part in synchronization."""

    id: str
    """Stable device id"""

    name: str
    """Human-readable device name"""

    platform: str
    """Platform tag (linux, darwin, windows, ios, android, ...)"""

    last_sync_time: Optional[datetime] = None
    """Time of the last successful sync involving this device"""

    online: bool = False
    """Transient presence flag (never persisted)"""

    def to_dict(self) -> dict:
        """Convert device to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "platform": self.platform,
            "lastSyncTime": (
                format_iso_timestamp(self.last_sync_time)
                if self.last_sync_time
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceRecord":
        """Create DeviceRecord from dictionary."""
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            platform=data.get("platform", "unknown"),
            last_sync_time=parse_iso_timestamp(data.get("lastSyncTime")),
        )


def generate_device_id(platform: str, now: Optional[datetime] = None) -> str:
    """Generate a new device id: platform tag, creation time and random suffix."""
    return f"{platform}-{generate_time_based_id(now)}"


class DeviceRegistry:
    """Owns this device's identity, the paired-device list and presence."""

    def __init__(
        self,
        store: KeyValueStore,
        device_name: Optional[str] = None,
        platform: Optional[str] = None,
    ):
        """Initialize the registry.

        Args:
            store: Key-value store for the device id and paired list
            device_name: Name for this device (defaults to the host name)
            platform: Platform tag (defaults to the running platform)
        """
        self.store = store
        self.platform = platform or platform_tag()
        self.device_name = device_name or socket.gethostname() or self.platform
        self._device: Optional[DeviceRecord] = None
        self._paired: list[DeviceRecord] = []
        self._online: set[str] = set()

    @property
    def device_id(self) -> str:
        """This device's id. ``register()`` must have been called."""
        if self._device is None:
            raise RuntimeError("DeviceRegistry.register() has not been called")
        return self._device.id

    @property
    def device(self) -> DeviceRecord:
        """This device's record. ``register()`` must have been called."""
        if self._device is None:
            raise RuntimeError("DeviceRegistry.register() has not been called")
        return replace(self._device)

    async def register(self) -> DeviceRecord:
        """Load or create this device's identity and load the paired list.

        Returns:
            DeviceRecord describing this device

        Raises:
            StorageFailureError: If the store fails, or if the persisted id
                is missing while paired devices still reference it
        """
        raw_devices = await self.store.get(PAIRED_DEVICES_KEY) or []
        self._paired = [DeviceRecord.from_dict(d) for d in raw_devices]
        for device in self._paired:
            device.online = device.id in self._online

        device_id = await self.store.get(DEVICE_ID_KEY)
        if not device_id:
            if self._paired:
                raise StorageFailureError(
                    "Device id is missing but paired devices reference it; "
                    "refusing to generate a new one"
                )
            device_id = generate_device_id(self.platform)
            await self.store.set(DEVICE_ID_KEY, device_id)
            logger.info(f"Generated new device id {device_id}")
        else:
            logger.debug(f"Loaded device id {device_id}")

        self._device = DeviceRecord(
            id=device_id,
            name=self.device_name,
            platform=self.platform,
            online=True,
        )
        return replace(self._device)

    @property
    def paired_devices(self) -> list[DeviceRecord]:
        """Copies of the paired devices."""
        return [replace(d) for d in self._paired]

    def get_device(self, device_id: str) -> Optional[DeviceRecord]:
        """Return a copy of a paired device (or this device) by id."""
        if self._device is not None and device_id == self._device.id:
            return replace(self._device)
        device = self._find_paired(device_id)
        return replace(device) if device is not None else None

    def _find_paired(self, device_id: str) -> Optional[DeviceRecord]:
        for device in self._paired:
            if device.id == device_id:
                return device
        return None

    async def _save_paired_devices(self) -> None:
        await self.store.set(
            PAIRED_DEVICES_KEY, [device.to_dict() for device in self._paired]
        )

    async def add_paired_device(self, device: DeviceRecord) -> None:
        """Pair a device.

        Raises:
            PairingError: If ``device`` is this device or is already paired
        """
        if device.id == self.device_id:
            raise PairingError("Cannot pair a device with itself")
        if any(d.id == device.id for d in self._paired):
            raise PairingError(f"Device {device.id} is already paired")

        paired = replace(device, online=device.id in self._online)
        self._paired.append(paired)
        try:
            await self._save_paired_devices()
        except Exception:
            self._paired.remove(paired)
            raise
        logger.info(f"Paired device {device.id} ({device.name})")

    async def remove_paired_device(self, device_id: str) -> None:
        """Unpair a device. Unknown ids are ignored."""
        remaining = [d for d in self._paired if d.id != device_id]
        if len(remaining) == len(self._paired):
            logger.debug(f"Device {device_id} is not paired, nothing to remove")
            return

        previous = self._paired
        self._paired = remaining
        try:
            await self._save_paired_devices()
        except Exception:
            self._paired = previous
            raise
        self._online.discard(device_id)
        logger.info(f"Unpaired device {device_id}")

    def set_online(self, device_id: str, online: bool) -> None:
        """Record presence for a device (in memory only)."""
        if online:
            self._online.add(device_id)
        else:
            self._online.discard(device_id)

        device = self._find_paired(device_id)
        if device is not None:
            device.online = online

    def is_online(self, device_id: str) -> bool:
        return device_id in self._online

    def online_devices(self) -> list[DeviceRecord]:
        """Paired devices currently marked online."""
        return [replace(d) for d in self._paired if d.id in self._online]

    async def mark_synced(self, device_ids: Iterable[str], when: datetime) -> None:
        """Update ``last_sync_time`` for paired devices and persist the list."""
        ids = set(device_ids)
        touched = False
        for device in self._paired:
            if device.id in ids:
                device.last_sync_time = when
                touched = True
        if touched:
            await self._save_paired_devices()
