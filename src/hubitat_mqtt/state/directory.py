"""In-memory directory of the latest known device snapshots."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from hubitat_mqtt.models import AttributeValue, Device

_logger = logging.getLogger(__name__)


class DeviceDirectory:
    """Latest known :class:`Device` per id.

    Keys are tracked explicitly so the full set of ids can always be
    enumerated. Stored devices are immutable, so readers never observe a
    half-applied update; writers for one id are serialized by the device
    permit held by the caller.
    """

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def get(self, device_id: str) -> Device | None:
        return self._devices.get(device_id)

    def upsert(self, device: Device) -> None:
        """Insert or replace the entry for ``device.id``."""
        self._devices[device.id] = device

    def update_attribute(self, device_id: str, name: str, value: AttributeValue) -> Device | None:
        """Set one attribute on a known device.

        Returns the updated device, or ``None`` when the device is unknown
        (single attributes never create entries).
        """
        current = self._devices.get(device_id)
        if current is None:
            return None
        updated = current.with_attribute(name, value)
        self._devices[device_id] = updated
        return updated

    def ids(self) -> set[str]:
        return set(self._devices)

    def devices(self) -> list[Device]:
        return list(self._devices.values())

    def prune(self, keep_ids: Iterable[str]) -> int:
        """Drop every entry whose id is not in *keep_ids*; returns the number removed."""
        keep = set(keep_ids)
        stale = [device_id for device_id in self._devices if device_id not in keep]
        for device_id in stale:
            del self._devices[device_id]
        if stale:
            _logger.debug("Pruned %d devices no longer reported by the hub", len(stale))
        return len(stale)
