"""Incremental processing of device events forwarded by the hub."""

from __future__ import annotations

import logging

from hubitat_mqtt.client import DeviceSource
from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.exceptions import (
    DeferredUpdateError,
    HubitatMqttError,
    LockTimeoutError,
    PublishExhaustedError,
    RemoteApiError,
)
from hubitat_mqtt.models import Device, DeviceEvent
from hubitat_mqtt.publisher import Publisher
from hubitat_mqtt.state.directory import DeviceDirectory
from hubitat_mqtt.sync.coordinator import SyncCoordinator
from hubitat_mqtt.sync.policy import attribute_values_equal

_logger = logging.getLogger(__name__)


class DeviceEventProcessor:
    """Applies one webhook event to the directory and the bus.

    Events for the same device are serialized through the device permit.
    A device is re-fetched in full when it is not yet known, when the event
    name is listed in ``full_refresh_events``, or when the device type is
    listed in ``full_refresh_device_types``. Otherwise only the changed
    attribute is published and the snapshot is refreshed from the directory.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        source: DeviceSource,
        directory: DeviceDirectory,
        coordinator: SyncCoordinator,
        publisher: Publisher,
    ) -> None:
        self._config = config
        self._source = source
        self._directory = directory
        self._coordinator = coordinator
        self._publisher = publisher
        self._refresh_events = frozenset(config.full_refresh_events)
        self._refresh_types = frozenset(config.full_refresh_device_types)

    def needs_full_refresh(self, event: DeviceEvent, current: Device | None) -> bool:
        if current is None:
            return True
        if event.name.lower() in self._refresh_events:
            return True
        return self._is_always_refresh(current)

    def _is_always_refresh(self, device: Device) -> bool:
        return device.type is not None and device.type.lower() in self._refresh_types

    async def handle(self, event: DeviceEvent) -> None:
        """Process *event*; never raises for expected failures."""
        device_id = event.device_id
        _logger.debug("Processing device event: device %s, event %s, value %s", device_id, event.name, event.value)
        try:
            async with self._coordinator.device_permit(device_id, self._config.device_lock_timeout):
                current = self._directory.get(device_id)
                if self.needs_full_refresh(event, current):
                    await self._refresh_device(event, current)
                else:
                    await self._update_attribute(event)
        except DeferredUpdateError:
            _logger.debug("Update for device %s deferred until the running full sync completes", device_id)
        except LockTimeoutError as exc:
            _logger.warning("Skipping event %s for device %s: %s", event.name, device_id, exc)
        except PublishExhaustedError as exc:
            _logger.error("Failed to publish event %s for device %s: %s", event.name, device_id, exc)
        except HubitatMqttError as exc:
            _logger.error("Failed to process event %s for device %s: %s", event.name, device_id, exc)

    async def _refresh_device(self, event: DeviceEvent, current: Device | None) -> None:
        device_id = event.device_id
        _logger.debug("Performing full device refresh for %s", device_id)
        try:
            device = await self._source.fetch_one(device_id)
        except RemoteApiError as exc:
            _logger.error("Hub error refreshing device %s, publishing raw event: %s", device_id, exc)
            await self._publisher.publish_event(event)
            return

        if device is None:
            _logger.warning("Device %s not found on hub, publishing raw event", device_id)
            await self._publisher.publish_event(event)
            return

        if current is not None and self._is_always_refresh(device):
            _log_attribute_changes(current, device, event)

        self._directory.upsert(device)
        await self._publisher.publish_device(device)

    async def _update_attribute(self, event: DeviceEvent) -> None:
        device_id = event.device_id
        _logger.debug("Performing attribute update for %s.%s", device_id, event.name)
        try:
            await self._publisher.publish_attribute(device_id, event.name, event.value or "")
            if event.value is None:
                return
            updated = self._directory.update_attribute(device_id, event.name, event.value)
            if updated is not None:
                await self._publisher.publish_device(updated, include_attributes=False)
        except PublishExhaustedError as exc:
            _logger.error("Publish failed for %s.%s, falling back to raw event: %s", device_id, event.name, exc)
            await self._publisher.publish_event(event)


def _log_attribute_changes(old: Device, new: Device, trigger: DeviceEvent) -> None:
    if not _logger.isEnabledFor(logging.DEBUG):
        return
    _logger.debug(
        "Refreshed device %s (%s) type %s after %s=%s",
        new.id,
        new.display_name,
        new.type,
        trigger.name,
        trigger.value,
    )
    for name, value in new.attributes.items():
        if name not in old.attributes:
            _logger.debug("Device %s new attribute %s: %r", new.id, name, value)
        elif not attribute_values_equal(old.attributes[name], value):
            _logger.debug("Device %s attribute %s: %r -> %r", new.id, name, old.attributes[name], value)
    for name in old.attributes.keys() - new.attributes.keys():
        _logger.debug("Device %s attribute removed: %s", new.id, name)
