"""Discovery of retained bus state and removal of state for vanished devices."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from pydantic import ValidationError

from hubitat_mqtt import topics
from hubitat_mqtt._mqtt import BusTransport, MqttMessage
from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.exceptions import HubitatMqttError, TransportUnavailableError
from hubitat_mqtt.models import Device
from hubitat_mqtt.publisher import Publisher

_logger = logging.getLogger(__name__)


@dataclass
class BusSnapshot:
    """Retained state observed on the bus during one discovery pass.

    ``devices`` holds every snapshot that parsed as a device. ``attributes``
    maps every observed device id (including ids whose snapshot could not be
    parsed or was never seen) to the attribute levels retained under it, in
    arrival order.
    """

    devices: dict[str, Device] = field(default_factory=dict)
    attributes: dict[str, list[str]] = field(default_factory=dict)

    @property
    def device_ids(self) -> set[str]:
        return set(self.attributes)

    def _observe(self, device_id: str, attribute: str | None) -> None:
        levels = self.attributes.setdefault(device_id, [])
        if attribute is not None and attribute not in levels:
            levels.append(attribute)


class StaleStateReconciler:
    """Reads the retained device state from the bus and tombstones stale ids."""

    def __init__(self, config: BridgeConfig, transport: BusTransport, publisher: Publisher) -> None:
        self._config = config
        self._transport = transport
        self._publisher = publisher

    async def discover(self) -> BusSnapshot:
        """Collect retained snapshots and attribute levels under ``{base}/device/#``.

        Only retained messages count; live traffic published while discovery
        runs is ignored. Collection stops at the earlier of
        ``discovery_max_wait`` seconds or ``discovery_idle_window`` seconds
        without a new message. The subscription is removed afterwards.

        Raises
        ------
        TransportUnavailableError
            If the bus is not connected after the connect grace period.
        """
        if not await self._publisher.wait_connected():
            raise TransportUnavailableError("MQTT broker not connected, cannot discover retained state")

        base = self._config.base_topic
        pattern = topics.state_wildcard(base)
        snapshot = BusSnapshot()
        loop = asyncio.get_running_loop()
        activity = asyncio.Event()
        last_seen = loop.time()

        def _collect(message: MqttMessage) -> None:
            nonlocal last_seen
            address = topics.parse_state_topic(base, message.topic)
            if address is None or not message.retain or not message.payload:
                return
            last_seen = loop.time()
            activity.set()
            snapshot._observe(address.device_id, address.attribute)
            if address.attribute is None:
                device = _parse_snapshot(address.device_id, message.payload)
                if device is not None:
                    snapshot.devices[address.device_id] = device

        remove_listener = self._transport.add_listener(_collect)
        try:
            await self._transport.subscribe(pattern)
            started = loop.time()
            deadline = started + self._config.discovery_max_wait
            while True:
                now = loop.time()
                wait = min(deadline, last_seen + self._config.discovery_idle_window) - now
                if wait <= 0:
                    break
                activity.clear()
                try:
                    await asyncio.wait_for(activity.wait(), wait)
                except TimeoutError:
                    pass
        finally:
            remove_listener()
            try:
                await self._transport.unsubscribe(pattern)
            except HubitatMqttError:
                _logger.debug("Unsubscribe from %s failed", pattern, exc_info=True)

        _logger.info(
            "Discovered %d devices on the bus (%d parsed snapshots)",
            len(snapshot.attributes),
            len(snapshot.devices),
        )
        return snapshot

    async def reconcile(self, live_ids: Iterable[str], snapshot: BusSnapshot) -> int:
        """Tombstone every discovered device that is not in *live_ids*.

        Each stale device's snapshot address and every attribute address
        observed for it receive an empty retained payload. Failures are
        isolated per device. Nothing is published when the bus is still
        disconnected after the connect grace period. Returns the number of
        devices fully cleared.
        """
        stale = sorted(snapshot.device_ids - set(live_ids))
        if not stale:
            return 0
        if not await self._publisher.wait_connected():
            _logger.warning("MQTT disconnected, skipping removal of %d stale devices", len(stale))
            return 0

        base = self._config.base_topic
        cleared = 0
        for device_id in stale:
            device_topic = topics.device_topic(base, device_id)
            try:
                await self._publisher.publish_tombstone(device_topic)
                for level in snapshot.attributes.get(device_id, ()):
                    await self._publisher.publish_tombstone(f"{device_topic}/{level}")
            except HubitatMqttError as exc:
                _logger.error("Failed to clear retained state for device %s: %s", device_id, exc)
                continue
            cleared += 1
            _logger.info("Cleared retained state for removed device %s", device_id)
        return cleared


def _parse_snapshot(device_id: str, payload: bytes) -> Device | None:
    try:
        device = Device.model_validate(json.loads(payload))
    except (ValueError, ValidationError) as exc:
        _logger.warning("Ignoring unparseable snapshot for device %s: %s", device_id, exc)
        return None
    if device.id != device_id:
        _logger.warning("Snapshot at device %s carries id %s, ignoring", device_id, device.id)
        return None
    return device
