"""Bus-to-hub command forwarding."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from hubitat_mqtt import topics
from hubitat_mqtt._mqtt import BusTransport, MqttMessage
from hubitat_mqtt.client import DeviceSource
from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.exceptions import (
    DeferredUpdateError,
    HubitatMqttError,
    LockTimeoutError,
    TransportUnavailableError,
)
from hubitat_mqtt.publisher import Publisher
from hubitat_mqtt.state.directory import DeviceDirectory
from hubitat_mqtt.sync.coordinator import SyncCoordinator

_logger = logging.getLogger(__name__)


class CommandHandler:
    """Forwards ``{base}/device/{id}/command/{name}[/{value}]`` messages to the hub.

    The command value is the trailing topic level when present, otherwise
    the message payload (an empty payload sends no value). After the hub
    accepts a command the device is re-fetched and republished under its
    device permit. Retained command messages are ignored so that a broker
    reconnect never replays an old command.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        transport: BusTransport,
        source: DeviceSource,
        directory: DeviceDirectory,
        coordinator: SyncCoordinator,
        publisher: Publisher,
    ) -> None:
        self._config = config
        self._transport = transport
        self._source = source
        self._directory = directory
        self._coordinator = coordinator
        self._publisher = publisher
        self._patterns = topics.command_wildcards(config.base_topic)
        self._remove_listener: Callable[[], None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    async def start(self) -> None:
        """Register the listener and subscribe to the command addresses.

        Subscriptions made while the broker is down are completed by the
        runtime on the next connect.
        """
        if self._remove_listener is None:
            self._remove_listener = self._transport.add_listener(self._on_message)
        for pattern in self._patterns:
            try:
                await self._transport.subscribe(pattern)
            except TransportUnavailableError:
                _logger.debug("Subscribe to %s postponed until the broker connects", pattern)
        _logger.info("Listening for device commands")

    async def stop(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        for pattern in self._patterns:
            try:
                await self._transport.unsubscribe(pattern)
            except HubitatMqttError:
                _logger.debug("Unsubscribe from %s failed", pattern, exc_info=True)
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def drain(self) -> None:
        """Wait until every command received so far has been handled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_message(self, message: MqttMessage) -> None:
        address = topics.parse_command_topic(self._config.base_topic, message.topic)
        if address is None:
            return
        if message.retain:
            _logger.debug("Ignoring retained command on %s", message.topic)
            return

        value = address.value
        if value is None:
            text = message.payload.decode("utf-8", errors="replace").strip()
            value = text or None

        _logger.info("Received command %s for device %s (value=%s)", address.command, address.device_id, value)
        task = asyncio.get_running_loop().create_task(self.execute(address.device_id, address.command, value))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def execute(self, device_id: str, command: str, value: str | None = None) -> None:
        """Send one command and republish the device; errors are logged, never raised."""
        try:
            await self._source.send_command(device_id, command, value)
        except HubitatMqttError as exc:
            _logger.error("Failed to send command %s to device %s: %s", command, device_id, exc)
            return

        try:
            async with self._coordinator.device_permit(device_id, self._config.device_lock_timeout):
                device = await self._source.fetch_one(device_id)
                if device is None:
                    _logger.warning("Device %s not found on hub after command %s", device_id, command)
                    return
                self._directory.upsert(device)
                await self._publisher.publish_device(device)
        except DeferredUpdateError:
            _logger.debug("Refresh of device %s deferred until the running full sync completes", device_id)
        except LockTimeoutError as exc:
            _logger.warning("Skipping refresh of device %s after command: %s", device_id, exc)
        except HubitatMqttError as exc:
            _logger.error("Failed to refresh device %s after command %s: %s", device_id, command, exc)
        else:
            _logger.debug("Updated device %s after command %s", device_id, command)
