"""Reliable publishing of device state to the bus."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from hubitat_mqtt import topics
from hubitat_mqtt._constants import EVENTS_ATTRIBUTE
from hubitat_mqtt._mqtt import BusTransport
from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.exceptions import PublishExhaustedError, TransportUnavailableError
from hubitat_mqtt.models import AttributeValue, Device, DeviceEvent, attribute_to_string

_logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Transient failures; anything else propagates from the first attempt.
_RETRYABLE = (TransportUnavailableError, TimeoutError)


@dataclass(frozen=True)
class BusMessage:
    topic: str
    payload: str | bytes
    retain: bool = True


@dataclass
class BatchResult:
    """Outcome counters for :meth:`Publisher.publish_batch`."""

    published: int = 0
    failed: int = 0
    skipped: int = 0
    failed_ids: list[str] = field(default_factory=list)


class Publisher:
    """Publishes device snapshots and attribute values with bounded retries.

    Every publish operation first checks that the transport is connected,
    waiting ``connect_grace`` seconds once if it is not. A transport that is
    still down after that skips the operation (the method returns ``False``).
    """

    def __init__(
        self,
        config: BridgeConfig,
        transport: BusTransport,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config
        self._transport = transport
        self._sleep = sleep

    @property
    def base_topic(self) -> str:
        return self._config.base_topic

    async def wait_connected(self) -> bool:
        """Return whether the transport is connected, waiting once for a short grace period."""
        if self._transport.is_connected:
            return True
        _logger.debug("MQTT not connected, waiting %.1fs before publishing", self._config.connect_grace)
        await self._sleep(self._config.connect_grace)
        return self._transport.is_connected

    async def publish_with_retry(self, message: BusMessage) -> None:
        """Publish *message*, retrying transient failures.

        Raises
        ------
        PublishExhaustedError
            When every one of ``publish_max_attempts`` attempts failed with a
            transport or timeout error.
        """
        max_attempts = self._config.publish_max_attempts
        last_error: BaseException | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                await asyncio.wait_for(
                    self._transport.publish(message.topic, message.payload, retain=message.retain),
                    self._config.publish_timeout,
                )
                return
            except _RETRYABLE as exc:
                last_error = exc
                _logger.warning(
                    "Publish attempt %d/%d failed for topic %s: %s",
                    attempt,
                    max_attempts,
                    message.topic,
                    str(exc) or type(exc).__name__,
                )
                if attempt < max_attempts:
                    await self._sleep(self._config.publish_retry_delay)

        raise PublishExhaustedError(
            message.topic,
            attempts=max_attempts,
            last_error=last_error,
        ) from last_error

    async def publish_device(self, device: Device, *, include_attributes: bool = True) -> bool:
        """Publish the retained snapshot of *device* and, optionally, each attribute.

        Null attributes are not published individually. Returns ``False``
        when skipped because the transport is disconnected.
        """
        if not await self.wait_connected():
            _logger.warning("MQTT disconnected, skipping publish for device %s", device.id)
            return False

        base = self.base_topic
        await self.publish_with_retry(BusMessage(topics.device_topic(base, device.id), device.to_json()))
        if include_attributes:
            for name, value in device.attributes.items():
                if value is None:
                    continue
                await self.publish_with_retry(
                    BusMessage(topics.attribute_topic(base, device.id, name), attribute_to_string(value))
                )
        _logger.debug("Published device %s (%s)", device.id, device.display_name)
        return True

    async def publish_attribute(self, device_id: str, name: str, value: AttributeValue) -> bool:
        if not await self.wait_connected():
            _logger.warning("MQTT disconnected, skipping attribute %s for device %s", name, device_id)
            return False
        await self.publish_with_retry(
            BusMessage(topics.attribute_topic(self.base_topic, device_id, name), attribute_to_string(value))
        )
        return True

    async def publish_event(self, event: DeviceEvent) -> bool:
        """Publish a raw webhook event when no device snapshot is available.

        The event JSON goes to ``{base}/device/{id}/events`` and the event
        value to the attribute address named by the event. An event without
        a value leaves the retained attribute untouched.
        """
        if not await self.wait_connected():
            _logger.warning("MQTT disconnected, skipping raw event for device %s", event.device_id)
            return False
        base = self.base_topic
        await self.publish_with_retry(
            BusMessage(topics.attribute_topic(base, event.device_id, EVENTS_ATTRIBUTE), event.to_json())
        )
        if event.value is not None:
            await self.publish_with_retry(
                BusMessage(topics.attribute_topic(base, event.device_id, event.name), event.value)
            )
        return True

    async def publish_tombstone(self, topic: str) -> None:
        """Clear the retained message at *topic*."""
        await self.publish_with_retry(BusMessage(topic, b""))

    async def publish_batch(self, devices: Sequence[Device], batch_size: int | None = None) -> BatchResult:
        """Publish *devices* in fixed-size concurrent chunks, isolating per-device failures."""
        size = batch_size or self._config.batch_size
        result = BatchResult()
        for start in range(0, len(devices), size):
            chunk = devices[start : start + size]
            outcomes = await asyncio.gather(
                *(self.publish_device(device) for device in chunk),
                return_exceptions=True,
            )
            for device, outcome in zip(chunk, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    result.failed += 1
                    result.failed_ids.append(device.id)
                    _logger.error("Failed to publish device %s: %s", device.id, outcome)
                elif outcome:
                    result.published += 1
                else:
                    result.skipped += 1
        if devices:
            _logger.info(
                "Batch publish finished: %d published, %d failed, %d skipped",
                result.published,
                result.failed,
                result.skipped,
            )
        return result
