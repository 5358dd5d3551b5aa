from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

import pytest

from hubitat_mqtt._mqtt import MessageListener, MqttMessage
from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.exceptions import RemoteApiError, TransportUnavailableError
from hubitat_mqtt.models import Device


def make_config(**overrides: Any) -> BridgeConfig:
    values: dict[str, Any] = {
        "hub_url": "http://hub.local",
        "hub_app_id": "12",
        "hub_access_token": "secret-token",
        "connect_grace": 0.0,
        "publish_retry_delay": 0.0,
        "publish_timeout": 1.0,
        "device_lock_timeout": 0.5,
        "full_sync_lock_timeout": 0.5,
        "discovery_max_wait": 0.5,
        "discovery_idle_window": 0.02,
    }
    values.update(overrides)
    return BridgeConfig(**values)


def make_device(device_id: str, **fields: Any) -> Device:
    fields.setdefault("name", f"Device {device_id}")
    fields.setdefault("label", f"Label {device_id}")
    fields.setdefault("type", "Virtual Switch")
    return Device.model_validate({"id": device_id, **fields})


def topic_matches(pattern: str, topic: str) -> bool:
    pattern_levels = pattern.split("/")
    topic_levels = topic.split("/")
    for index, level in enumerate(pattern_levels):
        if level == "#":
            return True
        if index >= len(topic_levels):
            return False
        if level != "+" and level != topic_levels[index]:
            return False
    return len(pattern_levels) == len(topic_levels)


class FakeBus:
    """In-memory broker with retained-message semantics."""

    def __init__(self, *, connected: bool = True) -> None:
        self.connected = connected
        self.retained: dict[str, bytes] = {}
        self.published: list[tuple[str, bytes, bool]] = []
        self.subscriptions: list[str] = []
        self.unsubscriptions: list[str] = []
        self.publish_attempts = 0
        self.fail_next_publishes = 0
        self._listeners: list[MessageListener] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def publish(self, topic: str, payload: bytes | str, *, retain: bool) -> None:
        self.publish_attempts += 1
        if not self.connected:
            raise TransportUnavailableError("broker down")
        if self.fail_next_publishes > 0:
            self.fail_next_publishes -= 1
            raise TransportUnavailableError("transient failure")
        data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
        self.published.append((topic, data, retain))
        if retain:
            if data:
                self.retained[topic] = data
            else:
                self.retained.pop(topic, None)

    async def subscribe(self, pattern: str) -> None:
        self.subscriptions.append(pattern)
        if not self.connected:
            raise TransportUnavailableError("broker down")
        for topic, payload in sorted(self.retained.items()):
            if topic_matches(pattern, topic):
                self.deliver(topic, payload, retain=True)

    async def unsubscribe(self, pattern: str) -> None:
        self.unsubscriptions.append(pattern)

    def add_listener(self, listener: MessageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def deliver(self, topic: str, payload: bytes | str, *, retain: bool = False) -> None:
        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        for listener in list(self._listeners):
            listener(MqttMessage(topic=topic, payload=data, retain=retain))

    def retain(self, topic: str, payload: bytes | str) -> None:
        self.retained[topic] = payload.encode("utf-8") if isinstance(payload, str) else payload

    def published_to(self, topic: str) -> list[bytes]:
        return [payload for published_topic, payload, _retain in self.published if published_topic == topic]


class FakeSource:
    """In-memory hub directory."""

    def __init__(self, devices: Iterable[Device] = ()) -> None:
        self.devices: dict[str, Device] = {device.id: device for device in devices}
        self.fetch_all_calls = 0
        self.fetch_one_calls: list[str] = []
        self.commands: list[tuple[str, str, str | None]] = []
        self.fail_fetch_all: Exception | None = None
        self.fail_fetch_one: Exception | None = None
        self.fail_command: Exception | None = None

    async def fetch_all(self) -> list[Device]:
        self.fetch_all_calls += 1
        if self.fail_fetch_all is not None:
            raise self.fail_fetch_all
        return list(self.devices.values())

    async def fetch_one(self, device_id: str) -> Device | None:
        self.fetch_one_calls.append(device_id)
        if self.fail_fetch_one is not None:
            raise self.fail_fetch_one
        return self.devices.get(device_id)

    async def send_command(self, device_id: str, command: str, value: str | None = None) -> None:
        self.commands.append((device_id, command, value))
        if self.fail_command is not None:
            raise self.fail_command


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def config() -> BridgeConfig:
    return make_config()


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def hub_error() -> RemoteApiError:
    return RemoteApiError("hub unreachable", endpoint="/apps/api/12/devices/all")
