from __future__ import annotations

import asyncio
import threading

import paho.mqtt.client as mqtt
import pytest

from conftest import make_config

from hubitat_mqtt._mqtt import MqttMessage, MqttRuntime
from hubitat_mqtt.exceptions import TransportUnavailableError


class _DummyInfo:
    def __init__(self, *, rc: int = mqtt.MQTT_ERR_SUCCESS, published_after: int | None = 0) -> None:
        self.rc = rc
        self.published_after = published_after
        self.checks = 0
        self.check_threads: set[int] = set()

    def is_published(self) -> bool:
        self.checks += 1
        self.check_threads.add(threading.get_ident())
        return self.published_after is not None and self.checks > self.published_after

    def wait_for_publish(self, timeout: float | None = None) -> None:
        raise AssertionError("publish completion must not block a thread")


class _DummyClient:
    def __init__(self, info: _DummyInfo, *, connected: bool = True) -> None:
        self.info = info
        self.connected = connected
        self.published: list[tuple[str, bytes | str, int, bool]] = []

    def is_connected(self) -> bool:
        return self.connected

    def publish(self, topic: str, payload: bytes | str, qos: int = 0, retain: bool = False) -> _DummyInfo:
        self.published.append((topic, payload, qos, retain))
        return self.info


def _runtime(client: _DummyClient, **overrides: object) -> MqttRuntime:
    runtime = MqttRuntime(make_config(**overrides), loop=asyncio.get_running_loop())
    runtime._client = client  # type: ignore[assignment]
    return runtime


@pytest.mark.asyncio
async def test_publish_waits_for_completion_on_the_loop() -> None:
    info = _DummyInfo(published_after=3)
    client = _DummyClient(info)

    await _runtime(client).publish("hubitat/device/1", b"{}", retain=True)

    assert client.published == [("hubitat/device/1", b"{}", 0, True)]
    assert info.checks == 4
    assert info.check_threads == {threading.get_ident()}


@pytest.mark.asyncio
async def test_publish_times_out_without_blocking_a_thread() -> None:
    info = _DummyInfo(published_after=None)
    runtime = _runtime(_DummyClient(info), publish_timeout=0.05)
    loop = asyncio.get_running_loop()
    started = loop.time()

    with pytest.raises(TimeoutError):
        await runtime.publish("hubitat/device/1", b"{}", retain=True)

    assert 0.04 < loop.time() - started < 1.0
    assert info.check_threads == {threading.get_ident()}


@pytest.mark.asyncio
async def test_publish_rejected_by_client() -> None:
    runtime = _runtime(_DummyClient(_DummyInfo(rc=mqtt.MQTT_ERR_QUEUE_SIZE)))

    with pytest.raises(TransportUnavailableError):
        await runtime.publish("hubitat/device/1", b"{}", retain=True)


@pytest.mark.asyncio
async def test_publish_requires_connection() -> None:
    client = _DummyClient(_DummyInfo(), connected=False)

    with pytest.raises(TransportUnavailableError):
        await _runtime(client).publish("hubitat/device/1", b"{}", retain=True)

    assert client.published == []


@pytest.mark.asyncio
async def test_dispatch_reaches_listeners_until_removed() -> None:
    runtime = _runtime(_DummyClient(_DummyInfo()))
    received: list[MqttMessage] = []
    remove = runtime.add_listener(received.append)
    message = MqttMessage(topic="hubitat/device/1", payload=b"{}", retain=True)

    runtime._dispatch(message)
    remove()
    runtime._dispatch(message)

    assert received == [message]
