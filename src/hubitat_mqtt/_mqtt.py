"""Internal MQTT runtime bridging paho-mqtt's network thread onto asyncio."""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.exceptions import TransportUnavailableError

# paho marks QoS 0 messages published from its network thread.
_PUBLISH_POLL_INTERVAL = 0.01


@dataclass(frozen=True)
class MqttMessage:
    """An inbound message delivered to listeners on the event loop."""

    topic: str
    payload: bytes
    retain: bool = False


MessageListener = Callable[[MqttMessage], None]


class BusTransport(Protocol):
    """Structural bus interface used by the publish and sync layers.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`MqttRuntime`) concrete.
    """

    @property
    def is_connected(self) -> bool: ...

    async def publish(self, topic: str, payload: bytes | str, *, retain: bool) -> None: ...

    async def subscribe(self, pattern: str) -> None: ...

    async def unsubscribe(self, pattern: str) -> None: ...

    def add_listener(self, listener: MessageListener) -> Callable[[], None]: ...


def _build_client_id(config: BridgeConfig) -> str:
    if config.mqtt_client_id:
        return config.mqtt_client_id
    return f"HubitatBridge_{secrets.token_hex(8)}"


class MqttRuntime:
    """Threaded paho-mqtt runtime that delivers messages onto an asyncio loop.

    paho's network thread owns the connection and reconnects on its own with
    exponential backoff between ``mqtt_reconnect_min_delay`` and
    ``mqtt_reconnect_max_delay``. Callers only observe that lifecycle through
    :attr:`is_connected`. Every subscription made through :meth:`subscribe`
    is replayed after each (re)connect until it is unsubscribed.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        loop: asyncio.AbstractEventLoop,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._loop = loop
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._subscriptions: set[str] = set()
        self._listeners: list[MessageListener] = []

    @property
    def is_running(self) -> bool:
        """Whether the network loop has been started."""
        return self._running

    @property
    def is_connected(self) -> bool:
        """Whether the broker connection is currently established."""
        client = self._client
        return client is not None and client.is_connected()

    def start(self) -> None:
        """Start the network thread and begin connecting in the background."""
        self.stop()
        config = self._config
        client_id = _build_client_id(config)
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s client_id=%s",
            config.mqtt_host,
            config.mqtt_port,
            client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
            clean_session=True,
        )
        client.enable_logger(self._logger)
        credentials = config.mqtt_credentials
        if credentials is not None:
            client.username_pw_set(*credentials)
        client.reconnect_delay_set(
            min_delay=max(1, int(config.mqtt_reconnect_min_delay)),
            max_delay=max(1, int(config.mqtt_reconnect_max_delay)),
        )

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.info("Connected to MQTT broker %s:%s", config.mqtt_host, config.mqtt_port)
            for pattern in tuple(self._subscriptions):
                self._logger.debug("MQTT subscribing topic=%s", pattern)
                c.subscribe(pattern, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            message = MqttMessage(topic=msg.topic, payload=bytes(msg.payload), retain=bool(msg.retain))
            self._loop.call_soon_threadsafe(self._dispatch, message)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected (%s); reconnecting in background", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect_async(config.mqtt_host, config.mqtt_port, keepalive=config.mqtt_keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Disconnect and stop the network thread if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    def _require_connected(self, action: str) -> mqtt.Client:
        client = self._client
        if client is None or not client.is_connected():
            raise TransportUnavailableError(f"MQTT broker not connected, cannot {action}")
        return client

    async def publish(self, topic: str, payload: bytes | str, *, retain: bool) -> None:
        """Publish one message and wait until paho has handed it to the socket.

        Raises
        ------
        TransportUnavailableError
            If the broker is disconnected or paho rejects the message.
        TimeoutError
            If the message was not written within ``publish_timeout``.
        """
        client = self._require_connected(f"publish to {topic}")
        info = client.publish(topic, payload, qos=0, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportUnavailableError(f"Publish to {topic} rejected: {mqtt.error_string(info.rc)}")
        timeout = self._config.publish_timeout
        deadline = self._loop.time() + timeout
        while not info.is_published():
            if self._loop.time() >= deadline:
                raise TimeoutError(f"Publish to {topic} not confirmed within {timeout}s")
            await asyncio.sleep(_PUBLISH_POLL_INTERVAL)

    async def subscribe(self, pattern: str) -> None:
        """Subscribe now and after every reconnect until :meth:`unsubscribe`.

        The pattern is remembered even when the broker is currently down, in
        which case :class:`TransportUnavailableError` is raised and the
        subscription is made by the next successful connect.
        """
        self._subscriptions.add(pattern)
        client = self._require_connected(f"subscribe to {pattern}")
        result, _mid = client.subscribe(pattern, qos=0)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportUnavailableError(f"Subscribe to {pattern} rejected: {mqtt.error_string(result)}")

    async def unsubscribe(self, pattern: str) -> None:
        self._subscriptions.discard(pattern)
        client = self._client
        if client is not None and client.is_connected():
            client.unsubscribe(pattern)

    def add_listener(self, listener: MessageListener) -> Callable[[], None]:
        """Register *listener* for every inbound message; returns an unregister callable."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _dispatch(self, message: MqttMessage) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                self._logger.debug("MQTT listener failed for topic=%s", message.topic, exc_info=True)
