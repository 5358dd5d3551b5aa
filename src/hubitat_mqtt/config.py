"""Bridge configuration for hubitat_mqtt."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from hubitat_mqtt._constants import DEFAULT_BASE_TOPIC
from hubitat_mqtt.exceptions import ConfigError


def _env_csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip().lower() for part in value.split(",") if part.strip())


@dataclasses.dataclass(frozen=True)
class BridgeConfig:
    """Bridge configuration.

    Parameters
    ----------
    hub_url : str
        Hub base URL (e.g. ``"http://192.168.1.10"``).
    hub_app_id : str
        Maker API application id.
    hub_access_token : str
        Maker API access token, sent as the ``access_token`` query parameter.
    hub_timeout : float
        Total timeout in seconds for a single hub HTTP request.
    mqtt_host : str
        MQTT broker host name.
    mqtt_port : int
        MQTT broker port.
    mqtt_username : str or None
        Broker user name. Credentials are only used when both user name
        and password are set.
    mqtt_password : str or None
        Broker password.
    mqtt_client_id : str or None
        MQTT client id. A random ``HubitatBridge_<hex>`` id is used when unset.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_reconnect_min_delay : float
        First reconnect delay in seconds; doubles on each failed attempt.
    mqtt_reconnect_max_delay : float
        Upper bound for the reconnect delay in seconds.
    base_topic : str
        Prefix of every device address (``{base}/device/{id}``).
    sync_interval : float
        Seconds between full synchronizations. ``0`` or negative disables
        the periodic full sync entirely.
    sync_check_interval : float
        How often the scheduler checks whether a full sync is due.
    sync_error_delay : float
        Scheduler tick used after an unexpected error in the sync loop.
    publish_max_attempts : int
        Total publish attempts (first try included) before giving up.
    publish_retry_delay : float
        Fixed delay in seconds between publish attempts.
    publish_timeout : float
        Timeout in seconds for one publish attempt.
    connect_grace : float
        When the broker is disconnected, wait this long once for the
        background reconnect before skipping a publish.
    device_lock_timeout : float
        Timeout in seconds for acquiring a per-device permit.
    full_sync_lock_timeout : float
        Timeout in seconds for acquiring the full-sync permit.
    full_refresh_events : tuple[str, ...]
        Event names (lower case) that force a full device re-fetch.
    full_refresh_device_types : tuple[str, ...]
        Device types (lower case) that are always re-fetched on any event.
    batch_size : int
        Devices published concurrently per chunk during a full sync.
    discovery_max_wait : float
        Upper bound in seconds for collecting retained messages.
    discovery_idle_window : float
        Collection stops early after this many seconds without a new message.
    http_host : str
        Bind address of the webhook listener.
    http_port : int
        Port of the webhook listener.
    """

    hub_url: str
    hub_app_id: str
    hub_access_token: str
    hub_timeout: float = 30.0
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_client_id: str | None = None
    mqtt_keepalive: int = 60
    mqtt_reconnect_min_delay: float = 2.0
    mqtt_reconnect_max_delay: float = 300.0
    base_topic: str = DEFAULT_BASE_TOPIC
    sync_interval: float = 4 * 3600
    sync_check_interval: float = 120.0
    sync_error_delay: float = 30.0
    publish_max_attempts: int = 3
    publish_retry_delay: float = 1.0
    publish_timeout: float = 10.0
    connect_grace: float = 2.0
    device_lock_timeout: float = 2.0
    full_sync_lock_timeout: float = 30.0
    full_refresh_events: tuple[str, ...] = ("mode", "hsm", "alarm")
    full_refresh_device_types: tuple[str, ...] = ("thermostat", "lock", "security")
    batch_size: int = 50
    discovery_max_wait: float = 10.0
    discovery_idle_window: float = 2.0
    http_host: str = "0.0.0.0"
    http_port: int = 8080

    def __post_init__(self) -> None:
        for name in ("hub_url", "hub_app_id", "hub_access_token"):
            if not str(getattr(self, name) or "").strip():
                raise ConfigError(f"{name} must be set")
        if not self.base_topic.strip("/"):
            raise ConfigError("base_topic must not be empty")
        if self.publish_max_attempts < 1:
            raise ConfigError("publish_max_attempts must be at least 1")
        if self.batch_size < 1:
            raise ConfigError("batch_size must be at least 1")
        for name in (
            "publish_retry_delay",
            "connect_grace",
            "discovery_max_wait",
            "discovery_idle_window",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        for name in ("publish_timeout", "device_lock_timeout", "full_sync_lock_timeout", "hub_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        # Normalise the topic prefix and the refresh lists once.
        object.__setattr__(self, "base_topic", self.base_topic.strip("/"))
        object.__setattr__(self, "hub_url", self.hub_url.rstrip("/"))
        object.__setattr__(
            self,
            "full_refresh_events",
            tuple(e.strip().lower() for e in self.full_refresh_events if e.strip()),
        )
        object.__setattr__(
            self,
            "full_refresh_device_types",
            tuple(t.strip().lower() for t in self.full_refresh_device_types if t.strip()),
        )

    @property
    def mqtt_credentials(self) -> tuple[str, str] | None:
        """``(username, password)`` when both are configured, else ``None``."""
        if self.mqtt_username and self.mqtt_password:
            return self.mqtt_username, self.mqtt_password
        return None

    @classmethod
    def from_env(cls, **overrides: Any) -> BridgeConfig:
        """Create configuration from environment variables.

        Reads ``HUBITAT_URL``, ``HUBITAT_APP_ID`` and ``HUBITAT_ACCESS_TOKEN``
        plus the optional ``MQTT_*``, ``SYNC_*``, ``PUBLISH_*``,
        ``DISCOVERY_*`` and ``HTTP_*`` variables. Explicit keyword arguments
        override environment values.

        Raises
        ------
        ConfigError
            If a numeric variable cannot be parsed or a required value is
            missing.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "HUBITAT_URL": "hub_url",
            "HUBITAT_APP_ID": "hub_app_id",
            "HUBITAT_ACCESS_TOKEN": "hub_access_token",
            "MQTT_HOST": "mqtt_host",
            "MQTT_USERNAME": "mqtt_username",
            "MQTT_PASSWORD": "mqtt_password",
            "MQTT_CLIENT_ID": "mqtt_client_id",
            "MQTT_BASE_TOPIC": "base_topic",
            "HTTP_HOST": "http_host",
        }
        _ENV_INT_MAP = {
            "MQTT_PORT": "mqtt_port",
            "MQTT_KEEPALIVE": "mqtt_keepalive",
            "PUBLISH_MAX_ATTEMPTS": "publish_max_attempts",
            "SYNC_BATCH_SIZE": "batch_size",
            "HTTP_PORT": "http_port",
        }
        _ENV_FLOAT_MAP = {
            "HUBITAT_TIMEOUT": "hub_timeout",
            "MQTT_RECONNECT_MIN_DELAY": "mqtt_reconnect_min_delay",
            "MQTT_RECONNECT_MAX_DELAY": "mqtt_reconnect_max_delay",
            "SYNC_INTERVAL": "sync_interval",
            "SYNC_CHECK_INTERVAL": "sync_check_interval",
            "SYNC_ERROR_DELAY": "sync_error_delay",
            "PUBLISH_RETRY_DELAY": "publish_retry_delay",
            "PUBLISH_TIMEOUT": "publish_timeout",
            "MQTT_CONNECT_GRACE": "connect_grace",
            "DEVICE_LOCK_TIMEOUT": "device_lock_timeout",
            "FULL_SYNC_LOCK_TIMEOUT": "full_sync_lock_timeout",
            "DISCOVERY_MAX_WAIT": "discovery_max_wait",
            "DISCOVERY_IDLE_WINDOW": "discovery_idle_window",
        }
        _ENV_CSV_MAP = {
            "HUBITAT_FULL_REFRESH_EVENTS": "full_refresh_events",
            "HUBITAT_FULL_REFRESH_DEVICE_TYPES": "full_refresh_device_types",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        for mapping, parse in ((_ENV_INT_MAP, int), (_ENV_FLOAT_MAP, float)):
            for env_key, field_name in mapping.items():
                val = env.get(env_key)
                if val is None or field_name in overrides:
                    continue
                try:
                    config_kwargs[field_name] = parse(val)
                except ValueError as exc:
                    raise ConfigError(f"{env_key} is not a valid number: {val!r}") from exc

        # SYNC_POLL_INTERVAL_HOURS is the older, hour-based spelling.
        hours_env = env.get("SYNC_POLL_INTERVAL_HOURS")
        if hours_env is not None and "sync_interval" not in config_kwargs and "sync_interval" not in overrides:
            try:
                config_kwargs["sync_interval"] = float(hours_env) * 3600
            except ValueError as exc:
                raise ConfigError(f"SYNC_POLL_INTERVAL_HOURS is not a valid number: {hours_env!r}") from exc

        for env_key, field_name in _ENV_CSV_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = _env_csv(val)

        config_kwargs.update(overrides)

        missing = [name for name in ("hub_url", "hub_app_id", "hub_access_token") if name not in config_kwargs]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

        return cls(**config_kwargs)
