from __future__ import annotations

import pytest

from conftest import make_config

from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.exceptions import ConfigError

_REQUIRED_ENV = {
    "HUBITAT_URL": "http://hub.local/",
    "HUBITAT_APP_ID": "12",
    "HUBITAT_ACCESS_TOKEN": "token",
}


@pytest.fixture
def required_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key, value in _REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)


def test_defaults() -> None:
    config = BridgeConfig(hub_url="http://hub.local", hub_app_id="1", hub_access_token="t")

    assert config.base_topic == "hubitat"
    assert config.sync_interval == 4 * 3600
    assert config.publish_max_attempts == 3
    assert config.full_refresh_events == ("mode", "hsm", "alarm")
    assert config.full_refresh_device_types == ("thermostat", "lock", "security")
    assert config.mqtt_credentials is None


def test_normalizes_topic_url_and_refresh_lists() -> None:
    config = make_config(
        hub_url="http://hub.local///",
        base_topic="/home/hubitat/",
        full_refresh_events=(" Mode ", "", "HSM"),
    )

    assert config.hub_url == "http://hub.local"
    assert config.base_topic == "home/hubitat"
    assert config.full_refresh_events == ("mode", "hsm")


@pytest.mark.parametrize(
    "overrides",
    [
        {"hub_access_token": ""},
        {"base_topic": "/"},
        {"publish_max_attempts": 0},
        {"batch_size": 0},
        {"publish_timeout": 0},
        {"discovery_idle_window": -1},
    ],
)
def test_invalid_values_raise_config_error(overrides: dict[str, object]) -> None:
    with pytest.raises(ConfigError):
        make_config(**overrides)


def test_credentials_require_user_and_password() -> None:
    assert make_config(mqtt_username="bridge").mqtt_credentials is None
    assert make_config(mqtt_username="bridge", mqtt_password="pw").mqtt_credentials == ("bridge", "pw")


@pytest.mark.usefixtures("required_env")
def test_from_env_reads_typed_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MQTT_HOST", "broker")
    monkeypatch.setenv("MQTT_PORT", "8883")
    monkeypatch.setenv("MQTT_BASE_TOPIC", "home")
    monkeypatch.setenv("PUBLISH_RETRY_DELAY", "0.25")
    monkeypatch.setenv("HUBITAT_FULL_REFRESH_DEVICE_TYPES", "Thermostat, Garage Door")

    config = BridgeConfig.from_env()

    assert config.hub_url == "http://hub.local"
    assert config.mqtt_host == "broker"
    assert config.mqtt_port == 8883
    assert config.base_topic == "home"
    assert config.publish_retry_delay == 0.25
    assert config.full_refresh_device_types == ("thermostat", "garage door")


@pytest.mark.usefixtures("required_env")
def test_from_env_hour_based_interval(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SYNC_INTERVAL", raising=False)
    monkeypatch.setenv("SYNC_POLL_INTERVAL_HOURS", "0.5")

    assert BridgeConfig.from_env().sync_interval == 1800


@pytest.mark.usefixtures("required_env")
def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HTTP_PORT", "9000")

    config = BridgeConfig.from_env(http_port=9100)

    assert config.http_port == 9100


@pytest.mark.usefixtures("required_env")
def test_from_env_invalid_number(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MQTT_PORT", "not-a-port")

    with pytest.raises(ConfigError, match="MQTT_PORT"):
        BridgeConfig.from_env()


def test_from_env_missing_required(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _REQUIRED_ENV:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HUBITAT_URL", "http://hub.local")

    with pytest.raises(ConfigError, match="hub_app_id, hub_access_token"):
        BridgeConfig.from_env()
