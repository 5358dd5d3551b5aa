"""hubitat_mqtt - Bridge Hubitat Maker API devices to an MQTT broker."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("hubitat-mqtt")
except PackageNotFoundError:
    __version__ = "0+local"
from hubitat_mqtt.bridge import HubitatMqttBridge
from hubitat_mqtt.client import DeviceSource, HubitatClient
from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.exceptions import (
    ConfigError,
    DeferredUpdateError,
    EventValidationError,
    HubitatMqttError,
    LockTimeoutError,
    PublishExhaustedError,
    RemoteApiError,
    TransportUnavailableError,
)
from hubitat_mqtt.models import AttributeValue, Device, DeviceEvent
from hubitat_mqtt.publisher import BatchResult, BusMessage, Publisher
from hubitat_mqtt.state.directory import DeviceDirectory
from hubitat_mqtt.sync import BusSnapshot, FullSyncEngine, StaleStateReconciler, SyncCoordinator, SyncReport

__all__ = [
    "__version__",
    "AttributeValue",
    "BatchResult",
    "BridgeConfig",
    "BusMessage",
    "BusSnapshot",
    "ConfigError",
    "DeferredUpdateError",
    "Device",
    "DeviceDirectory",
    "DeviceEvent",
    "DeviceSource",
    "EventValidationError",
    "FullSyncEngine",
    "HubitatClient",
    "HubitatMqttBridge",
    "HubitatMqttError",
    "LockTimeoutError",
    "PublishExhaustedError",
    "Publisher",
    "RemoteApiError",
    "StaleStateReconciler",
    "SyncCoordinator",
    "SyncReport",
    "TransportUnavailableError",
]
