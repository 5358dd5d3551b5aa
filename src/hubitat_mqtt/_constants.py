"""Internal constants shared across the library."""

DEFAULT_BASE_TOPIC = "hubitat"

#: Segment between the base topic and the device id in every device address.
DEVICE_SEGMENT = "device"
#: Segment introducing a command name in a command address.
COMMAND_SEGMENT = "command"
#: Attribute-level address used for raw webhook events when a device refresh fails.
EVENTS_ATTRIBUTE = "events"

#: Replacement for characters that are reserved in MQTT topic names.
PLACEHOLDER_CHAR = "_"
#: Topic segment used when an attribute name is empty.
PLACEHOLDER_NAME = "unknown"

WEBHOOK_PATH = "/api/hook/device/event"
HEALTH_PATH = "/health"
WEBHOOK_ACK: dict[str, str] = {"message": "Received successfully"}

USER_AGENT = "hubitat-mqtt/0.1"
