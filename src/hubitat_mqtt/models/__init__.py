"""Data models for hub devices and webhook events."""

from hubitat_mqtt.models._base import AttributeValue, attribute_to_string, canonical_json
from hubitat_mqtt.models.device import Device
from hubitat_mqtt.models.event import DeviceEvent, EventContent

__all__ = [
    "AttributeValue",
    "Device",
    "DeviceEvent",
    "EventContent",
    "attribute_to_string",
    "canonical_json",
]
