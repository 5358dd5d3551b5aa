from __future__ import annotations

import json

import pytest

from hubitat_mqtt.exceptions import EventValidationError
from hubitat_mqtt.models import Device, DeviceEvent, attribute_to_string, canonical_json


def test_device_accepts_attribute_map_and_coerces_id() -> None:
    device = Device.model_validate(
        {
            "id": 42,
            "name": "Kitchen Light",
            "label": "Kitchen",
            "type": "Generic Zigbee Bulb",
            "capabilities": ["Switch", {"attributes": [{"name": "switch"}]}, "Refresh"],
            "attributes": {"switch": "on", "level": 80},
            "commands": ["on", "off", {"command": "setLevel"}],
        }
    )

    assert device.id == "42"
    assert device.capabilities == ["Switch", "Refresh"]
    assert device.attributes == {"switch": "on", "level": 80}
    assert device.commands == ["on", "off", "setLevel"]
    assert device.display_name == "Kitchen"


def test_device_normalizes_attribute_records_last_duplicate_wins() -> None:
    device = Device.model_validate(
        {
            "id": "7",
            "attributes": [
                {"name": "temperature", "currentValue": 70, "dataType": "NUMBER"},
                {"name": "switch", "currentValue": "off", "dataType": "ENUM"},
                {"name": "temperature", "currentValue": 71, "dataType": "NUMBER"},
                {"currentValue": "orphan"},
            ],
        }
    )

    assert device.attributes == {"temperature": 71, "switch": "off"}
    assert list(device.attributes) == ["temperature", "switch"]


def test_device_rejects_blank_id() -> None:
    with pytest.raises(ValueError):
        Device.model_validate({"id": "  "})


def test_with_attribute_returns_new_instance_with_same_id() -> None:
    device = Device.model_validate({"id": "1", "attributes": {"switch": "off"}})

    updated = device.with_attribute("switch", "on")

    assert updated is not device
    assert updated.id == "1"
    assert updated.attributes["switch"] == "on"
    assert device.attributes["switch"] == "off"


def test_to_json_field_order_and_optional_fields() -> None:
    device = Device.model_validate(
        {"id": "5", "name": "Lock", "type": "Z-Wave Lock", "attributes": {"lock": "locked", "codes": None}}
    )

    payload = json.loads(device.to_json())

    assert list(payload) == ["name", "type", "id", "capabilities", "attributes", "commands"]
    assert payload["attributes"] == {"lock": "locked", "codes": None}
    assert ", " not in device.to_json()
    assert ": " not in device.to_json()


def test_to_json_round_trips_through_model() -> None:
    device = Device.model_validate(
        {
            "id": "9",
            "label": "Thermostat",
            "room": "Hall",
            "attributes": {"supportedModes": ["heat", "cool"], "schedule": {"b": 1, "a": 2}},
        }
    )

    assert Device.model_validate_json(device.to_json()) == device


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("on", "on"),
        (True, "true"),
        (False, "false"),
        (72, "72"),
        (21.5, "21.5"),
        (None, ""),
        (["heat", "cool"], '["heat","cool"]'),
        ({"b": 1, "a": [1, 2]}, '{"a":[1,2],"b":1}'),
    ],
)
def test_attribute_to_string(value: object, expected: str) -> None:
    assert attribute_to_string(value) == expected  # type: ignore[arg-type]


def test_canonical_json_is_key_order_independent() -> None:
    assert canonical_json({"a": 1, "b": {"d": 2, "c": 3}}) == canonical_json({"b": {"c": 3, "d": 2}, "a": 1})


def test_device_event_parses_camel_case_content() -> None:
    event = DeviceEvent.parse(
        {
            "content": {
                "deviceId": 12,
                "name": "switch",
                "value": "on",
                "displayName": "Porch",
                "descriptionText": "Porch was turned on",
                "unit": None,
                "data": None,
            }
        }
    )

    assert event.device_id == "12"
    assert event.name == "switch"
    assert event.value == "on"
    assert event.content.display_name == "Porch"
    assert json.loads(event.to_json())["content"]["deviceId"] == "12"


def test_device_event_numeric_value_is_stringified() -> None:
    event = DeviceEvent.parse({"content": {"deviceId": "3", "name": "temperature", "value": 70}})
    assert event.value == "70"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"content": None},
        {"content": {"name": "switch", "value": "on"}},
        {"content": {"deviceId": "1", "name": ""}},
        ["not", "an", "object"],
    ],
)
def test_device_event_rejects_incomplete_payloads(payload: object) -> None:
    with pytest.raises(EventValidationError):
        DeviceEvent.parse(payload)
