"""Deterministic change detection between bus-retained and fetched devices.

The retained snapshot on the bus is treated as the source of truth, so a
device counts as unchanged only when what subscribers currently see already
matches what the hub reports.
"""

from __future__ import annotations

from hubitat_mqtt.models import AttributeValue, Device, canonical_json
from hubitat_mqtt.models._base import is_composite

_COMPARED_FIELDS = ("name", "label", "type")


def attribute_values_equal(left: AttributeValue, right: AttributeValue) -> bool:
    """Compare two attribute values.

    Primitives compare directly; booleans never equal numbers. Lists and
    maps compare through their canonical serialization.
    """
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if is_composite(left) or is_composite(right):
        return canonical_json(left) == canonical_json(right)
    return left == right


def device_changed(bus_device: Device | None, fetched: Device) -> bool:
    """Return ``True`` when *fetched* must be republished.

    Policy:
    - No retained snapshot on the bus: changed.
    - Any of name/label/type differs: changed.
    - Attribute key sets differ, or any value differs: changed.
    """
    if bus_device is None:
        return True
    for field_name in _COMPARED_FIELDS:
        if getattr(bus_device, field_name) != getattr(fetched, field_name):
            return True

    if bus_device.attributes.keys() != fetched.attributes.keys():
        return True
    return any(
        not attribute_values_equal(bus_device.attributes[name], value)
        for name, value in fetched.attributes.items()
    )
