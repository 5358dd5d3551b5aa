"""Attribute value helpers shared by the models.

Device attribute values form a closed, recursive variant: string, number,
boolean, null, list of values, or string-keyed map of values. Pydantic's
:data:`~pydantic.JsonValue` is exactly that union, so it is used as the
attribute type throughout.

Composite values (lists and maps) have no natural scalar form; they are
compared and published through :func:`canonical_json`, a compact JSON
encoding with sorted keys so that two equal values always produce the same
text.
"""

from __future__ import annotations

import json
from typing import Any, TypeAlias

from pydantic import JsonValue

AttributeValue: TypeAlias = JsonValue


def is_composite(value: Any) -> bool:
    """Return ``True`` for list and map attribute values."""
    return isinstance(value, (list, dict))


def canonical_json(value: Any) -> str:
    """Serialize *value* to compact JSON with sorted keys."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, sort_keys=True)


def attribute_to_string(value: AttributeValue) -> str:
    """Scalar string form of an attribute value as published on attribute topics.

    Strings pass through unchanged, booleans use JSON spelling
    (``true``/``false``), numbers use ``str()`` and composites are
    canonically serialized. ``None`` maps to an empty string.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return canonical_json(value)


def coerce_str(value: Any) -> str | None:
    """Coerce hub scalars (ids arrive as ints or strings) to ``str``."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return attribute_to_string(value)
    return canonical_json(value)
