"""Device model."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hubitat_mqtt.models._base import AttributeValue, coerce_str


def _normalize_attributes(raw: Any) -> dict[str, Any]:
    """Normalize both attribute shapes returned by the Maker API.

    ``devices/all`` returns an object (``{"switch": "on"}``) while
    ``devices/{id}`` returns a list of ``{"name", "currentValue", "dataType"}``
    records. Records without a name are skipped; a repeated name keeps the
    last value.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(key): value for key, value in raw.items()}
    if not isinstance(raw, list):
        raise ValueError(f"attributes must be an object or a list, got {type(raw).__name__}")

    attributes: dict[str, Any] = {}
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError("attribute records must be objects")
        name = item.get("name")
        if not isinstance(name, str) or not name:
            continue
        attributes[name] = item.get("currentValue")
    return attributes


def _normalize_commands(raw: Any) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("commands must be a list")
    commands: list[str] = []
    for item in raw:
        if isinstance(item, dict):
            item = item.get("command")
        if isinstance(item, str) and item:
            commands.append(item)
    return commands


def _normalize_capabilities(raw: Any) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("capabilities must be a list")
    # Nested capability records ({"attributes": [...]}) carry no tag name.
    return [item for item in raw if isinstance(item, str) and item]


class Device(BaseModel):
    """A hub device as published on its snapshot topic.

    The model is frozen: the incremental path derives updated copies through
    :meth:`with_attribute`, so a device's ``id`` can never change once the
    instance exists.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    id: str
    """Hub device id (stable, unique)."""
    name: str | None = None
    """Driver-assigned name."""
    label: str | None = None
    """User-assigned display label."""
    type: str | None = None
    """Driver type (e.g. ``"Virtual Switch"``)."""
    date: str | None = None
    """Last activity timestamp as reported by the hub."""
    model: str | None = None
    manufacturer: str | None = None
    room: str | None = None
    capabilities: list[str] = Field(default_factory=list)
    """Capability tags (e.g. ``"Switch"``)."""
    attributes: dict[str, AttributeValue] = Field(default_factory=dict)
    """Attribute name to current value, in hub order."""
    commands: list[str] = Field(default_factory=list)
    """Invocable command names."""

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        text = coerce_str(value)
        if text is None or not text.strip():
            raise ValueError("device id must be non-empty")
        return text.strip()

    @field_validator("name", "label", "type", "date", "model", "manufacturer", "room", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return coerce_str(value)

    @field_validator("attributes", mode="before")
    @classmethod
    def _coerce_attributes(cls, value: Any) -> dict[str, Any]:
        return _normalize_attributes(value)

    @field_validator("commands", mode="before")
    @classmethod
    def _coerce_commands(cls, value: Any) -> list[str]:
        return _normalize_commands(value)

    @field_validator("capabilities", mode="before")
    @classmethod
    def _coerce_capabilities(cls, value: Any) -> list[str]:
        return _normalize_capabilities(value)

    @property
    def display_name(self) -> str:
        """Label, falling back to name, falling back to id."""
        return self.label or self.name or self.id

    def with_attribute(self, name: str, value: AttributeValue) -> Device:
        """Return a copy with *name* set to *value* (appended when new)."""
        attributes = dict(self.attributes)
        attributes[name] = value
        return self.model_copy(update={"attributes": attributes})

    def to_payload(self) -> dict[str, Any]:
        """Canonical dict form: unset descriptive fields omitted, attributes kept verbatim."""
        payload: dict[str, Any] = {}
        for key in ("name", "label", "type", "id", "date", "model", "manufacturer", "room"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        payload["capabilities"] = list(self.capabilities)
        payload["attributes"] = dict(self.attributes)
        payload["commands"] = list(self.commands)
        return payload

    def to_json(self) -> str:
        """Canonical serialization published as the retained device snapshot."""
        return json.dumps(self.to_payload(), separators=(",", ":"), ensure_ascii=False)
