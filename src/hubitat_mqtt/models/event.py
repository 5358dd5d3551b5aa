"""Inbound webhook event model.

The hub posts ``{"content": {"deviceId": ..., "name": ..., "value": ...}}``
for every device event it forwards.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from hubitat_mqtt.exceptions import EventValidationError
from hubitat_mqtt.models._base import coerce_str


class EventContent(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    device_id: str
    name: str
    value: str | None = None
    display_name: str | None = None
    description_text: str | None = None
    unit: str | None = None
    data: str | None = None

    @field_validator("device_id", "name", mode="before")
    @classmethod
    def _require_text(cls, value: Any) -> str:
        text = coerce_str(value)
        if text is None or not text.strip():
            raise ValueError("must be non-empty")
        return text.strip()

    @field_validator("value", "display_name", "description_text", "unit", "data", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return coerce_str(value)


class DeviceEvent(BaseModel):
    """A device event forwarded by the hub's webhook."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    content: EventContent

    @property
    def device_id(self) -> str:
        return self.content.device_id

    @property
    def name(self) -> str:
        return self.content.name

    @property
    def value(self) -> str | None:
        return self.content.value

    @classmethod
    def parse(cls, payload: Any) -> DeviceEvent:
        """Validate a decoded webhook body.

        Raises
        ------
        EventValidationError
            If the body has no ``content`` or lacks a device id or event name.
        """
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise EventValidationError(f"Malformed device event: {exc.error_count()} error(s)") from exc

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
