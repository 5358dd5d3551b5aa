"""MQTT address layout.

Every address the bridge reads or writes lives under ``{base}/device/``:

=================  ===================================================
Device snapshot    ``{base}/device/{id}``
Device attribute   ``{base}/device/{id}/{sanitizedAttributeName}``
Command            ``{base}/device/{id}/command/{commandName}[/{value}]``
=================  ===================================================

A tombstone is an empty retained payload published to one of the state
addresses.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass

from hubitat_mqtt._constants import COMMAND_SEGMENT, DEVICE_SEGMENT, PLACEHOLDER_CHAR, PLACEHOLDER_NAME

# Level separator and the single/multi-level wildcards.
_RESERVED_CHARS = frozenset("/+#")


def _is_reserved(ch: str) -> bool:
    if ch in _RESERVED_CHARS or ch.isspace():
        return True
    # Cc covers NUL and the other C0/C1 control characters.
    return unicodedata.category(ch) == "Cc"


def sanitize_name(name: str | None) -> str:
    """Make *name* safe for use as a single topic level.

    Reserved characters are replaced one-for-one by ``_`` so the result has
    the same length as the input; an empty name becomes ``"unknown"``.
    """
    if not name:
        return PLACEHOLDER_NAME
    return "".join(PLACEHOLDER_CHAR if _is_reserved(ch) else ch for ch in name)


def device_prefix(base: str) -> str:
    return f"{base}/{DEVICE_SEGMENT}/"


def device_topic(base: str, device_id: str) -> str:
    return f"{base}/{DEVICE_SEGMENT}/{device_id}"


def attribute_topic(base: str, device_id: str, attribute: str) -> str:
    return f"{base}/{DEVICE_SEGMENT}/{device_id}/{sanitize_name(attribute)}"


def state_wildcard(base: str) -> str:
    """Subscription pattern covering every snapshot and attribute address."""
    return f"{base}/{DEVICE_SEGMENT}/#"


def command_wildcards(base: str) -> tuple[str, str]:
    """Subscription patterns for commands without and with a value segment."""
    prefix = f"{base}/{DEVICE_SEGMENT}/+/{COMMAND_SEGMENT}/+"
    return prefix, f"{prefix}/+"


@dataclass(frozen=True)
class StateAddress:
    """A parsed snapshot (``attribute is None``) or attribute address."""

    device_id: str
    attribute: str | None = None


@dataclass(frozen=True)
class CommandAddress:
    device_id: str
    command: str
    value: str | None = None


def parse_state_topic(base: str, topic: str) -> StateAddress | None:
    """Parse a snapshot or attribute address; anything deeper returns ``None``."""
    prefix = device_prefix(base)
    if not topic.startswith(prefix):
        return None
    parts = topic[len(prefix) :].split("/")
    if not parts[0]:
        return None
    if len(parts) == 1:
        return StateAddress(device_id=parts[0])
    if len(parts) == 2 and parts[1]:
        return StateAddress(device_id=parts[0], attribute=parts[1])
    return None


def parse_command_topic(base: str, topic: str) -> CommandAddress | None:
    prefix = device_prefix(base)
    if not topic.startswith(prefix):
        return None
    parts = topic[len(prefix) :].split("/")
    if len(parts) not in (3, 4) or parts[1] != COMMAND_SEGMENT:
        return None
    if not parts[0] or not parts[2]:
        return None
    value = parts[3] if len(parts) == 4 and parts[3] else None
    return CommandAddress(device_id=parts[0], command=parts[2], value=value)
