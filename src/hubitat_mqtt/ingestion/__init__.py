"""Ingestion layer.

Turns webhook events and bus commands into device updates on the bus.
"""

from hubitat_mqtt.ingestion.commands import CommandHandler
from hubitat_mqtt.ingestion.events import DeviceEventProcessor

__all__ = ["CommandHandler", "DeviceEventProcessor"]
