"""HTTP endpoints: the hub's event webhook and a health probe."""

from __future__ import annotations

import asyncio
import json
import logging

from aiohttp import web

from hubitat_mqtt._constants import HEALTH_PATH, WEBHOOK_ACK, WEBHOOK_PATH
from hubitat_mqtt._mqtt import BusTransport
from hubitat_mqtt.exceptions import EventValidationError
from hubitat_mqtt.ingestion.events import DeviceEventProcessor
from hubitat_mqtt.models import DeviceEvent

_logger = logging.getLogger(__name__)

PROCESSOR_KEY = web.AppKey("processor", DeviceEventProcessor)
TRANSPORT_KEY = web.AppKey("transport", BusTransport)
TASKS_KEY = web.AppKey("tasks", set)


async def handle_device_event(request: web.Request) -> web.Response:
    """Accept one hub event and acknowledge it before it is processed.

    The response is always ``200`` with the fixed acknowledgement body,
    including for malformed events.
    """
    try:
        payload = await request.json()
        event = DeviceEvent.parse(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        _logger.warning("Received device event with invalid JSON: %s", exc)
    except EventValidationError as exc:
        _logger.warning("Received incomplete device event data: %s", exc)
    else:
        processor = request.app[PROCESSOR_KEY]
        tasks = request.app[TASKS_KEY]
        task = asyncio.get_running_loop().create_task(processor.handle(event))
        tasks.add(task)
        task.add_done_callback(tasks.discard)
    return web.json_response(WEBHOOK_ACK)


async def handle_health(request: web.Request) -> web.Response:
    if request.app[TRANSPORT_KEY].is_connected:
        return web.json_response({"status": "healthy", "mqtt": "connected"})
    return web.json_response({"status": "unhealthy", "mqtt": "disconnected"}, status=503)


async def _drain_tasks(app: web.Application) -> None:
    tasks = list(app[TASKS_KEY])
    if tasks:
        _logger.debug("Waiting for %d in-flight device events", len(tasks))
        await asyncio.gather(*tasks, return_exceptions=True)


def create_app(processor: DeviceEventProcessor, transport: BusTransport) -> web.Application:
    app = web.Application()
    app[PROCESSOR_KEY] = processor
    app[TRANSPORT_KEY] = transport
    app[TASKS_KEY] = set()
    app.router.add_post(WEBHOOK_PATH, handle_device_event)
    app.router.add_get(HEALTH_PATH, handle_health)
    app.on_cleanup.append(_drain_tasks)
    return app
