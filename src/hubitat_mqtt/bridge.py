"""Top-level wiring of the hub client, the bus runtime and the HTTP server."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from typing import Any

import aiohttp
from aiohttp import web

from hubitat_mqtt._mqtt import MqttRuntime
from hubitat_mqtt._redact import redact_for_log
from hubitat_mqtt.client import HubitatClient
from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.ingestion.commands import CommandHandler
from hubitat_mqtt.ingestion.events import DeviceEventProcessor
from hubitat_mqtt.publisher import Publisher
from hubitat_mqtt.state.directory import DeviceDirectory
from hubitat_mqtt.sync.coordinator import SyncCoordinator
from hubitat_mqtt.sync.engine import FullSyncEngine
from hubitat_mqtt.sync.reconciler import StaleStateReconciler
from hubitat_mqtt.web import create_app

_logger = logging.getLogger(__name__)


class HubitatMqttBridge:
    """Runs the bridge for the lifetime of an ``async with`` block.

    Usage::

        async with HubitatMqttBridge(config) as bridge:
            await bridge.wait_stopped()

    Entering starts, in order, the hub HTTP session, the MQTT runtime, the
    command listener, the webhook server and the full-sync loop. Leaving
    tears them down in reverse order.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._session = session
        self._stack: contextlib.AsyncExitStack | None = None
        self._stop = asyncio.Event()
        self._sync_task: asyncio.Task[None] | None = None
        self._runtime: MqttRuntime | None = None
        self._engine: FullSyncEngine | None = None

    @property
    def is_connected(self) -> bool:
        return self._runtime is not None and self._runtime.is_connected

    @property
    def engine(self) -> FullSyncEngine | None:
        return self._engine

    def request_stop(self) -> None:
        self._stop.set()

    async def wait_stopped(self) -> None:
        await self._stop.wait()

    async def __aenter__(self) -> HubitatMqttBridge:
        config = self._config
        loop = asyncio.get_running_loop()
        _logger.info("Starting bridge: %s", redact_for_log(dataclasses.asdict(config)))

        self._stop.clear()
        stack = contextlib.AsyncExitStack()
        try:
            hub = await stack.enter_async_context(HubitatClient(config, session=self._session))

            runtime = MqttRuntime(config, loop=loop)
            await loop.run_in_executor(None, runtime.start)
            stack.push_async_callback(loop.run_in_executor, None, runtime.stop)
            self._runtime = runtime

            directory = DeviceDirectory()
            coordinator = SyncCoordinator()
            publisher = Publisher(config, runtime)
            reconciler = StaleStateReconciler(config, runtime, publisher)
            self._engine = FullSyncEngine(
                config,
                source=hub,
                directory=directory,
                coordinator=coordinator,
                publisher=publisher,
                reconciler=reconciler,
            )
            processor = DeviceEventProcessor(
                config,
                source=hub,
                directory=directory,
                coordinator=coordinator,
                publisher=publisher,
            )
            commands = CommandHandler(
                config,
                transport=runtime,
                source=hub,
                directory=directory,
                coordinator=coordinator,
                publisher=publisher,
            )

            await commands.start()
            stack.push_async_callback(commands.stop)

            runner = web.AppRunner(create_app(processor, runtime))
            await runner.setup()
            stack.push_async_callback(runner.cleanup)
            site = web.TCPSite(runner, config.http_host, config.http_port)
            await site.start()
            _logger.info("Webhook listening on %s:%s", config.http_host, config.http_port)

            self._sync_task = loop.create_task(self._engine.run(self._stop))
            stack.push_async_callback(self._stop_sync)
        except BaseException:
            await stack.aclose()
            self._runtime = None
            raise

        self._stack = stack
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._stop.set()
        stack = self._stack
        self._stack = None
        if stack is not None:
            await stack.aclose()
        self._runtime = None
        _logger.info("Bridge stopped")

    async def _stop_sync(self) -> None:
        task = self._sync_task
        self._sync_task = None
        if task is None:
            return
        self._stop.set()
        try:
            await asyncio.wait_for(task, self._config.full_sync_lock_timeout)
        except TimeoutError:
            _logger.warning("Full sync did not finish in time, cancelling")
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
