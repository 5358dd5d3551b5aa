"""Periodic full synchronization of hub devices onto the bus."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from hubitat_mqtt.client import DeviceSource
from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.exceptions import (
    DeferredUpdateError,
    HubitatMqttError,
    LockTimeoutError,
    RemoteApiError,
    TransportUnavailableError,
)
from hubitat_mqtt.models import Device
from hubitat_mqtt.publisher import Publisher
from hubitat_mqtt.state.directory import DeviceDirectory
from hubitat_mqtt.sync.coordinator import SyncCoordinator
from hubitat_mqtt.sync.policy import device_changed
from hubitat_mqtt.sync.reconciler import StaleStateReconciler

_logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Summary of one completed full sync."""

    fetched: int = 0
    changed: int = 0
    unchanged: int = 0
    published: int = 0
    failed: int = 0
    tombstoned: int = 0
    replayed: int = 0
    live_ids: frozenset[str] = frozenset()


class FullSyncEngine:
    """Runs the full sync on a schedule.

    One cycle fetches every device, compares it with the state retained on
    the bus, publishes only what differs, clears retained state of devices
    the hub no longer reports, then replays updates that were deferred while
    the cycle held the global permit.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        source: DeviceSource,
        directory: DeviceDirectory,
        coordinator: SyncCoordinator,
        publisher: Publisher,
        reconciler: StaleStateReconciler,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._source = source
        self._directory = directory
        self._coordinator = coordinator
        self._publisher = publisher
        self._reconciler = reconciler
        self._clock = clock
        self._last_success: float | None = None
        self._last_completed_at = datetime.min.replace(tzinfo=UTC)

    @property
    def last_success(self) -> float | None:
        """Clock reading at the end of the last successful cycle."""
        return self._last_success

    def should_sync(self) -> bool:
        interval = self._config.sync_interval
        if interval <= 0:
            return False
        if self._last_success is None:
            return True
        return self._clock() - self._last_success > interval

    async def sync_once(self) -> SyncReport | None:
        """Run one full cycle.

        Returns the cycle report, or ``None`` when the cycle was skipped or
        aborted (permit timeout, hub failure, empty device list or an
        unreachable bus). Aborted cycles are retried at the next check.
        """
        previous = self._last_completed_at
        _logger.info("Starting full sync")
        try:
            async with self._coordinator.full_sync_permit(self._config.full_sync_lock_timeout):
                report = await self._sync_under_permit()
        except LockTimeoutError:
            _logger.warning("Full sync skipped: another sync holds the lock")
            return None
        if report is None:
            return None

        self._last_success = self._clock()
        self._last_completed_at = self._coordinator.last_full_sync

        report.replayed = await self._replay_pending(previous)
        expired = self._coordinator.expire_pending(previous)
        if expired:
            _logger.debug("Expired %d pending updates covered by earlier syncs", expired)
        self._coordinator.compact_lock_pool(report.live_ids)

        _logger.info(
            "Full sync complete: %d fetched, %d changed, %d published, %d failed, %d removed, %d replayed",
            report.fetched,
            report.changed,
            report.published,
            report.failed,
            report.tombstoned,
            report.replayed,
        )
        return report

    async def _sync_under_permit(self) -> SyncReport | None:
        try:
            fetched = await self._source.fetch_all()
        except RemoteApiError as exc:
            _logger.error("Full sync aborted, could not fetch devices: %s", exc)
            return None
        if not fetched:
            _logger.warning("Full sync aborted, hub returned no devices")
            return None

        devices: dict[str, Device] = {device.id: device for device in fetched}
        live_ids = frozenset(devices)

        try:
            snapshot = await self._reconciler.discover()
        except TransportUnavailableError as exc:
            _logger.error("Full sync aborted, bus unavailable: %s", exc)
            return None

        changed = [
            device for device_id, device in devices.items() if device_changed(snapshot.devices.get(device_id), device)
        ]
        for device in devices.values():
            self._directory.upsert(device)
        self._directory.prune(live_ids)

        batch = await self._publisher.publish_batch(changed)
        tombstoned = await self._reconciler.reconcile(live_ids, snapshot)

        return SyncReport(
            fetched=len(devices),
            changed=len(changed),
            unchanged=len(devices) - len(changed),
            published=batch.published,
            failed=batch.failed,
            tombstoned=tombstoned,
            live_ids=live_ids,
        )

    async def _replay_pending(self, cutoff: datetime) -> int:
        """Re-fetch and republish every device whose update was deferred after *cutoff*."""
        pending = self._coordinator.pending_since(cutoff)
        if not pending:
            return 0
        _logger.info("Processing %d deferred device updates", len(pending))

        replayed = 0
        for device_id in sorted(pending):
            try:
                async with self._coordinator.device_permit(device_id, self._config.device_lock_timeout):
                    device = await self._source.fetch_one(device_id)
                    if device is None:
                        _logger.warning("Deferred device %s no longer exists on the hub", device_id)
                        self._coordinator.clear_pending([device_id])
                        continue
                    self._directory.upsert(device)
                    if not await self._publisher.publish_device(device):
                        continue
            except DeferredUpdateError:
                continue
            except HubitatMqttError as exc:
                _logger.error("Failed to replay deferred update for device %s: %s", device_id, exc)
                continue
            self._coordinator.clear_pending([device_id])
            replayed += 1
        return replayed

    async def run(self, stop: asyncio.Event) -> None:
        """Check the schedule every ``sync_check_interval`` seconds until *stop* is set."""
        if self._config.sync_interval <= 0:
            _logger.info("Periodic full sync disabled")
            return

        while not stop.is_set():
            delay = self._config.sync_check_interval
            try:
                if self.should_sync():
                    await self.sync_once()
            except Exception:
                _logger.error("Unexpected error during full sync", exc_info=True)
                delay = self._config.sync_error_delay
            try:
                await asyncio.wait_for(stop.wait(), delay)
            except TimeoutError:
                pass
