"""Coordination between incremental device updates and the full sync.

Incremental updates (webhook events, command follow-ups) take a per-device
permit so that updates for one device run one at a time while different
devices proceed in parallel. The full sync takes a single global permit.
While it is held, new device-permit requests are not queued behind it: they
fail fast with :class:`DeferredUpdateError` and the device is recorded as
pending so the engine can reprocess it once the sync has finished. Device
permits granted before the sync started simply run to completion.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime

from hubitat_mqtt.exceptions import DeferredUpdateError, LockTimeoutError

_logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class _LockEntry:
    """A pooled device lock plus the number of tasks holding or awaiting it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SyncCoordinator:
    """Owns the device lock pool, the full-sync permit and the pending set.

    All state is per instance; share one coordinator between the webhook
    handler, the command handler and the full-sync engine.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._device_locks: dict[str, _LockEntry] = {}
        self._full_sync_lock = asyncio.Lock()
        self._pending: dict[str, datetime] = {}
        self._full_sync_in_progress = False
        self._last_full_sync = _EPOCH

    @property
    def is_full_sync_in_progress(self) -> bool:
        return self._full_sync_in_progress

    @property
    def last_full_sync(self) -> datetime:
        """Completion time of the most recent full sync (``datetime.min`` before the first)."""
        return self._last_full_sync

    @property
    def lock_pool_size(self) -> int:
        return len(self._device_locks)

    @asynccontextmanager
    async def device_permit(self, device_id: str, timeout: float) -> AsyncIterator[None]:
        """Hold the exclusive permit for *device_id* for the body of the block.

        Raises
        ------
        DeferredUpdateError
            Immediately, if a full sync is in progress. The device is
            recorded as pending.
        LockTimeoutError
            If another holder kept the permit for longer than *timeout*.
        """
        if self._full_sync_in_progress:
            _logger.debug("Full sync in progress, deferring update for device %s", device_id)
            self._pending[device_id] = self._clock()
            raise DeferredUpdateError(device_id)

        entry = self._device_locks.get(device_id)
        if entry is None:
            entry = _LockEntry()
            self._device_locks[device_id] = entry

        entry.users += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout)
            except TimeoutError:
                _logger.warning("Timeout waiting for device lock %s", device_id)
                raise LockTimeoutError(f"device {device_id}", timeout=timeout) from None
            try:
                yield
            finally:
                entry.lock.release()
                _logger.debug("Released device lock %s", device_id)
        finally:
            entry.users -= 1

    @asynccontextmanager
    async def full_sync_permit(self, timeout: float) -> AsyncIterator[None]:
        """Hold the global full-sync permit for the body of the block.

        While held, :attr:`is_full_sync_in_progress` is ``True``. Leaving the
        block clears the flag and records :attr:`last_full_sync`.

        Raises
        ------
        LockTimeoutError
            If the permit was not granted within *timeout*.
        """
        try:
            await asyncio.wait_for(self._full_sync_lock.acquire(), timeout)
        except TimeoutError:
            _logger.warning("Timeout waiting for full sync lock")
            raise LockTimeoutError("full sync", timeout=timeout) from None

        self._full_sync_in_progress = True
        _logger.debug("Full sync lock acquired")
        try:
            yield
        finally:
            self._full_sync_in_progress = False
            self._last_full_sync = self._clock()
            self._full_sync_lock.release()
            _logger.debug("Released full sync lock")

    def pending_since(self, cutoff: datetime) -> set[str]:
        """Ids whose deferred update arrived strictly after *cutoff*."""
        return {device_id for device_id, arrived in self._pending.items() if arrived > cutoff}

    def clear_pending(self, device_ids: Iterable[str]) -> None:
        cleared = 0
        for device_id in device_ids:
            if self._pending.pop(device_id, None) is not None:
                cleared += 1
        _logger.debug("Cleared pending updates for %d devices", cleared)

    def expire_pending(self, cutoff: datetime) -> int:
        """Drop records that arrived at or before *cutoff*.

        A full sync that started after such an update already fetched the
        device's newer state, so the record is obsolete.
        """
        expired = [device_id for device_id, arrived in self._pending.items() if arrived <= cutoff]
        for device_id in expired:
            del self._pending[device_id]
        return len(expired)

    def compact_lock_pool(self, active_ids: Iterable[str]) -> int:
        """Remove pooled locks of inactive devices that nobody holds or awaits."""
        active = set(active_ids)
        removable = [
            device_id
            for device_id, entry in self._device_locks.items()
            if device_id not in active and entry.users == 0 and not entry.lock.locked()
        ]
        for device_id in removable:
            del self._device_locks[device_id]
            _logger.debug("Cleaned up unused device lock for %s", device_id)
        if removable:
            _logger.debug("Cleaned up %d unused device locks", len(removable))
        return len(removable)
