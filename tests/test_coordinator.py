from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from hubitat_mqtt.exceptions import DeferredUpdateError, LockTimeoutError
from hubitat_mqtt.sync.coordinator import SyncCoordinator


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.mark.asyncio
async def test_same_device_updates_are_serialized() -> None:
    coordinator = SyncCoordinator()
    active = 0
    max_active = 0

    async def _update() -> None:
        nonlocal active, max_active
        async with coordinator.device_permit("1", timeout=1.0):
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(_update() for _ in range(5)))

    assert max_active == 1


@pytest.mark.asyncio
async def test_different_devices_proceed_in_parallel() -> None:
    coordinator = SyncCoordinator()
    entered = asyncio.Event()

    async with coordinator.device_permit("1", timeout=1.0):

        async def _other() -> None:
            async with coordinator.device_permit("2", timeout=0.1):
                entered.set()

        await asyncio.wait_for(_other(), 1.0)

    assert entered.is_set()


@pytest.mark.asyncio
async def test_device_permit_times_out() -> None:
    coordinator = SyncCoordinator()

    async with coordinator.device_permit("1", timeout=1.0):
        with pytest.raises(LockTimeoutError):
            async with coordinator.device_permit("1", timeout=0.01):
                pass

    # The permit is usable again once released.
    async with coordinator.device_permit("1", timeout=0.01):
        pass


@pytest.mark.asyncio
async def test_permit_released_on_error() -> None:
    coordinator = SyncCoordinator()

    with pytest.raises(RuntimeError):
        async with coordinator.device_permit("1", timeout=1.0):
            raise RuntimeError("boom")

    async with coordinator.device_permit("1", timeout=0.01):
        pass


@pytest.mark.asyncio
async def test_device_permit_deferred_during_full_sync() -> None:
    clock = _Clock()
    coordinator = SyncCoordinator(clock=clock)
    before = clock.now

    async with coordinator.full_sync_permit(timeout=1.0):
        assert coordinator.is_full_sync_in_progress
        clock.advance(1)
        with pytest.raises(DeferredUpdateError) as excinfo:
            async with coordinator.device_permit("X", timeout=1.0):
                pytest.fail("permit must not be granted during a full sync")
        assert excinfo.value.device_id == "X"
        clock.advance(1)
        with pytest.raises(DeferredUpdateError):
            async with coordinator.device_permit("X", timeout=1.0):
                pass
        clock.advance(1)

    assert not coordinator.is_full_sync_in_progress
    assert coordinator.last_full_sync == before + timedelta(seconds=3)
    assert coordinator.pending_since(before) == {"X"}
    # A repeated deferral moves the arrival forward.
    assert coordinator.pending_since(before + timedelta(seconds=1)) == {"X"}
    assert coordinator.pending_since(before + timedelta(seconds=2)) == set()


@pytest.mark.asyncio
async def test_permits_held_before_full_sync_run_to_completion() -> None:
    coordinator = SyncCoordinator()
    release = asyncio.Event()
    holding = asyncio.Event()

    async def _holder() -> None:
        async with coordinator.device_permit("1", timeout=1.0):
            holding.set()
            await release.wait()

    task = asyncio.create_task(_holder())
    await holding.wait()

    async with coordinator.full_sync_permit(timeout=0.1):
        release.set()
        await asyncio.wait_for(task, 1.0)

    assert coordinator.pending_since(datetime.min.replace(tzinfo=UTC)) == set()


@pytest.mark.asyncio
async def test_full_sync_permit_times_out() -> None:
    coordinator = SyncCoordinator()

    async with coordinator.full_sync_permit(timeout=1.0):
        with pytest.raises(LockTimeoutError):
            async with coordinator.full_sync_permit(timeout=0.01):
                pass


def test_pending_clear_and_expire() -> None:
    coordinator = SyncCoordinator()
    base = datetime(2026, 1, 1, tzinfo=UTC)
    coordinator._pending.update(  # type: ignore[attr-defined]
        {"a": base, "b": base + timedelta(seconds=5), "c": base + timedelta(seconds=10)}
    )

    assert coordinator.pending_since(base) == {"b", "c"}
    coordinator.clear_pending(["c", "unknown"])
    assert coordinator.pending_since(base - timedelta(seconds=1)) == {"a", "b"}
    assert coordinator.expire_pending(base) == 1
    assert coordinator.pending_since(base - timedelta(seconds=1)) == {"b"}


@pytest.mark.asyncio
async def test_compact_lock_pool_keeps_active_and_held_locks() -> None:
    coordinator = SyncCoordinator()
    for device_id in ("1", "2", "3"):
        async with coordinator.device_permit(device_id, timeout=1.0):
            pass
    assert coordinator.lock_pool_size == 3

    async with coordinator.device_permit("3", timeout=1.0):
        removed = coordinator.compact_lock_pool({"1"})

    assert removed == 1
    assert coordinator.lock_pool_size == 2
    assert coordinator.compact_lock_pool({"1"}) == 1
    assert coordinator.lock_pool_size == 1
