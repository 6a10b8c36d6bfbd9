"""
Unit tests for the polling scheduler.

Tests cover:
- Due-device selection under the concurrency limit
- Interval and concurrency validation
- Failure handling and backoff
- Manual polls and forgetting devices
- APScheduler lifecycle
"""

import asyncio
from datetime import timedelta
from types import SimpleNamespace

import pytest

from config.settings import SchedulerSettings
from mikromon.errors import DeviceConnectionError, InputValidationError
from mikromon.services.polling import PollOutcome, PollResult
from mikromon.services.scheduler import TICK_JOB_ID, PollingScheduler, PollState


def make_devices(count: int) -> list[SimpleNamespace]:
    return [
        SimpleNamespace(id=i, name=f"router-{i}", is_connected=False) for i in range(1, count + 1)
    ]


class FakeFleet:
    """Device list plus a controllable poll function."""

    def __init__(self, devices, outcome=PollOutcome.SUCCESS, error=None, delay=0.0):
        self.devices = list(devices)
        self.outcome = outcome
        self.error = error
        self.delay = delay
        self.release = asyncio.Event()
        self.block = False
        self.polled: list[int] = []

    async def list_devices(self):
        return self.devices

    async def poll(self, device) -> PollResult:
        self.polled.append(device.id)
        if self.block:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return PollResult(device_id=device.id, outcome=self.outcome)


class HookRecorder:
    """Records calls made to a scheduler hook."""

    def __init__(self):
        self.calls: list[tuple] = []

    async def __call__(self, *args):
        self.calls.append(args)


def make_scheduler(
    fleet: FakeFleet, on_forget=None, on_failure=None, **overrides
) -> PollingScheduler:
    values = {
        "polling_interval_ms": 10000,
        "min_polling_interval_ms": 5000,
        "max_concurrent_devices": 2,
        "poll_timeout_seconds": 5.0,
        "backoff_max_seconds": 300.0,
    }
    values.update(overrides)
    return PollingScheduler(
        fleet.list_devices,
        fleet.poll,
        SchedulerSettings(**values),
        on_forget=on_forget,
        on_failure=on_failure,
    )


# =============================================================================
# Configuration Tests
# =============================================================================


class TestSchedulerConfiguration:
    def test_interval_below_floor_rejected(self):
        scheduler = make_scheduler(FakeFleet([]))

        with pytest.raises(InputValidationError):
            scheduler.set_polling_interval(1000)

        assert scheduler.polling_interval_ms == 10000

    def test_interval_update(self):
        scheduler = make_scheduler(FakeFleet([]))

        scheduler.set_polling_interval(5000)

        assert scheduler.polling_interval_ms == 5000

    def test_max_concurrent_must_be_positive(self):
        scheduler = make_scheduler(FakeFleet([]))

        with pytest.raises(InputValidationError):
            scheduler.set_max_concurrent_devices(0)

        scheduler.set_max_concurrent_devices(7)
        assert scheduler.max_concurrent_devices == 7


# =============================================================================
# Cycle Tests
# =============================================================================


class TestPollingCycle:
    """Tests for run_cycle."""

    @pytest.mark.asyncio
    async def test_respects_max_concurrency(self):
        fleet = FakeFleet(make_devices(5))
        fleet.block = True
        scheduler = make_scheduler(fleet, max_concurrent_devices=2)

        started = await scheduler.run_cycle()
        await asyncio.sleep(0)

        assert started == [1, 2]
        assert scheduler.in_flight_count == 2
        states = {s["device_id"]: s["state"] for s in scheduler.get_device_polling_status()}
        assert states == {
            1: "polling",
            2: "polling",
            3: "queued",
            4: "queued",
            5: "queued",
        }

        # No free slots while the first two are running
        assert await scheduler.run_cycle() == []

        fleet.release.set()
        await scheduler.wait_for_idle()

        assert scheduler.in_flight_count == 0
        assert await scheduler.run_cycle() == [3, 4]
        await scheduler.wait_for_idle()

    @pytest.mark.asyncio
    async def test_success_schedules_next_poll(self):
        fleet = FakeFleet(make_devices(1))
        scheduler = make_scheduler(fleet)

        await scheduler.run_cycle()
        await scheduler.wait_for_idle()

        status = scheduler.get_device_status(1)
        assert status.state == PollState.IDLE
        assert status.is_connected is True
        assert status.last_outcome == PollOutcome.SUCCESS
        assert status.last_success_at is not None
        assert status.next_poll_at - status.last_polled_at == timedelta(seconds=10)

        # Not due again until the interval has passed
        assert await scheduler.run_cycle() == []
        assert await scheduler.run_cycle(now=status.next_poll_at) == [1]
        await scheduler.wait_for_idle()

    @pytest.mark.asyncio
    async def test_partial_poll_counts_as_connected(self):
        fleet = FakeFleet(make_devices(1), outcome=PollOutcome.PARTIAL)
        scheduler = make_scheduler(fleet)

        await scheduler.run_cycle()
        await scheduler.wait_for_idle()

        status = scheduler.get_device_status(1)
        assert status.is_connected is True
        assert status.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_failure_marks_disconnected_and_backs_off(self):
        fleet = FakeFleet(make_devices(1), error=DeviceConnectionError("refused", device_id=1))
        failures = HookRecorder()
        scheduler = make_scheduler(fleet, on_failure=failures)
        interval = timedelta(seconds=10)

        await scheduler.run_cycle()
        await scheduler.wait_for_idle()

        status = scheduler.get_device_status(1)
        assert status.is_connected is False
        assert status.last_outcome == PollOutcome.FAILED
        assert status.last_error == "refused"
        assert status.consecutive_failures == 1
        assert status.next_poll_at - status.last_polled_at == interval
        # The poller handles its own connection failures
        assert failures.calls == []

        # Still eligible once due, with a growing delay
        assert await scheduler.run_cycle(now=status.next_poll_at) == [1]
        await scheduler.wait_for_idle()
        assert status.consecutive_failures == 2
        assert status.next_poll_at - status.last_polled_at == interval * 2

        await scheduler.run_cycle(now=status.next_poll_at)
        await scheduler.wait_for_idle()
        assert status.consecutive_failures == 3
        assert status.next_poll_at - status.last_polled_at == interval * 4

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self):
        fleet = FakeFleet(make_devices(1), error=DeviceConnectionError("refused"))
        scheduler = make_scheduler(fleet, backoff_max_seconds=15.0)

        for _ in range(5):
            status = scheduler.get_device_status(1)
            await scheduler.run_cycle(now=status.next_poll_at if status else None)
            await scheduler.wait_for_idle()

        status = scheduler.get_device_status(1)
        assert status.consecutive_failures == 5
        assert status.next_poll_at - status.last_polled_at == timedelta(seconds=25)

    @pytest.mark.asyncio
    async def test_backoff_after_long_outage(self):
        fleet = FakeFleet(make_devices(1), error=DeviceConnectionError("refused"))
        scheduler = make_scheduler(fleet)
        await scheduler.run_cycle()
        await scheduler.wait_for_idle()

        status = scheduler.get_device_status(1)
        status.consecutive_failures = 1100
        await scheduler.run_cycle(now=status.next_poll_at)
        await scheduler.wait_for_idle()

        assert status.consecutive_failures == 1101
        assert status.last_outcome == PollOutcome.FAILED
        assert status.next_poll_at - status.last_polled_at == timedelta(seconds=310)

    @pytest.mark.asyncio
    async def test_recovery_resets_failures(self):
        fleet = FakeFleet(make_devices(1), error=DeviceConnectionError("refused"))
        scheduler = make_scheduler(fleet)
        await scheduler.run_cycle()
        await scheduler.wait_for_idle()

        fleet.error = None
        status = scheduler.get_device_status(1)
        await scheduler.run_cycle(now=status.next_poll_at)
        await scheduler.wait_for_idle()

        assert status.consecutive_failures == 0
        assert status.is_connected is True

    @pytest.mark.asyncio
    async def test_timeout_is_a_failure(self):
        failures = HookRecorder()
        fleet = FakeFleet(make_devices(1), delay=1.0)
        scheduler = make_scheduler(fleet, poll_timeout_seconds=0.05, on_failure=failures)

        await scheduler.run_cycle()
        await scheduler.wait_for_idle()

        status = scheduler.get_device_status(1)
        assert status.last_outcome == PollOutcome.FAILED
        assert "timed out" in status.last_error
        assert failures.calls == [(1, status.last_error)]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_a_failure(self):
        failures = HookRecorder()
        fleet = FakeFleet(make_devices(1), error=ValueError("boom"))
        scheduler = make_scheduler(fleet, on_failure=failures)

        await scheduler.run_cycle()
        await scheduler.wait_for_idle()

        status = scheduler.get_device_status(1)
        assert status.last_outcome == PollOutcome.FAILED
        assert status.last_error == "boom"
        assert failures.calls == [(1, "boom")]

    @pytest.mark.asyncio
    async def test_removed_devices_are_forgotten(self):
        forgotten = HookRecorder()
        fleet = FakeFleet(make_devices(2))
        scheduler = make_scheduler(fleet, on_forget=forgotten)
        await scheduler.run_cycle()
        await scheduler.wait_for_idle()

        fleet.devices = fleet.devices[:1]
        await scheduler.run_cycle()

        assert scheduler.get_device_status(2) is None
        assert forgotten.calls == [(2,)]
        assert [s["device_id"] for s in scheduler.get_device_polling_status()] == [1]


# =============================================================================
# Manual Control Tests
# =============================================================================


class TestManualControl:
    @pytest.mark.asyncio
    async def test_forget_in_flight_device_discards_result(self):
        fleet = FakeFleet(make_devices(1))
        fleet.block = True
        scheduler = make_scheduler(fleet)
        await scheduler.run_cycle()
        await asyncio.sleep(0)

        scheduler.forget_device(1)
        fleet.release.set()
        await asyncio.sleep(0.01)

        assert scheduler.in_flight_count == 0
        assert scheduler.get_device_status(1) is None

    @pytest.mark.asyncio
    async def test_poll_now(self):
        fleet = FakeFleet(make_devices(1))
        scheduler = make_scheduler(fleet)

        status = await scheduler.poll_now(fleet.devices[0])

        assert status.last_outcome == PollOutcome.SUCCESS
        assert fleet.polled == [1]

    @pytest.mark.asyncio
    async def test_poll_now_joins_running_poll(self):
        fleet = FakeFleet(make_devices(1))
        fleet.block = True
        scheduler = make_scheduler(fleet)
        await scheduler.run_cycle()
        await asyncio.sleep(0)

        waiter = asyncio.create_task(scheduler.poll_now(fleet.devices[0]))
        await asyncio.sleep(0)
        fleet.release.set()
        await waiter

        assert fleet.polled == [1]

    @pytest.mark.asyncio
    async def test_poll_now_waits_for_a_slot(self):
        fleet = FakeFleet(make_devices(2))
        fleet.block = True
        scheduler = make_scheduler(fleet, max_concurrent_devices=1)
        assert await scheduler.run_cycle() == [1]
        await asyncio.sleep(0)

        waiter = asyncio.create_task(scheduler.poll_now(fleet.devices[1]))
        await asyncio.sleep(0.01)
        assert not waiter.done()
        assert scheduler.get_device_status(2).state == PollState.QUEUED
        assert scheduler.in_flight_count == 1

        fleet.release.set()
        status = await waiter

        assert status.device_id == 2
        assert status.last_outcome == PollOutcome.SUCCESS
        assert fleet.polled == [1, 2]


# =============================================================================
# Lifecycle Tests
# =============================================================================


class TestSchedulerLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self):
        scheduler = make_scheduler(FakeFleet([]))

        await scheduler.initialize()
        job_scheduler = scheduler._scheduler
        await scheduler.initialize()

        assert scheduler.is_running is True
        assert scheduler._scheduler is job_scheduler
        assert job_scheduler.get_job(TICK_JOB_ID) is not None

        await scheduler.shutdown()
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_shutdown_cancels_polls(self):
        fleet = FakeFleet(make_devices(1))
        fleet.block = True
        scheduler = make_scheduler(fleet)
        await scheduler.run_cycle()
        await asyncio.sleep(0)

        await scheduler.shutdown()

        assert scheduler.in_flight_count == 0

    def test_stats(self):
        stats = make_scheduler(FakeFleet([])).get_stats()

        assert stats["running"] is False
        assert stats["polling_interval_ms"] == 10000
        assert stats["max_concurrent_devices"] == 2
