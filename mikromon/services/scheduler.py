"""
Polling scheduler.

Responsibilities:
- Run a recurring tick using APScheduler
- Pick the devices that are due and admit them under a concurrency limit
- Track per-device poll status, failures and backoff
- Support manual polls and forgetting deleted devices
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config.settings import SchedulerSettings
from mikromon.errors import DeviceConnectionError, InputValidationError
from mikromon.monitoring.metrics import MonitorMetrics
from mikromon.utils.logging import get_logger

from .polling import PollOutcome, PollResult

logger = get_logger(__name__)

TICK_JOB_ID = "device_polling"

DeviceLister = Callable[[], Awaitable[Sequence[Any]]]
DevicePollFn = Callable[[Any], Awaitable[PollResult]]
ForgetHook = Callable[[int], Awaitable[Any]]
FailureHook = Callable[[int, str], Awaitable[Any]]

# Exponent limit for backoff, far above what any delay cap needs
MAX_BACKOFF_DOUBLINGS = 32


class PollState(str, Enum):
    """Where a device is in the polling cycle."""

    IDLE = "idle"
    QUEUED = "queued"
    POLLING = "polling"


@dataclass
class DevicePollStatus:
    """Scheduler's view of one device."""

    device_id: int
    name: str
    next_poll_at: datetime
    state: PollState = PollState.IDLE
    is_connected: bool = False
    last_polled_at: datetime | None = None
    last_success_at: datetime | None = None
    last_outcome: PollOutcome | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    generation: int = field(default=0, repr=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "device_id": self.device_id,
            "name": self.name,
            "state": self.state.value,
            "is_connected": self.is_connected,
            "last_polled_at": self.last_polled_at.isoformat() if self.last_polled_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
            "next_poll_at": self.next_poll_at.isoformat(),
        }


class PollingScheduler:
    """
    Periodic poller for all registered devices.

    Each tick lists devices, selects the due ones and starts one task per
    admitted device. At most ``max_concurrent_devices`` polls are in flight;
    the rest wait as QUEUED until a later tick.
    """

    def __init__(
        self,
        list_devices: DeviceLister,
        poll_device: DevicePollFn,
        settings: SchedulerSettings | None = None,
        metrics: MonitorMetrics | None = None,
        on_forget: ForgetHook | None = None,
        on_failure: FailureHook | None = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            list_devices: Async callable returning the current device rows
            poll_device: Async callable polling one device
            settings: Scheduler settings
            metrics: Optional Prometheus metrics
            on_forget: Called with the id of a device that left the registry
            on_failure: Called with a device id and error when a poll times
                out or fails unexpectedly
        """
        self._settings = settings or SchedulerSettings()
        self._list_devices = list_devices
        self._poll_device = poll_device
        self._metrics = metrics
        self._on_forget = on_forget
        self._on_failure = on_failure

        self._polling_interval_ms = self._settings.polling_interval_ms
        self._max_concurrent = self._settings.max_concurrent_devices

        self._scheduler: AsyncIOScheduler | None = None
        self._status: dict[int, DevicePollStatus] = {}
        self._in_flight: dict[int, asyncio.Task[None]] = {}
        self._slot_freed = asyncio.Event()

        # Stats
        self._cycles = 0
        self._polls_total = 0
        self._polls_failed = 0

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    async def initialize(self) -> None:
        """Start the recurring tick. Calling it again is a no-op."""
        if self._scheduler is not None:
            logger.warning("Polling scheduler already running")
            return

        scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 30},
        )
        scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
        scheduler.add_job(
            self._tick,
            IntervalTrigger(seconds=self._settings.tick_interval_seconds),
            id=TICK_JOB_ID,
            name="Poll due devices",
            next_run_time=datetime.now(UTC),
        )
        scheduler.start()
        self._scheduler = scheduler

        logger.info(
            "Polling scheduler started",
            polling_interval_ms=self._polling_interval_ms,
            max_concurrent_devices=self._max_concurrent,
            tick_seconds=self._settings.tick_interval_seconds,
        )

    async def shutdown(self) -> None:
        """Stop ticking and cancel in-flight polls."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        tasks = list(self._in_flight.values())
        self._in_flight.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._update_in_flight_gauge()
        logger.info("Polling scheduler stopped", cancelled_polls=len(tasks))

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        logger.error("Polling tick failed", job_id=event.job_id, error=str(event.exception))

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        logger.warning("Polling tick missed", job_id=event.job_id)

    async def _tick(self) -> None:
        await self.run_cycle()

    # ==========================================================================
    # Configuration
    # ==========================================================================

    @property
    def polling_interval_ms(self) -> int:
        return self._polling_interval_ms

    @property
    def max_concurrent_devices(self) -> int:
        return self._max_concurrent

    def set_polling_interval(self, interval_ms: int) -> None:
        """
        Change the per-device polling interval.

        Raises:
            InputValidationError: Below the configured floor. The previous
                value stays in effect.
        """
        floor = self._settings.min_polling_interval_ms
        if interval_ms < floor:
            raise InputValidationError(
                f"Polling interval must be at least {floor} ms",
                {"interval": interval_ms, "minimum": floor},
            )
        self._polling_interval_ms = interval_ms
        logger.info("Polling interval updated", polling_interval_ms=interval_ms)

    def set_max_concurrent_devices(self, count: int) -> None:
        """
        Change how many devices may be polled at once.

        Raises:
            InputValidationError: If count is below 1
        """
        if count < 1:
            raise InputValidationError(
                "Max concurrent devices must be at least 1", {"count": count}
            )
        self._max_concurrent = count
        logger.info("Max concurrent devices updated", max_concurrent_devices=count)

    # ==========================================================================
    # Cycle
    # ==========================================================================

    def _ensure_status(self, device: Any, now: datetime) -> DevicePollStatus:
        status = self._status.get(device.id)
        if status is None:
            status = DevicePollStatus(
                device_id=device.id,
                name=device.name,
                next_poll_at=now,
                is_connected=bool(getattr(device, "is_connected", False)),
            )
            self._status[device.id] = status
        else:
            status.name = device.name
        return status

    async def run_cycle(self, now: datetime | None = None) -> list[int]:
        """
        Run one scheduling tick.

        Returns:
            IDs of the devices whose poll was started
        """
        now = now or datetime.now(UTC)
        devices = await self._list_devices()
        self._cycles += 1

        known = {device.id: device for device in devices}
        for device_id in set(self._status) - set(known):
            self.forget_device(device_id)
            if self._on_forget is not None:
                await self._on_forget(device_id)

        due = [
            self._ensure_status(device, now)
            for device in devices
            if device.id not in self._in_flight
        ]
        due = [status for status in due if status.next_poll_at <= now]
        due.sort(key=lambda s: (s.next_poll_at, s.device_id))

        slots = max(0, self._max_concurrent - len(self._in_flight))
        admitted, waiting = due[:slots], due[slots:]

        for status in admitted:
            self._start_poll(known[status.device_id])
        for status in waiting:
            status.state = PollState.QUEUED

        if admitted or waiting:
            logger.debug(
                "Polling cycle",
                admitted=len(admitted),
                queued=len(waiting),
                in_flight=len(self._in_flight),
            )
        return [status.device_id for status in admitted]

    def _start_poll(self, device: Any) -> asyncio.Task[None]:
        status = self._status[device.id]
        status.state = PollState.POLLING
        status.generation += 1
        task = asyncio.create_task(
            self._run_poll(device, status.generation), name=f"poll-{device.id}"
        )
        self._in_flight[device.id] = task
        self._update_in_flight_gauge()
        return task

    async def _run_poll(self, device: Any, generation: int) -> None:
        started_at = datetime.now(UTC)
        started = time.monotonic()
        outcome = PollOutcome.FAILED
        error: str | None = None

        try:
            try:
                result = await asyncio.wait_for(
                    self._poll_device(device), timeout=self._settings.poll_timeout_seconds
                )
                outcome = result.outcome
                error = result.error_summary
            except TimeoutError:
                error = f"Poll timed out after {self._settings.poll_timeout_seconds}s"
                await self._report_failure(device.id, error)
            except DeviceConnectionError as e:
                # The poller has already marked the device unreachable
                error = e.message
            except Exception as e:
                logger.exception("Unexpected error while polling device", device_id=device.id)
                error = str(e) or type(e).__name__
                await self._report_failure(device.id, error)
        finally:
            if self._in_flight.get(device.id) is asyncio.current_task():
                del self._in_flight[device.id]
            self._update_in_flight_gauge()
            self._slot_freed.set()

        duration = time.monotonic() - started
        if self._metrics is not None:
            self._metrics.record_poll(outcome.value, duration)

        status = self._status.get(device.id)
        if status is None or status.generation != generation:
            # Device was forgotten while this poll ran
            return
        self._record_outcome(status, started_at, outcome, error)

    async def _report_failure(self, device_id: int, error: str) -> None:
        if self._on_failure is None:
            return
        try:
            await self._on_failure(device_id, error)
        except Exception:
            logger.exception("Failed to mark device unreachable", device_id=device_id)

    def _record_outcome(
        self,
        status: DevicePollStatus,
        started_at: datetime,
        outcome: PollOutcome,
        error: str | None,
    ) -> None:
        interval = timedelta(milliseconds=self._polling_interval_ms)
        status.state = PollState.IDLE
        status.last_polled_at = started_at
        status.last_outcome = outcome
        status.last_error = error
        self._polls_total += 1

        if outcome is PollOutcome.FAILED:
            self._polls_failed += 1
            status.consecutive_failures += 1
            status.is_connected = False
            status.next_poll_at = started_at + interval + self._backoff(status.consecutive_failures)
            logger.warning(
                "Device poll failed",
                device_id=status.device_id,
                error=error,
                consecutive_failures=status.consecutive_failures,
                next_poll_at=status.next_poll_at.isoformat(),
            )
        else:
            status.consecutive_failures = 0
            status.is_connected = True
            status.last_success_at = datetime.now(UTC)
            status.next_poll_at = started_at + interval

    def _backoff(self, failures: int) -> timedelta:
        """Extra delay after ``failures`` consecutive failures."""
        interval_seconds = self._polling_interval_ms / 1000
        doublings = min(failures - 1, MAX_BACKOFF_DOUBLINGS)
        extra = interval_seconds * (2**doublings - 1)
        return timedelta(seconds=min(extra, self._settings.backoff_max_seconds))

    # ==========================================================================
    # Manual control
    # ==========================================================================

    async def poll_now(self, device: Any) -> DevicePollStatus:
        """
        Poll a device immediately, outside the regular cycle.

        Waits for a free slot if the concurrency limit is reached. If a poll
        for the device is already running, waits for that one instead.
        """
        status = self._ensure_status(device, datetime.now(UTC))
        task = self._in_flight.get(device.id)
        while task is None:
            if len(self._in_flight) < self._max_concurrent:
                task = self._start_poll(device)
                break
            status.state = PollState.QUEUED
            self._slot_freed.clear()
            await self._slot_freed.wait()
            task = self._in_flight.get(device.id)

        await asyncio.wait({task})
        return self._status.get(device.id, status)

    def forget_device(self, device_id: int) -> None:
        """Drop a device's state and cancel its poll. A late result is discarded."""
        task = self._in_flight.pop(device_id, None)
        if task is not None:
            task.cancel()
            self._update_in_flight_gauge()
            self._slot_freed.set()
        if self._status.pop(device_id, None) is not None:
            logger.info("Device removed from polling", device_id=device_id)

    async def wait_for_idle(self) -> None:
        """Wait until no poll is in flight."""
        while self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)

    # ==========================================================================
    # Status
    # ==========================================================================

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def get_device_status(self, device_id: int) -> DevicePollStatus | None:
        return self._status.get(device_id)

    def get_device_polling_status(self) -> list[dict[str, Any]]:
        """Per-device polling status, ordered by device id."""
        return [self._status[device_id].to_dict() for device_id in sorted(self._status)]

    def get_stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "running": self.is_running,
            "polling_interval_ms": self._polling_interval_ms,
            "max_concurrent_devices": self._max_concurrent,
            "devices": len(self._status),
            "in_flight": len(self._in_flight),
            "cycles": self._cycles,
            "polls_total": self._polls_total,
            "polls_failed": self._polls_failed,
        }

    def _update_in_flight_gauge(self) -> None:
        if self._metrics is not None:
            self._metrics.set_polls_in_flight(len(self._in_flight))
