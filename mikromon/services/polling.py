"""
Device poll unit of work.

One poll = ensure a connection, run every applicable collector, then record
and broadcast the device's connection status.
"""

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mikromon.collectors.base import BaseCollector
from mikromon.connections.manager import ConnectionManager
from mikromon.errors import DeviceConnectionError
from mikromon.realtime.hub import BroadcastHub
from mikromon.realtime.messages import (
    ALL_DEVICES,
    device_status_message,
    device_status_topic,
)
from mikromon.storage.repositories import DevicesRepository
from mikromon.utils.logging import get_logger, log_context

logger = get_logger(__name__)


class PollOutcome(str, Enum):
    """Result of a single device poll."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class PollResult:
    """Summary of one poll."""

    device_id: int
    outcome: PollOutcome
    errors: dict[str, str] = field(default_factory=dict)
    collectors_run: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def error_summary(self) -> str | None:
        if not self.errors:
            return None
        return "; ".join(f"{name}: {error}" for name, error in self.errors.items())

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "outcome": self.outcome.value,
            "errors": self.errors,
            "collectors_run": self.collectors_run,
            "duration_seconds": self.duration_seconds,
        }


async def publish_device_status(
    session_factory: async_sessionmaker[AsyncSession],
    hub: BroadcastHub,
    device_id: int,
    is_connected: bool,
    error: str | None = None,
) -> bool:
    """
    Store a device's connection state and broadcast it.

    Returns:
        False if the device no longer exists (nothing is broadcast)
    """
    now = datetime.now(UTC)
    last_connected = now if is_connected else None
    async with session_factory() as session:
        found = await DevicesRepository(session).set_connection_status(
            device_id, is_connected, last_connected=last_connected
        )
        await session.commit()

    if not found:
        return False

    message = device_status_message(device_id, is_connected, last_connected, error)
    await hub.broadcast_to_topic(device_status_topic(device_id), message)
    await hub.broadcast_to_topic(ALL_DEVICES, message)
    return True


class DevicePoller:
    """Runs the collectors for one device at a time."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        connections: ConnectionManager,
        hub: BroadcastHub,
        collectors: list[BaseCollector[Any]],
    ) -> None:
        self._session_factory = session_factory
        self._connections = connections
        self._hub = hub
        self.collectors = collectors

    def get_collector(self, name: str) -> BaseCollector[Any] | None:
        for collector in self.collectors:
            if collector.name == name:
                return collector
        return None

    async def mark_unreachable(self, device_id: int, error: str) -> None:
        """Drop the device's session, then store and broadcast it as disconnected."""
        await self._connections.disconnect(device_id)
        await publish_device_status(self._session_factory, self._hub, device_id, False, error=error)

    async def poll(self, device: Any) -> PollResult:
        """
        Poll one device.

        A failing collector is recorded and the poll continues; the outcome is
        then PARTIAL.

        Raises:
            DeviceConnectionError: If the device cannot be reached or the
                session drops mid-poll. The device is marked disconnected first.
        """
        started = time.monotonic()
        result = PollResult(device_id=device.id, outcome=PollOutcome.SUCCESS)

        with log_context(device_id=device.id):
            try:
                connection = await self._connections.connect(device)
                for collector in self.collectors:
                    if not collector.applies_to(device):
                        continue
                    try:
                        await collector.run(device, connection)
                        result.collectors_run.append(collector.name)
                    except DeviceConnectionError:
                        raise
                    except OSError as e:
                        # Transport gave out after retries: the session is gone
                        raise DeviceConnectionError(
                            str(e) or type(e).__name__, device_id=device.id
                        ) from e
                    except Exception as e:
                        result.errors[collector.name] = str(e) or type(e).__name__
            except DeviceConnectionError as e:
                await self.mark_unreachable(device.id, e.message)
                logger.warning("Device poll failed", error=e.message)
                raise

            if result.errors:
                result.outcome = PollOutcome.PARTIAL
            await publish_device_status(self._session_factory, self._hub, device.id, True)

        result.duration_seconds = time.monotonic() - started
        logger.debug(
            "Device polled",
            device_id=device.id,
            outcome=result.outcome.value,
            collectors=result.collectors_run,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result
