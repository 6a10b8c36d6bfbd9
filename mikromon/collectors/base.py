"""
Base collector abstract class.

All collectors inherit from this and implement collect() and persist().
The base class handles retries, the collect/persist/publish sequence and
per-collector statistics.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mikromon.connections.connection import DeviceConnection
from mikromon.monitoring.metrics import MonitorMetrics
from mikromon.realtime.hub import BroadcastHub
from mikromon.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class BaseCollector(ABC, Generic[T]):
    """
    Abstract base class for device collectors.

    Provides:
    - Retry on transport errors
    - collect -> persist -> publish sequence for one device
    - Collection statistics

    Subclasses must implement:
    - collect(connection): Read from the device
    - persist(session, device_id, data): Write what was read
    """

    name: str = "base"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hub: BroadcastHub,
        metrics: MonitorMetrics | None = None,
        max_retries: int = 2,
        retry_delay: float = 0.5,
    ) -> None:
        """
        Initialize the collector.

        Args:
            session_factory: Factory for database sessions
            hub: Broadcast hub for realtime updates
            metrics: Optional Prometheus metrics
            max_retries: Attempts per collection on transport errors
            retry_delay: Seconds to wait between attempts
        """
        self._session_factory = session_factory
        self._hub = hub
        self._metrics = metrics
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

        # Stats
        self._collections_total = 0
        self._collections_failed = 0
        self._last_collection_time: datetime | None = None
        self._last_error: str | None = None

    def applies_to(self, device: Any) -> bool:
        """Whether this collector should run for a device."""
        return True

    @abstractmethod
    async def collect(self, connection: DeviceConnection) -> T:
        """
        Read data from a connected device.

        Raises:
            NotConnectedError: If the connection dropped
            OSError: On transport failure
        """

    @abstractmethod
    async def persist(self, session: AsyncSession, device_id: int, data: T) -> None:
        """Write collected data. The caller commits."""

    async def publish(self, device_id: int, data: T) -> None:
        """Push collected data to subscribed clients. Default: nothing."""

    async def _collect_with_retry(self, connection: DeviceConnection) -> T:
        """Run collect() with retry logic."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.collect(connection)
            except (OSError, TimeoutError) as e:
                logger.warning(
                    "Collection attempt failed",
                    collector=self.name,
                    device_id=connection.device_id,
                    attempt=attempt,
                    max_retries=self.max_retries,
                    error=str(e),
                )
                if attempt >= self.max_retries:
                    raise
                await asyncio.sleep(self.retry_delay)

    async def run(self, device: Any, connection: DeviceConnection) -> T:
        """
        Collect from one device, store the result and publish it.

        Raises:
            Whatever collect() or persist() raised, after recording the failure
        """
        device_id = device.id
        try:
            data = await self._collect_with_retry(connection)
            async with self._session_factory() as session:
                await self.persist(session, device_id, data)
                await session.commit()
        except Exception as e:
            self._collections_failed += 1
            self._last_error = str(e)
            if self._metrics is not None:
                self._metrics.record_collector_run(self.name, success=False)
            logger.error(
                "Collection failed",
                collector=self.name,
                device_id=device_id,
                error=str(e),
            )
            raise

        self._collections_total += 1
        self._last_collection_time = datetime.now(UTC)
        self._last_error = None
        if self._metrics is not None:
            self._metrics.record_collector_run(self.name, success=True)

        await self.publish(device_id, data)
        return data

    def get_stats(self) -> dict[str, Any]:
        """Get collector statistics."""
        return {
            "name": self.name,
            "collections_total": self._collections_total,
            "collections_failed": self._collections_failed,
            "last_collection_time": (
                self._last_collection_time.isoformat() if self._last_collection_time else None
            ),
            "last_error": self._last_error,
        }
