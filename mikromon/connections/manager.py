"""
Connection manager.

Keeps at most one live ``DeviceConnection`` per device and owns the queue all
connection events are delivered to.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from config.settings import ConnectionSettings
from mikromon.errors import DeviceConnectionError
from mikromon.utils.logging import get_logger

from .client import DeviceCredentials, RouterClient
from .connection import DeviceConnection
from .events import ConnectionEvent
from .simulated import SimulatedRouterClient

logger = get_logger(__name__)

ClientFactory = Callable[[DeviceCredentials], RouterClient]


class ConnectionManager:
    """Registry of live device connections."""

    def __init__(
        self,
        settings: ConnectionSettings | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._settings = settings or ConnectionSettings()
        self._client_factory = client_factory or self._default_client_factory
        self._connections: dict[int, DeviceConnection] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}
        self.events: asyncio.Queue[ConnectionEvent] = asyncio.Queue()

    def _default_client_factory(self, credentials: DeviceCredentials) -> RouterClient:
        seed = self._settings.simulated_seed
        return SimulatedRouterClient(
            credentials,
            failure_rate=self._settings.simulated_failure_rate,
            seed=None if seed is None else seed + credentials.device_id,
        )

    @asynccontextmanager
    async def _device_lock(self, device_id: int) -> AsyncIterator[None]:
        """Serialize work on one device. The lock is dropped once nobody uses it."""
        lock = self._locks.get(device_id)
        if lock is None:
            lock = self._locks[device_id] = asyncio.Lock()
        self._lock_users[device_id] = self._lock_users.get(device_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[device_id] -= 1
            if self._lock_users[device_id] == 0:
                del self._lock_users[device_id]
                del self._locks[device_id]

    async def connect(self, device: Any) -> DeviceConnection:
        """
        Return the live handle for a device, opening one if needed.

        Args:
            device: Device row (or any object with the credential fields)

        Raises:
            DeviceConnectionError: If the session cannot be opened
        """
        device_id = device.id
        async with self._device_lock(device_id):
            existing = self._connections.get(device_id)
            if existing is not None and existing.is_connected:
                return existing

            if existing is None:
                client = self._client_factory(DeviceCredentials.from_device(device))
                existing = DeviceConnection(
                    client,
                    self.events,
                    emission_interval=self._settings.emission_interval_seconds,
                    connect_timeout=self._settings.connect_timeout_seconds,
                )

            if not await existing.connect():
                self._connections.pop(device_id, None)
                raise DeviceConnectionError(
                    existing.last_error or "Connection failed", device_id=device_id
                )

            self._connections[device_id] = existing
            return existing

    async def disconnect(self, device_id: int) -> bool:
        """Close and forget a device's handle. Returns False if there was none."""
        async with self._device_lock(device_id):
            connection = self._connections.pop(device_id, None)
            if connection is None:
                return False
            await connection.disconnect()
            return True

    def get(self, device_id: int) -> DeviceConnection | None:
        """Return the live handle for a device, if any."""
        connection = self._connections.get(device_id)
        if connection is not None and connection.is_connected:
            return connection
        return None

    def connected_device_ids(self) -> list[int]:
        return [device_id for device_id, c in self._connections.items() if c.is_connected]

    async def close_all(self) -> None:
        """Disconnect every device."""
        for device_id in list(self._connections):
            await self.disconnect(device_id)
        logger.info("All device connections closed")
