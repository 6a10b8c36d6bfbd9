"""
Per-device connection handle.

A ``DeviceConnection`` owns one router session. While connected it runs an
emission task that pushes ``RulesUpdate`` events onto the shared event queue.
"""

import asyncio
from typing import Any

from mikromon.errors import NotConnectedError
from mikromon.utils.logging import get_logger

from .client import RouterClient
from .events import (
    Connected,
    ConnectionEvent,
    ConnectionFailed,
    ConnectionState,
    Disconnected,
    RulesUpdate,
)
from .types import (
    ArpEntryData,
    CapsmanAccessPointData,
    FirewallRuleData,
    InterfaceStats,
    SystemResources,
    TrafficSnapshot,
    WirelessInterfaceData,
)

logger = get_logger(__name__)


class DeviceConnection:
    """Session handle for a single device."""

    def __init__(
        self,
        client: RouterClient,
        events: asyncio.Queue[ConnectionEvent],
        emission_interval: float = 5.0,
        connect_timeout: float = 10.0,
    ) -> None:
        self.client = client
        self.device_id = client.credentials.device_id
        self._events = events
        self._emission_interval = emission_interval
        self._connect_timeout = connect_timeout
        self._state = ConnectionState.DISCONNECTED
        self._emission_task: asyncio.Task[None] | None = None
        self.last_error: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    async def connect(self) -> bool:
        """
        Open the router session.

        Returns:
            True when the session is up. On failure the handle passes through
            ERROR back to DISCONNECTED and a ``ConnectionFailed`` event is queued.
        """
        if self.is_connected:
            return True

        self._state = ConnectionState.CONNECTING
        try:
            await asyncio.wait_for(self.client.open(), timeout=self._connect_timeout)
        except (OSError, TimeoutError) as e:
            error = str(e) or type(e).__name__
            self._state = ConnectionState.ERROR
            self.last_error = error
            logger.warning("Device connection failed", device_id=self.device_id, error=error)
            self._emit(ConnectionFailed(device_id=self.device_id, error=error))
            self._state = ConnectionState.DISCONNECTED
            return False

        self._state = ConnectionState.CONNECTED
        self.last_error = None
        self._emission_task = asyncio.create_task(
            self._emission_loop(), name=f"emission-{self.device_id}"
        )
        self._emit(Connected(device_id=self.device_id))
        logger.info("Device connected", device_id=self.device_id)
        return True

    async def disconnect(self) -> None:
        """Stop emission and close the session. No-op when already disconnected."""
        if self._state == ConnectionState.DISCONNECTED:
            return

        await self._stop_emission()
        try:
            await self.client.close()
        except OSError as e:
            logger.warning("Error closing device session", device_id=self.device_id, error=str(e))

        self._state = ConnectionState.DISCONNECTED
        self._emit(Disconnected(device_id=self.device_id))
        logger.info("Device disconnected", device_id=self.device_id)

    async def _stop_emission(self) -> None:
        task, self._emission_task = self._emission_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _emission_loop(self) -> None:
        while self.is_connected:
            await asyncio.sleep(self._emission_interval)
            if not self.is_connected:
                break
            try:
                await self.emit_rules_update()
            except OSError as e:
                # Session dropped underneath us
                self._state = ConnectionState.ERROR
                self.last_error = str(e)
                logger.warning("Rule emission failed", device_id=self.device_id, error=str(e))
                self._emit(ConnectionFailed(device_id=self.device_id, error=str(e)))
                self._state = ConnectionState.DISCONNECTED
                self._emission_task = None
                try:
                    await self.client.close()
                except OSError:
                    logger.debug("Close after emission failure raised", device_id=self.device_id)
                break

    async def emit_rules_update(self) -> RulesUpdate:
        """Fetch the current filter rules and queue a ``RulesUpdate``."""
        rules = await self.get_firewall_rules()
        event = RulesUpdate(device_id=self.device_id, rules=tuple(rules))
        self._emit(event)
        return event

    def _emit(self, event: ConnectionEvent) -> None:
        self._events.put_nowait(event)

    def _require_connected(self) -> None:
        if not self.is_connected:
            raise NotConnectedError(
                f"Device {self.device_id} is not connected", device_id=self.device_id
            )

    async def get_system_resources(self) -> SystemResources:
        self._require_connected()
        return await self.client.fetch_system_resources()

    async def get_interfaces(self) -> list[InterfaceStats]:
        self._require_connected()
        return await self.client.fetch_interfaces()

    async def get_firewall_rules(self) -> list[FirewallRuleData]:
        self._require_connected()
        return await self.client.fetch_firewall_rules()

    async def get_wireless_interfaces(self) -> list[WirelessInterfaceData]:
        self._require_connected()
        return await self.client.fetch_wireless_interfaces()

    async def get_capsman_access_points(self) -> list[CapsmanAccessPointData]:
        self._require_connected()
        return await self.client.fetch_capsman_access_points()

    async def get_traffic_snapshot(self) -> TrafficSnapshot:
        self._require_connected()
        return await self.client.fetch_traffic()

    async def get_arp_table(self) -> list[ArpEntryData]:
        self._require_connected()
        return await self.client.fetch_arp_entries()

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "state": self._state.value,
            "last_error": self.last_error,
        }
