"""
Wireless and CAPsMAN collectors.

Both only run for devices that advertise the capability.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from mikromon.connections.connection import DeviceConnection
from mikromon.connections.types import CapsmanAccessPointData, WirelessInterfaceData
from mikromon.storage.repositories import CapsmanRepository, WirelessRepository

from .base import BaseCollector


class WirelessCollector(BaseCollector[list[WirelessInterfaceData]]):
    """Reads /interface/wireless."""

    name = "wireless"

    def applies_to(self, device: Any) -> bool:
        return bool(device.has_wireless)

    async def collect(self, connection: DeviceConnection) -> list[WirelessInterfaceData]:
        return await connection.get_wireless_interfaces()

    async def persist(
        self, session: AsyncSession, device_id: int, data: list[WirelessInterfaceData]
    ) -> None:
        await WirelessRepository(session).upsert_many(device_id, data)


class CapsmanCollector(BaseCollector[list[CapsmanAccessPointData]]):
    """Reads managed access points and their registered clients."""

    name = "capsman"

    def applies_to(self, device: Any) -> bool:
        return bool(device.has_capsman)

    async def collect(self, connection: DeviceConnection) -> list[CapsmanAccessPointData]:
        return await connection.get_capsman_access_points()

    async def persist(
        self, session: AsyncSession, device_id: int, data: list[CapsmanAccessPointData]
    ) -> None:
        await CapsmanRepository(session).sync_access_points(device_id, data)
