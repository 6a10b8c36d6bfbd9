"""
System resource and interface collector.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from mikromon.connections.connection import DeviceConnection
from mikromon.connections.types import InterfaceStats, SystemResources
from mikromon.storage.repositories import (
    DeviceMetricsRepository,
    DevicesRepository,
    InterfacesRepository,
)

from .base import BaseCollector


@dataclass
class ResourceSnapshot:
    resources: SystemResources
    interfaces: list[InterfaceStats]


class MetricsCollector(BaseCollector[ResourceSnapshot]):
    """Reads CPU, memory and uptime plus the interface table."""

    name = "metrics"

    async def collect(self, connection: DeviceConnection) -> ResourceSnapshot:
        resources = await connection.get_system_resources()
        interfaces = await connection.get_interfaces()
        return ResourceSnapshot(resources=resources, interfaces=interfaces)

    async def persist(self, session: AsyncSession, device_id: int, data: ResourceSnapshot) -> None:
        await DeviceMetricsRepository(session).insert(device_id, resources=data.resources)
        await InterfacesRepository(session).upsert_many(device_id, data.interfaces)
        await DevicesRepository(session).update(device_id, uptime=data.resources.uptime)
