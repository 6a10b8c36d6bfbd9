"""
Traffic collector.

Stores a bandwidth sample and the observed flows, broadcasts a traffic update
and optionally hands each flow to the IDS.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mikromon.connections.connection import DeviceConnection
from mikromon.connections.types import TrafficSnapshot
from mikromon.ids.features import extract_features
from mikromon.ids.service import IDSService
from mikromon.monitoring.metrics import MonitorMetrics
from mikromon.realtime.hub import BroadcastHub
from mikromon.realtime.messages import (
    ALL_TRAFFIC,
    MessageType,
    ServerMessage,
    device_traffic_topic,
)
from mikromon.storage.repositories import DeviceMetricsRepository, TrafficRepository
from mikromon.utils.logging import get_logger

from .base import BaseCollector

logger = get_logger(__name__)


class TrafficCollector(BaseCollector[TrafficSnapshot]):
    """Collects bandwidth and flow samples."""

    name = "traffic"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hub: BroadcastHub,
        metrics: MonitorMetrics | None = None,
        ids_service: IDSService | None = None,
        analyze_flows: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(session_factory, hub, metrics, **kwargs)
        self._ids = ids_service
        self._analyze_flows = analyze_flows and ids_service is not None

    async def collect(self, connection: DeviceConnection) -> TrafficSnapshot:
        return await connection.get_traffic_snapshot()

    async def persist(self, session: AsyncSession, device_id: int, data: TrafficSnapshot) -> None:
        await DeviceMetricsRepository(session).insert(
            device_id,
            download_bandwidth=data.download_bandwidth,
            upload_bandwidth=data.upload_bandwidth,
            timestamp=data.timestamp,
        )
        if self._analyze_flows:
            # IDSService stores the flows it analyses
            return
        traffic = TrafficRepository(session)
        for flow in data.flows:
            await traffic.insert(flow, extract_features(flow))

    async def publish(self, device_id: int, data: TrafficSnapshot) -> None:
        message = ServerMessage(
            type=MessageType.TRAFFIC_UPDATE,
            payload={
                "device_id": device_id,
                "timestamp": data.timestamp.isoformat(),
                "download_bandwidth": data.download_bandwidth,
                "upload_bandwidth": data.upload_bandwidth,
                "method": data.method,
                "flow_count": len(data.flows),
            },
        )
        await self._hub.broadcast_to_topic(device_traffic_topic(device_id), message)
        await self._hub.broadcast_to_topic(ALL_TRAFFIC, message)

    async def run(self, device: Any, connection: DeviceConnection) -> TrafficSnapshot:
        data = await super().run(device, connection)
        if self._analyze_flows and self._ids is not None:
            anomalies = 0
            for flow in data.flows:
                result = await self._ids.analyze_traffic(flow)
                if result is not None and result.is_anomaly:
                    anomalies += 1
            if data.flows:
                logger.debug(
                    "Collected flows analysed",
                    device_id=device.id,
                    flows=len(data.flows),
                    anomalies=anomalies,
                )
        return data
