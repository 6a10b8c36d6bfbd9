"""
Application runtime container and FastAPI dependencies.

Every long-lived component is built once per application in the lifespan and
stored on ``app.state.runtime``; routes reach them through the dependencies
below.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from config.settings import AppSettings
from mikromon.collectors import (
    CapsmanCollector,
    FirewallCollector,
    MetricsCollector,
    TrafficCollector,
    WirelessCollector,
)
from mikromon.connections.manager import ClientFactory, ConnectionManager
from mikromon.ids.predictor import Predictor, SubprocessPredictor
from mikromon.ids.service import IDSService
from mikromon.monitoring.metrics import MonitorMetrics
from mikromon.realtime.hub import BroadcastHub
from mikromon.services.polling import DevicePoller
from mikromon.services.relay import ConnectionEventRelay
from mikromon.services.scheduler import PollingScheduler
from mikromon.storage.database import create_session_factory
from mikromon.storage.models import Device
from mikromon.storage.repositories import DevicesRepository
from mikromon.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Components shared by the routes, the scheduler and the WebSocket endpoint."""

    settings: AppSettings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    metrics: MonitorMetrics
    hub: BroadcastHub
    connections: ConnectionManager
    ids: IDSService
    poller: DevicePoller
    scheduler: PollingScheduler
    relay: ConnectionEventRelay

    async def start(self) -> None:
        await self.relay.start()
        if self.settings.scheduler.enabled:
            await self.scheduler.initialize()

    async def stop(self) -> None:
        await self.scheduler.shutdown()
        await self.connections.close_all()
        await self.relay.stop()
        await self.hub.close_all()

    def get_stats(self) -> dict[str, Any]:
        return {
            "scheduler": self.scheduler.get_stats(),
            "relay": self.relay.get_stats(),
            "ids": self.ids.get_stats(),
            "collectors": [c.get_stats() for c in self.poller.collectors],
            "connected_devices": self.connections.connected_device_ids(),
            "websocket_clients": self.hub.client_count,
        }


def build_predictor(settings: AppSettings) -> Predictor | None:
    if not settings.ids.enabled:
        return None
    return SubprocessPredictor(
        settings.ids.predictor_command, timeout=settings.ids.predictor_timeout_seconds
    )


def build_runtime(
    settings: AppSettings,
    engine: AsyncEngine,
    predictor: Predictor | None = None,
    client_factory: ClientFactory | None = None,
) -> Runtime:
    """Wire every component for one application instance."""
    session_factory = create_session_factory(engine)
    metrics = MonitorMetrics()
    hub = BroadcastHub(metrics=metrics)
    connections = ConnectionManager(settings.connection, client_factory=client_factory)
    ids = IDSService(
        session_factory,
        hub,
        predictor=predictor if predictor is not None else build_predictor(settings),
        metrics=metrics,
    )

    collectors = [
        MetricsCollector(session_factory, hub, metrics),
        FirewallCollector(session_factory, hub, metrics),
        WirelessCollector(session_factory, hub, metrics),
        CapsmanCollector(session_factory, hub, metrics),
        TrafficCollector(
            session_factory,
            hub,
            metrics,
            ids_service=ids,
            analyze_flows=settings.ids.analyze_collected_traffic,
        ),
    ]
    poller = DevicePoller(session_factory, connections, hub, collectors)

    async def list_devices() -> Sequence[Device]:
        async with session_factory() as session:
            return await DevicesRepository(session).list_all()

    scheduler = PollingScheduler(
        list_devices,
        poller.poll,
        settings.scheduler,
        metrics,
        on_forget=connections.disconnect,
        on_failure=poller.mark_unreachable,
    )
    relay = ConnectionEventRelay(connections.events, session_factory, hub)

    return Runtime(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        metrics=metrics,
        hub=hub,
        connections=connections,
        ids=ids,
        poller=poller,
        scheduler=scheduler,
        relay=relay,
    )


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_scheduler(request: Request) -> PollingScheduler:
    return request.app.state.runtime.scheduler


def get_ids_service(request: Request) -> IDSService:
    return request.app.state.runtime.ids
