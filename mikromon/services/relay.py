"""
Connection event relay.

Consumes the connection manager's event queue and turns each event into
storage updates and client broadcasts.
"""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mikromon.connections.events import (
    Connected,
    ConnectionEvent,
    ConnectionFailed,
    Disconnected,
    RulesUpdate,
)
from mikromon.realtime.hub import BroadcastHub
from mikromon.realtime.messages import device_firewall_topic, firewall_rules_message
from mikromon.storage.repositories import DevicesRepository, FirewallRulesRepository
from mikromon.utils.logging import get_logger

from .polling import publish_device_status

logger = get_logger(__name__)


class ConnectionEventRelay:
    """Background consumer for connection events."""

    def __init__(
        self,
        events: asyncio.Queue[ConnectionEvent],
        session_factory: async_sessionmaker[AsyncSession],
        hub: BroadcastHub,
    ) -> None:
        self._events = events
        self._session_factory = session_factory
        self._hub = hub
        self._task: asyncio.Task[None] | None = None
        self._handled = 0
        self._failed = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Connection event relay already running")
            return
        self._task = asyncio.create_task(self._run(), name="connection-event-relay")
        logger.info("Connection event relay started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Connection event relay stopped", handled=self._handled)

    async def _run(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self.handle(event)
            except Exception as e:
                self._failed += 1
                logger.error(
                    "Failed to handle connection event",
                    kind=event.kind,
                    device_id=event.device_id,
                    error=str(e),
                )
            finally:
                self._events.task_done()

    async def drain(self) -> int:
        """Handle every queued event now. Returns how many were handled."""
        count = 0
        while not self._events.empty():
            event = self._events.get_nowait()
            try:
                await self.handle(event)
            finally:
                self._events.task_done()
            count += 1
        return count

    async def handle(self, event: ConnectionEvent) -> None:
        """Apply one connection event."""
        self._handled += 1
        if isinstance(event, RulesUpdate):
            await self._handle_rules(event)
        elif isinstance(event, Connected):
            await publish_device_status(self._session_factory, self._hub, event.device_id, True)
        elif isinstance(event, Disconnected):
            await publish_device_status(self._session_factory, self._hub, event.device_id, False)
        elif isinstance(event, ConnectionFailed):
            await publish_device_status(
                self._session_factory, self._hub, event.device_id, False, error=event.error
            )

    async def _handle_rules(self, event: RulesUpdate) -> None:
        async with self._session_factory() as session:
            if await DevicesRepository(session).get_by_id(event.device_id) is None:
                logger.debug("Dropping rules update for unknown device", device_id=event.device_id)
                return
            await FirewallRulesRepository(session).sync(event.device_id, event.rules)
            await session.commit()

        await self._hub.broadcast_to_topic(
            device_firewall_topic(event.device_id),
            firewall_rules_message(event.device_id, [rule.to_dict() for rule in event.rules]),
        )

    def get_stats(self) -> dict[str, int | bool]:
        return {
            "running": self.is_running,
            "handled": self._handled,
            "failed": self._failed,
            "pending": self._events.qsize(),
        }
