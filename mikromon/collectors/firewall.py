"""
Firewall rule collector.

Mirrors /ip/firewall/filter into storage and notifies subscribers of the
device's firewall topic.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from mikromon.connections.connection import DeviceConnection
from mikromon.connections.types import FirewallRuleData
from mikromon.realtime.messages import device_firewall_topic, firewall_rules_message
from mikromon.storage.repositories import FirewallRulesRepository
from mikromon.utils.logging import get_logger

from .base import BaseCollector

logger = get_logger(__name__)


class FirewallCollector(BaseCollector[list[FirewallRuleData]]):
    """Synchronises firewall filter rules."""

    name = "firewall"

    async def collect(self, connection: DeviceConnection) -> list[FirewallRuleData]:
        return await connection.get_firewall_rules()

    async def persist(
        self, session: AsyncSession, device_id: int, data: list[FirewallRuleData]
    ) -> None:
        counts = await FirewallRulesRepository(session).sync(device_id, data)
        logger.debug("Firewall rules synced", device_id=device_id, **counts)

    async def publish(self, device_id: int, data: list[FirewallRuleData]) -> None:
        await self._hub.broadcast_to_topic(
            device_firewall_topic(device_id),
            firewall_rules_message(device_id, [rule.to_dict() for rule in data]),
        )
