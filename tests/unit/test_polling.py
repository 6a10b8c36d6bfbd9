"""
Unit tests for the device poller and the connection event relay.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from config.settings import ConnectionSettings, SchedulerSettings
from mikromon.collectors import FirewallCollector, MetricsCollector, WirelessCollector
from mikromon.connections import (
    Connected,
    ConnectionFailed,
    ConnectionManager,
    Disconnected,
    FirewallRuleData,
    RulesUpdate,
)
from mikromon.errors import DeviceConnectionError
from mikromon.realtime.messages import ALL_DEVICES, device_firewall_topic, device_status_topic
from mikromon.services import (
    ConnectionEventRelay,
    DevicePoller,
    PollingScheduler,
    PollOutcome,
    publish_device_status,
)
from mikromon.storage.models import Device, FirewallRule


def connection_manager(failure_rate: float = 0.0) -> ConnectionManager:
    return ConnectionManager(
        ConnectionSettings(
            emission_interval_seconds=60,
            simulated_failure_rate=failure_rate,
            simulated_seed=11,
        )
    )


async def subscribed_client(hub, websocket_factory, topic):
    client = websocket_factory()
    await hub.register(client)
    await hub.subscribe(client, topic)
    return client


def sent_messages(client) -> list[dict]:
    return [json.loads(call.args[0]) for call in client.send_text.await_args_list]


async def load_device(session_factory, device_id) -> Device:
    async with session_factory() as session:
        return await session.get(Device, device_id)


# =============================================================================
# Device Status Tests
# =============================================================================


class TestPublishDeviceStatus:
    @pytest.mark.asyncio
    async def test_updates_and_broadcasts(self, session_factory, hub, device, websocket_factory):
        device_client = await subscribed_client(
            hub, websocket_factory, device_status_topic(device.id)
        )
        all_client = await subscribed_client(hub, websocket_factory, ALL_DEVICES)

        assert await publish_device_status(session_factory, hub, device.id, True) is True

        stored = await load_device(session_factory, device.id)
        assert stored.is_connected is True
        assert stored.last_connected is not None
        for client in (device_client, all_client):
            (message,) = sent_messages(client)
            assert message["type"] == "DEVICE_STATUS_UPDATE"
            assert message["payload"]["is_connected"] is True

    @pytest.mark.asyncio
    async def test_unknown_device(self, session_factory, hub, websocket_factory):
        client = await subscribed_client(hub, websocket_factory, ALL_DEVICES)

        assert await publish_device_status(session_factory, hub, 999, False) is False
        client.send_text.assert_not_awaited()


# =============================================================================
# DevicePoller Tests
# =============================================================================


class TestDevicePoller:
    """Tests for DevicePoller.poll."""

    def make_poller(self, session_factory, hub, manager, collectors=None):
        collectors = collectors or [
            MetricsCollector(session_factory, hub),
            FirewallCollector(session_factory, hub),
            WirelessCollector(session_factory, hub),
        ]
        return DevicePoller(session_factory, manager, hub, collectors)

    @pytest.mark.asyncio
    async def test_successful_poll(self, session_factory, hub, device, websocket_factory):
        manager = connection_manager()
        client = await subscribed_client(hub, websocket_factory, ALL_DEVICES)
        poller = self.make_poller(session_factory, hub, manager)

        result = await poller.poll(device)

        assert result.outcome == PollOutcome.SUCCESS
        # Wireless does not apply to a device without radios
        assert result.collectors_run == ["metrics", "firewall"]
        assert (await load_device(session_factory, device.id)).is_connected is True
        assert sent_messages(client)[-1]["payload"]["is_connected"] is True
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_collector_failure_is_partial(self, session_factory, hub, device):
        manager = connection_manager()
        broken = FirewallCollector(session_factory, hub)
        broken.collect = AsyncMock(side_effect=ValueError("bad rule"))
        poller = self.make_poller(
            session_factory, hub, manager, [broken, MetricsCollector(session_factory, hub)]
        )

        result = await poller.poll(device)

        assert result.outcome == PollOutcome.PARTIAL
        assert result.errors == {"firewall": "bad rule"}
        assert result.collectors_run == ["metrics"]
        assert result.error_summary == "firewall: bad rule"
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_unreachable_device(self, session_factory, hub, device, websocket_factory):
        manager = connection_manager(failure_rate=1.0)
        client = await subscribed_client(hub, websocket_factory, device_status_topic(device.id))
        poller = self.make_poller(session_factory, hub, manager)

        with pytest.raises(DeviceConnectionError):
            await poller.poll(device)

        assert (await load_device(session_factory, device.id)).is_connected is False
        message = sent_messages(client)[-1]
        assert message["payload"]["is_connected"] is False
        assert "Connection refused" in message["payload"]["error"]

    @pytest.mark.asyncio
    async def test_session_lost_mid_poll(self, session_factory, hub, device, websocket_factory):
        manager = connection_manager()
        client = await subscribed_client(hub, websocket_factory, device_status_topic(device.id))
        collectors = [
            MetricsCollector(session_factory, hub, max_retries=1, retry_delay=0),
            FirewallCollector(session_factory, hub, max_retries=1, retry_delay=0),
        ]
        for collector in collectors:
            collector.collect = AsyncMock(side_effect=ConnectionResetError("reset by peer"))
        poller = self.make_poller(session_factory, hub, manager, collectors)

        with pytest.raises(DeviceConnectionError, match="reset by peer"):
            await poller.poll(device)

        assert (await load_device(session_factory, device.id)).is_connected is False
        assert manager.get(device.id) is None
        message = sent_messages(client)[-1]
        assert message["payload"]["is_connected"] is False
        assert message["payload"]["error"] == "reset by peer"
        # Only the first collector ran before the session was dropped
        collectors[1].collect.assert_not_awaited()

    def test_get_collector(self, session_factory, hub):
        poller = self.make_poller(session_factory, hub, connection_manager())

        assert poller.get_collector("firewall").name == "firewall"
        assert poller.get_collector("missing") is None


# =============================================================================
# ConnectionEventRelay Tests
# =============================================================================


class TestConnectionEventRelay:
    """Tests for ConnectionEventRelay."""

    @pytest.fixture
    def events(self):
        return asyncio.Queue()

    @pytest.fixture
    def relay(self, events, session_factory, hub):
        return ConnectionEventRelay(events, session_factory, hub)

    @pytest.mark.asyncio
    async def test_rules_update_synced_and_broadcast(
        self, relay, session_factory, hub, device, websocket_factory
    ):
        client = await subscribed_client(hub, websocket_factory, device_firewall_topic(device.id))
        rules = (
            FirewallRuleData(id="*1", chain="input", action="drop", position=1),
            FirewallRuleData(id="*2", chain="forward", action="accept", position=2),
        )

        await relay.handle(RulesUpdate(device_id=device.id, rules=rules))

        async with session_factory() as session:
            rows = (await session.execute(select(FirewallRule))).scalars().all()
        assert sorted(r.rule_id for r in rows) == ["*1", "*2"]
        (message,) = sent_messages(client)
        assert message["type"] == "FIREWALL_RULE_UPDATE"
        assert len(message["payload"]["rules"]) == 2

    @pytest.mark.asyncio
    async def test_rules_for_unknown_device_dropped(
        self, relay, session_factory, hub, websocket_factory
    ):
        client = await subscribed_client(hub, websocket_factory, device_firewall_topic(42))

        await relay.handle(RulesUpdate(device_id=42, rules=()))

        client.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status_events(self, relay, session_factory, hub, device, websocket_factory):
        client = await subscribed_client(hub, websocket_factory, ALL_DEVICES)

        await relay.handle(Connected(device_id=device.id))
        assert (await load_device(session_factory, device.id)).is_connected is True

        await relay.handle(ConnectionFailed(device_id=device.id, error="no route to host"))
        assert (await load_device(session_factory, device.id)).is_connected is False

        await relay.handle(Disconnected(device_id=device.id))

        payloads = [m["payload"] for m in sent_messages(client)]
        assert [p["is_connected"] for p in payloads] == [True, False, False]
        assert payloads[1]["error"] == "no route to host"
        assert "error" not in payloads[2]

    @pytest.mark.asyncio
    async def test_background_consumer(self, relay, events, session_factory, device):
        await relay.start()
        events.put_nowait(Connected(device_id=device.id))

        await asyncio.wait_for(events.join(), timeout=2)
        await relay.stop()

        assert (await load_device(session_factory, device.id)).is_connected is True
        stats = relay.get_stats()
        assert stats["handled"] == 1
        assert stats["running"] is False

    @pytest.mark.asyncio
    async def test_drain(self, relay, events, session_factory, device):
        events.put_nowait(Connected(device_id=device.id))
        events.put_nowait(Disconnected(device_id=device.id))

        assert await relay.drain() == 2
        assert (await load_device(session_factory, device.id)).is_connected is False


# =============================================================================
# Scheduler Integration Tests
# =============================================================================


class TestSchedulerCleanup:
    """Tests for the scheduler hooks wired to the poller and connection manager."""

    @pytest.mark.asyncio
    async def test_removed_device_connection_closed(self, session_factory, hub, device):
        manager = connection_manager()
        poller = DevicePoller(
            session_factory, manager, hub, [MetricsCollector(session_factory, hub)]
        )
        devices = [device]

        async def list_devices():
            return devices

        scheduler = PollingScheduler(
            list_devices, poller.poll, SchedulerSettings(), on_forget=manager.disconnect
        )
        await scheduler.run_cycle()
        await scheduler.wait_for_idle()
        assert manager.get(device.id) is not None

        devices.clear()
        await scheduler.run_cycle()

        assert scheduler.get_device_status(device.id) is None
        assert manager.get(device.id) is None

    @pytest.mark.asyncio
    async def test_poll_timeout_marks_device_unreachable(
        self, session_factory, hub, device, websocket_factory
    ):
        manager = connection_manager()
        poller = DevicePoller(
            session_factory, manager, hub, [MetricsCollector(session_factory, hub)]
        )
        await poller.poll(device)
        client = await subscribed_client(hub, websocket_factory, device_status_topic(device.id))

        async def list_devices():
            return [device]

        async def stuck_poll(_device):
            await asyncio.sleep(1)

        scheduler = PollingScheduler(
            list_devices,
            stuck_poll,
            SchedulerSettings(poll_timeout_seconds=0.05),
            on_failure=poller.mark_unreachable,
        )
        await scheduler.run_cycle()
        await scheduler.wait_for_idle()

        assert (await load_device(session_factory, device.id)).is_connected is False
        assert manager.get(device.id) is None
        message = sent_messages(client)[-1]
        assert message["payload"]["is_connected"] is False
        assert "timed out" in message["payload"]["error"]
