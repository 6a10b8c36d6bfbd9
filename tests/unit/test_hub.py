"""
Unit tests for the broadcast hub and message schema.
"""

import json

import pytest
from prometheus_client import CollectorRegistry
from starlette.websockets import WebSocketState

from mikromon.monitoring.metrics import MonitorMetrics
from mikromon.realtime import (
    ALL_DEVICES,
    BroadcastHub,
    MessageType,
    ServerMessage,
    connection_established,
    device_status_message,
    device_status_topic,
)


def status_update(device_id: int = 1) -> ServerMessage:
    return device_status_message(device_id, True)


class TestMessages:
    def test_topic_names(self):
        assert device_status_topic(7) == "device_status_7"
        assert ALL_DEVICES == "all_devices"

    def test_envelope(self):
        data = json.loads(connection_established().to_json())

        assert data["type"] == "CONNECTION_ESTABLISHED"
        assert "timestamp" in data["payload"]

    def test_status_message_error_only_when_given(self):
        ok = device_status_message(1, True).payload
        failed = device_status_message(1, False, error="timeout").payload

        assert "error" not in ok
        assert failed["error"] == "timeout"
        assert failed["is_connected"] is False


class TestBroadcastHub:
    """Tests for BroadcastHub."""

    @pytest.mark.asyncio
    async def test_broadcast_without_subscribers(self, hub, websocket_factory):
        await hub.register(websocket_factory())

        assert await hub.broadcast_to_topic("all_devices", status_update()) == 0

    @pytest.mark.asyncio
    async def test_only_subscribers_receive(self, hub, websocket_factory):
        subscribed, other = websocket_factory(), websocket_factory()
        await hub.register(subscribed)
        await hub.register(other)
        await hub.subscribe(subscribed, ALL_DEVICES)

        delivered = await hub.broadcast_to_topic(ALL_DEVICES, status_update())

        assert delivered == 1
        subscribed.send_text.assert_awaited_once()
        other.send_text.assert_not_awaited()
        sent = json.loads(subscribed.send_text.await_args.args[0])
        assert sent["type"] == MessageType.DEVICE_STATUS_UPDATE.value
        assert sent["payload"]["device_id"] == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self, hub, websocket_factory):
        client = websocket_factory()
        await hub.register(client)
        await hub.subscribe(client, ALL_DEVICES)
        await hub.unsubscribe(client, ALL_DEVICES)

        assert await hub.broadcast_to_topic(ALL_DEVICES, status_update()) == 0
        assert hub.topics_for(client) == set()

    @pytest.mark.asyncio
    async def test_no_replay_for_late_subscribers(self, hub, websocket_factory):
        client = websocket_factory()
        await hub.register(client)
        await hub.broadcast_to_topic(ALL_DEVICES, status_update())

        await hub.subscribe(client, ALL_DEVICES)

        client.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_send_drops_client(self, hub, websocket_factory):
        broken, healthy = websocket_factory(), websocket_factory()
        broken.send_text.side_effect = RuntimeError("socket closed")
        for client in (broken, healthy):
            await hub.register(client)
            await hub.subscribe(client, ALL_DEVICES)

        delivered = await hub.broadcast_to_topic(ALL_DEVICES, status_update())

        assert delivered == 1
        assert hub.client_count == 1
        assert hub.topics_for(broken) == set()
        healthy.send_text.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_skips_clients_not_connected(self, hub, websocket_factory):
        closing = websocket_factory()
        closing.client_state = WebSocketState.DISCONNECTED
        await hub.register(closing)
        await hub.subscribe(closing, ALL_DEVICES)

        assert await hub.broadcast_to_topic(ALL_DEVICES, status_update()) == 0
        closing.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unregister_removes_subscriptions(self, hub, websocket_factory):
        client = websocket_factory()
        await hub.register(client)
        await hub.subscribe(client, ALL_DEVICES)

        await hub.unregister(client)

        assert hub.client_count == 0
        assert hub.subscriber_count(ALL_DEVICES) == 0

    @pytest.mark.asyncio
    async def test_handle_client_message(self, hub, websocket_factory):
        client = websocket_factory()
        await hub.register(client)

        assert await hub.handle_client_message(
            client, '{"action": "subscribe", "topic": "device_status_1"}'
        )
        assert hub.topics_for(client) == {"device_status_1"}

        assert await hub.handle_client_message(
            client, '{"action": "unsubscribe", "topic": "device_status_1"}'
        )
        assert hub.topics_for(client) == set()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            '{"action": "subscribe"}',
            '{"action": "shout", "topic": "all_devices"}',
            '{"action": "subscribe", "topic": ""}',
        ],
    )
    async def test_malformed_messages_ignored(self, hub, websocket_factory, raw):
        client = websocket_factory()
        await hub.register(client)

        assert await hub.handle_client_message(client, raw) is False
        assert hub.topics_for(client) == set()
        assert hub.client_count == 1

    @pytest.mark.asyncio
    async def test_dict_messages_are_validated(self, hub, websocket_factory):
        client = websocket_factory()
        await hub.register(client)
        await hub.subscribe(client, "all_traffic")

        await hub.broadcast_to_topic(
            "all_traffic", {"type": "traffic_update", "payload": {"device_id": 1}}
        )

        sent = json.loads(client.send_text.await_args.args[0])
        assert sent == {"type": "traffic_update", "payload": {"device_id": 1}}

    @pytest.mark.asyncio
    async def test_metrics(self, websocket_factory):
        metrics = MonitorMetrics(registry=CollectorRegistry(), prefix="test")
        hub = BroadcastHub(metrics=metrics)
        client = websocket_factory()
        await hub.register(client)
        await hub.subscribe(client, ALL_DEVICES)

        await hub.broadcast_to_topic(ALL_DEVICES, status_update())

        output = metrics.generate_metrics()
        assert b"test_websocket_clients 1.0" in output
        assert b'test_broadcasts_total{type="DEVICE_STATUS_UPDATE"} 1.0' in output

    @pytest.mark.asyncio
    async def test_close_all(self, hub, websocket_factory):
        client = websocket_factory()
        await hub.register(client)

        await hub.close_all()

        client.close.assert_awaited_once()
        assert hub.client_count == 0
