"""
Topic-based broadcast hub for WebSocket clients.

Delivery is best-effort and at-most-once. A message reaches the clients that
are subscribed to its topic at the moment it is sent; there is no replay.
"""

import asyncio
from typing import Any

from pydantic import ValidationError
from starlette.websockets import WebSocket, WebSocketState

from mikromon.monitoring.metrics import MonitorMetrics
from mikromon.utils.logging import get_logger

from .messages import ServerMessage, SubscriptionRequest

logger = get_logger(__name__)


class BroadcastHub:
    """Registry of WebSocket clients and their topic subscriptions."""

    def __init__(self, metrics: MonitorMetrics | None = None) -> None:
        self._subscriptions: dict[WebSocket, set[str]] = {}
        self._lock = asyncio.Lock()
        self._metrics = metrics

    @property
    def client_count(self) -> int:
        return len(self._subscriptions)

    async def register(self, client: WebSocket) -> None:
        """Track an accepted client with no subscriptions."""
        async with self._lock:
            self._subscriptions.setdefault(client, set())
            count = len(self._subscriptions)
        self._update_client_gauge(count)
        logger.info("WebSocket client connected", clients=count)

    async def unregister(self, client: WebSocket) -> None:
        """Forget a client and every subscription it held."""
        async with self._lock:
            removed = self._subscriptions.pop(client, None)
            count = len(self._subscriptions)
        if removed is not None:
            self._update_client_gauge(count)
            logger.info("WebSocket client disconnected", clients=count)

    async def subscribe(self, client: WebSocket, topic: str) -> None:
        async with self._lock:
            self._subscriptions.setdefault(client, set()).add(topic)
        logger.debug("Client subscribed", topic=topic)

    async def unsubscribe(self, client: WebSocket, topic: str) -> None:
        async with self._lock:
            topics = self._subscriptions.get(client)
            if topics is not None:
                topics.discard(topic)
        logger.debug("Client unsubscribed", topic=topic)

    def topics_for(self, client: WebSocket) -> set[str]:
        return set(self._subscriptions.get(client, ()))

    def subscriber_count(self, topic: str) -> int:
        return sum(1 for topics in self._subscriptions.values() if topic in topics)

    async def handle_client_message(self, client: WebSocket, raw: str | bytes) -> bool:
        """
        Apply a subscription control message from a client.

        Returns:
            True if the message was understood. Anything else is ignored.
        """
        try:
            request = SubscriptionRequest.model_validate_json(raw)
        except ValidationError:
            logger.debug("Ignoring malformed client message")
            return False

        if request.action == "subscribe":
            await self.subscribe(client, request.topic)
        else:
            await self.unsubscribe(client, request.topic)
        return True

    async def broadcast_to_topic(self, topic: str, message: ServerMessage | dict[str, Any]) -> int:
        """
        Send a message to every client subscribed to a topic.

        Args:
            topic: Topic name
            message: Message envelope, serialized once for all recipients

        Returns:
            Number of clients the message was delivered to
        """
        async with self._lock:
            recipients = [
                client
                for client, topics in self._subscriptions.items()
                if topic in topics and client.client_state == WebSocketState.CONNECTED
            ]

        if not recipients:
            return 0

        if isinstance(message, ServerMessage):
            text = message.to_json()
            message_type = message.type.value
        else:
            text = ServerMessage.model_validate(message).to_json()
            message_type = str(message.get("type"))

        results = await asyncio.gather(
            *(self._safe_send(client, text) for client in recipients)
        )
        delivered = sum(results)

        if self._metrics is not None:
            self._metrics.record_broadcast(message_type)
        logger.debug("Broadcast sent", topic=topic, type=message_type, delivered=delivered)
        return delivered

    async def _safe_send(self, client: WebSocket, text: str) -> bool:
        try:
            await client.send_text(text)
            return True
        except Exception as e:
            logger.debug("Dropping client after failed send", error=str(e))
            await self.unregister(client)
            return False

    async def close_all(self) -> None:
        async with self._lock:
            clients = list(self._subscriptions)
            self._subscriptions.clear()
        for client in clients:
            if client.client_state == WebSocketState.CONNECTED:
                try:
                    await client.close()
                except RuntimeError:
                    logger.debug("Client already closed")
        self._update_client_gauge(0)

    def _update_client_gauge(self, count: int) -> None:
        if self._metrics is not None:
            self._metrics.set_websocket_clients(count)
