"""
Realtime delivery to WebSocket clients.
"""

from .hub import BroadcastHub
from .messages import (
    ALL_ALERTS,
    ALL_DEVICES,
    ALL_TRAFFIC,
    MessageType,
    ServerMessage,
    SubscriptionRequest,
    connection_established,
    device_alerts_topic,
    device_firewall_topic,
    device_status_message,
    device_status_topic,
    device_traffic_topic,
    firewall_rules_message,
)

__all__ = [
    "ALL_ALERTS",
    "ALL_DEVICES",
    "ALL_TRAFFIC",
    "BroadcastHub",
    "MessageType",
    "ServerMessage",
    "SubscriptionRequest",
    "connection_established",
    "device_alerts_topic",
    "device_firewall_topic",
    "device_status_message",
    "device_status_topic",
    "device_traffic_topic",
    "firewall_rules_message",
]
