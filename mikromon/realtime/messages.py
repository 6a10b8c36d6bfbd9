"""
WebSocket message schema and topic names.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    """Server to client message types."""

    CONNECTION_ESTABLISHED = "CONNECTION_ESTABLISHED"
    DEVICE_STATUS_UPDATE = "DEVICE_STATUS_UPDATE"
    FIREWALL_RULE_UPDATE = "FIREWALL_RULE_UPDATE"
    SECURITY_ALERT = "SECURITY_ALERT"
    TRAFFIC_UPDATE = "traffic_update"


class ServerMessage(BaseModel):
    """Envelope for every message pushed to clients."""

    type: MessageType
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        return self.model_dump_json()


class SubscriptionRequest(BaseModel):
    """Client to server subscription control message."""

    action: Literal["subscribe", "unsubscribe"]
    topic: str = Field(min_length=1, max_length=128)


ALL_DEVICES = "all_devices"
ALL_TRAFFIC = "all_traffic"
ALL_ALERTS = "all_alerts"


def device_status_topic(device_id: int) -> str:
    return f"device_status_{device_id}"


def device_firewall_topic(device_id: int) -> str:
    return f"device_firewall_{device_id}"


def device_traffic_topic(device_id: int) -> str:
    return f"device_traffic_{device_id}"


def device_alerts_topic(device_id: int) -> str:
    return f"device_alerts_{device_id}"


def connection_established() -> ServerMessage:
    return ServerMessage(
        type=MessageType.CONNECTION_ESTABLISHED,
        payload={"timestamp": datetime.now(UTC).isoformat()},
    )


def device_status_message(
    device_id: int,
    is_connected: bool,
    last_connected: datetime | None = None,
    error: str | None = None,
) -> ServerMessage:
    """Build a DEVICE_STATUS_UPDATE message."""
    payload: dict[str, Any] = {
        "device_id": device_id,
        "is_connected": is_connected,
        "last_connected": last_connected.isoformat() if last_connected else None,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    if error is not None:
        payload["error"] = error
    return ServerMessage(type=MessageType.DEVICE_STATUS_UPDATE, payload=payload)


def firewall_rules_message(device_id: int, rules: list[dict[str, Any]]) -> ServerMessage:
    return ServerMessage(
        type=MessageType.FIREWALL_RULE_UPDATE,
        payload={
            "device_id": device_id,
            "rules": rules,
            "timestamp": datetime.now(UTC).isoformat(),
        },
    )
