"""
Connection lifecycle states and the events a connection emits.

Events are consumed from a queue rather than through callback registration.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .types import FirewallRuleData


class ConnectionState(str, Enum):
    """State of a device session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Connected:
    device_id: int
    timestamp: datetime = field(default_factory=_now)
    kind: str = "connected"


@dataclass(frozen=True)
class Disconnected:
    device_id: int
    timestamp: datetime = field(default_factory=_now)
    kind: str = "disconnected"


@dataclass(frozen=True)
class ConnectionFailed:
    device_id: int
    error: str
    timestamp: datetime = field(default_factory=_now)
    kind: str = "error"


@dataclass(frozen=True)
class RulesUpdate:
    device_id: int
    rules: tuple[FirewallRuleData, ...]
    timestamp: datetime = field(default_factory=_now)
    kind: str = "rulesUpdate"


ConnectionEvent = Connected | Disconnected | ConnectionFailed | RulesUpdate
