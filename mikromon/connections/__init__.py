"""
Router connections.

- Client: abstract router session plus a simulated implementation
- DeviceConnection: per-device handle with lifecycle events
- ConnectionManager: one live handle per device, shared event queue
"""

from .client import DeviceCredentials, RouterClient
from .connection import DeviceConnection
from .events import (
    Connected,
    ConnectionEvent,
    ConnectionFailed,
    ConnectionState,
    Disconnected,
    RulesUpdate,
)
from .manager import ClientFactory, ConnectionManager
from .simulated import SimulatedRouterClient
from .types import (
    ArpEntryData,
    CapsmanAccessPointData,
    CapsmanClientData,
    FirewallRuleData,
    InterfaceStats,
    SystemResources,
    TrafficSample,
    TrafficSnapshot,
    WirelessInterfaceData,
)

__all__ = [
    "ArpEntryData",
    "CapsmanAccessPointData",
    "CapsmanClientData",
    "ClientFactory",
    "Connected",
    "ConnectionEvent",
    "ConnectionFailed",
    "ConnectionManager",
    "ConnectionState",
    "DeviceConnection",
    "DeviceCredentials",
    "Disconnected",
    "FirewallRuleData",
    "InterfaceStats",
    "RouterClient",
    "RulesUpdate",
    "SimulatedRouterClient",
    "SystemResources",
    "TrafficSample",
    "TrafficSnapshot",
    "WirelessInterfaceData",
]
