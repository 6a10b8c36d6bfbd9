"""
Router client abstraction.

A client speaks to one router. The protocol itself is not implemented here;
``SimulatedRouterClient`` stands in for it with generated data.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from .types import (
    ArpEntryData,
    CapsmanAccessPointData,
    FirewallRuleData,
    InterfaceStats,
    SystemResources,
    TrafficSnapshot,
    WirelessInterfaceData,
)


@dataclass(frozen=True)
class DeviceCredentials:
    """Everything a client needs to reach a device."""

    device_id: int
    address: str
    port: int
    username: str
    password: str
    has_wireless: bool = False
    has_capsman: bool = False

    @classmethod
    def from_device(cls, device: Any) -> "DeviceCredentials":
        """Build credentials from a Device row or any object with the same fields."""
        return cls(
            device_id=device.id,
            address=device.address,
            port=device.port or 8728,
            username=device.username,
            password=device.password or "",
            has_wireless=bool(getattr(device, "has_wireless", False)),
            has_capsman=bool(getattr(device, "has_capsman", False)),
        )


class RouterClient(ABC):
    """Abstract client for a single router session."""

    def __init__(self, credentials: DeviceCredentials) -> None:
        self.credentials = credentials

    @abstractmethod
    async def open(self) -> None:
        """Open the session. Raises on unreachable host or bad credentials."""

    @abstractmethod
    async def close(self) -> None:
        """Close the session."""

    @abstractmethod
    async def fetch_system_resources(self) -> SystemResources:
        ...

    @abstractmethod
    async def fetch_interfaces(self) -> list[InterfaceStats]:
        ...

    @abstractmethod
    async def fetch_firewall_rules(self) -> list[FirewallRuleData]:
        ...

    @abstractmethod
    async def fetch_wireless_interfaces(self) -> list[WirelessInterfaceData]:
        ...

    @abstractmethod
    async def fetch_capsman_access_points(self) -> list[CapsmanAccessPointData]:
        ...

    @abstractmethod
    async def fetch_traffic(self) -> TrafficSnapshot:
        ...

    @abstractmethod
    async def fetch_arp_entries(self) -> list[ArpEntryData]:
        ...
