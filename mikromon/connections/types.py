"""
Data returned by router clients.

These are plain records in the shape RouterOS reports them; collectors map
them onto storage models.
"""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class SystemResources:
    """Output of /system/resource."""

    cpu_load: float
    memory_used: int
    memory_total: int
    uptime: str
    temperature: float | None = None
    board_name: str | None = None
    version: str | None = None


@dataclass
class InterfaceStats:
    """One row of /interface."""

    name: str
    type: str = "ether"
    mac_address: str | None = None
    running: bool = True
    disabled: bool = False
    rx_bytes: int = 0
    tx_bytes: int = 0


@dataclass
class FirewallRuleData:
    """One row of /ip/firewall/filter."""

    id: str
    chain: str
    action: str
    enabled: bool = True
    position: int = 0
    hits: int = 0
    bytes: int = 0
    src_address: str | None = None
    dst_address: str | None = None
    protocol: str | None = None
    src_port: str | None = None
    dst_port: str | None = None
    comment: str | None = None
    connection_state: str | None = None
    last_modified: datetime | None = None
    last_hit: datetime | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data = asdict(self)
        data["last_modified"] = self.last_modified.isoformat() if self.last_modified else None
        data["last_hit"] = self.last_hit.isoformat() if self.last_hit else None
        return data


@dataclass
class ArpEntryData:
    """One row of /ip/arp."""

    id: str
    address: str
    mac_address: str | None = None
    interface: str | None = None
    dynamic: bool = True
    disabled: bool = False
    complete: bool = True


@dataclass
class WirelessInterfaceData:
    """One row of /interface/wireless."""

    name: str
    ssid: str | None = None
    band: str | None = None
    frequency: int | None = None
    channel_width: str | None = None
    noise_floor: int | None = None
    tx_power: int | None = None
    client_count: int = 0
    running: bool = True


@dataclass
class CapsmanClientData:
    """One row of /caps-man/registration-table."""

    mac_address: str
    hostname: str | None = None
    ip_address: str | None = None
    signal_strength: int | None = None
    tx_rate: str | None = None
    rx_rate: str | None = None
    uptime: str | None = None


@dataclass
class CapsmanAccessPointData:
    """One row of /caps-man/remote-cap with its registered clients."""

    identity: str
    name: str | None = None
    mac_address: str | None = None
    ip_address: str | None = None
    model: str | None = None
    state: str | None = None
    radio_count: int = 1
    clients: list[CapsmanClientData] = field(default_factory=list)


@dataclass
class TrafficSample:
    """A single traffic flow observed on a device."""

    device_id: int
    source_ip: str
    destination_ip: str
    source_port: int
    destination_port: int
    protocol: str
    bytes: int
    packet_count: int
    flow_duration: float  # milliseconds
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class TrafficSnapshot:
    """Bandwidth counters plus the flows seen since the last snapshot."""

    download_bandwidth: float
    upload_bandwidth: float
    flows: list[TrafficSample] = field(default_factory=list)
    method: str = "interface"
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
