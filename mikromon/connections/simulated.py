"""
Simulated router client.

Generates RouterOS-shaped data so the pipeline can run without hardware.
"""

import asyncio
import random
from datetime import UTC, datetime, timedelta

from .client import DeviceCredentials, RouterClient
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

CHAINS = ["input", "forward", "output"]
ACTIONS = ["accept", "drop", "reject", "fasttrack", "tarpit"]
PROTOCOLS = ["tcp", "udp", "icmp", "any"]
COMMON_PORTS = ["80", "443", "22", "25", "53", "3389", "21", "8080"]
RULE_COMMENTS = [
    "Block external access",
    "Allow LAN traffic",
    "Reject SSH access",
    "Allow ICMP",
    "Allow DNS traffic",
    "Block malicious IPs",
    "Permit HTTP/HTTPS",
    "Allow VPN connections",
    "Temporary rule",
    "Custom filtering",
]


class SimulatedRouterClient(RouterClient):
    """Router client that fabricates plausible data."""

    def __init__(
        self,
        credentials: DeviceCredentials,
        failure_rate: float = 0.0,
        seed: int | None = None,
        latency: float = 0.0,
    ) -> None:
        super().__init__(credentials)
        self.failure_rate = failure_rate
        self.latency = latency
        self._rng = random.Random(seed)
        self._open = False
        self._boot_time = datetime.now(UTC) - timedelta(seconds=self._rng.randint(3600, 3_000_000))
        self._rx_counters: dict[str, int] = {}
        self._tx_counters: dict[str, int] = {}

    async def _simulate_io(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)

    async def open(self) -> None:
        await self._simulate_io()
        if self._rng.random() < self.failure_rate:
            raise OSError(
                f"Connection refused by {self.credentials.address}:{self.credentials.port}"
            )
        self._open = True

    async def close(self) -> None:
        self._open = False

    def _uptime(self) -> str:
        delta = datetime.now(UTC) - self._boot_time
        days, rem = divmod(int(delta.total_seconds()), 86400)
        hours, rem = divmod(rem, 3600)
        minutes, seconds = divmod(rem, 60)
        return f"{days}d{hours:02d}:{minutes:02d}:{seconds:02d}"

    async def fetch_system_resources(self) -> SystemResources:
        await self._simulate_io()
        memory_total = 256 * 1024 * 1024
        return SystemResources(
            cpu_load=float(self._rng.randint(1, 95)),
            memory_used=self._rng.randint(memory_total // 5, memory_total - 1024),
            memory_total=memory_total,
            uptime=self._uptime(),
            temperature=round(self._rng.uniform(35.0, 70.0), 1),
            board_name="RB4011iGS+",
            version="7.12",
        )

    async def fetch_interfaces(self) -> list[InterfaceStats]:
        await self._simulate_io()
        interfaces = []
        for i in range(1, 6):
            name = f"ether{i}"
            self._rx_counters[name] = self._rx_counters.get(name, 0) + self._rng.randint(0, 10**7)
            self._tx_counters[name] = self._tx_counters.get(name, 0) + self._rng.randint(0, 10**7)
            interfaces.append(
                InterfaceStats(
                    name=name,
                    type="ether",
                    mac_address=f"4C:5E:0C:00:00:{i:02X}",
                    running=i == 1 or self._rng.random() > 0.3,
                    disabled=False,
                    rx_bytes=self._rx_counters[name],
                    tx_bytes=self._tx_counters[name],
                )
            )
        return interfaces

    async def fetch_firewall_rules(self) -> list[FirewallRuleData]:
        await self._simulate_io()
        return self.generate_firewall_rules()

    def generate_firewall_rules(self) -> list[FirewallRuleData]:
        """Generate 20-29 filter rules."""
        rng = self._rng
        now = datetime.now(UTC)
        rules = []
        for i in range(20 + rng.randint(0, 9)):
            enabled = rng.random() > 0.2
            hits = rng.randint(0, 50000) if enabled else 0
            protocol = rng.choice(PROTOCOLS)
            rules.append(
                FirewallRuleData(
                    id=f"*{i + 1}",
                    chain=rng.choice(CHAINS),
                    action=rng.choice(ACTIONS),
                    enabled=enabled,
                    position=i + 1,
                    hits=hits,
                    bytes=hits * (100 + rng.randint(0, 899)),
                    src_address=f"192.168.{rng.randint(0, 254)}.0/24"
                    if rng.random() > 0.2
                    else "0.0.0.0/0",
                    dst_address=f"10.0.{rng.randint(0, 254)}.0/24"
                    if rng.random() > 0.2
                    else "0.0.0.0/0",
                    protocol=protocol,
                    dst_port=self._random_ports() if protocol in ("tcp", "udp") else None,
                    comment=rng.choice(RULE_COMMENTS) if rng.random() > 0.3 else None,
                    last_modified=now,
                    last_hit=now - timedelta(milliseconds=rng.randint(0, 86_400_000))
                    if hits
                    else None,
                )
            )
        return rules

    def _random_ports(self) -> str:
        if self._rng.random() > 0.6:
            count = 1 + self._rng.randint(0, 2)
            ports = dict.fromkeys(self._rng.choice(COMMON_PORTS) for _ in range(count))
            return ",".join(ports)
        return self._rng.choice(COMMON_PORTS)

    async def fetch_wireless_interfaces(self) -> list[WirelessInterfaceData]:
        await self._simulate_io()
        if not self.credentials.has_wireless:
            return []
        return [
            WirelessInterfaceData(
                name="wlan1",
                ssid="MikroTik-2G",
                band="2ghz-b/g/n",
                frequency=self._rng.choice([2412, 2437, 2462]),
                channel_width="20/40mhz-XX",
                noise_floor=self._rng.randint(-110, -95),
                tx_power=self._rng.randint(17, 23),
                client_count=self._rng.randint(0, 25),
            ),
            WirelessInterfaceData(
                name="wlan2",
                ssid="MikroTik-5G",
                band="5ghz-a/n/ac",
                frequency=self._rng.choice([5180, 5220, 5745]),
                channel_width="20/40/80mhz-XXXX",
                noise_floor=self._rng.randint(-110, -95),
                tx_power=self._rng.randint(17, 23),
                client_count=self._rng.randint(0, 25),
            ),
        ]

    async def fetch_capsman_access_points(self) -> list[CapsmanAccessPointData]:
        await self._simulate_io()
        if not self.credentials.has_capsman:
            return []
        aps = []
        for i in range(1, 1 + self._rng.randint(1, 4)):
            clients = [
                CapsmanClientData(
                    mac_address=f"AC:DE:48:{i:02X}:{c:02X}:{self._rng.randint(0, 255):02X}",
                    hostname=f"client-{i}-{c}",
                    ip_address=f"192.168.88.{100 + i * 10 + c}",
                    signal_strength=self._rng.randint(-85, -40),
                    tx_rate=f"{self._rng.choice([54, 130, 300, 866])}Mbps",
                    rx_rate=f"{self._rng.choice([54, 130, 300, 866])}Mbps",
                    uptime=f"{self._rng.randint(0, 23)}h{self._rng.randint(0, 59)}m",
                )
                for c in range(self._rng.randint(0, 6))
            ]
            aps.append(
                CapsmanAccessPointData(
                    identity=f"cap-{i}",
                    name=f"AP-{i}",
                    mac_address=f"4C:5E:0C:10:00:{i:02X}",
                    ip_address=f"192.168.88.{10 + i}",
                    model="cAP ac",
                    state="Run",
                    radio_count=2,
                    clients=clients,
                )
            )
        return aps

    async def fetch_traffic(self) -> TrafficSnapshot:
        await self._simulate_io()
        device_id = self.credentials.device_id
        flows = [
            TrafficSample(
                device_id=device_id,
                source_ip=f"192.168.88.{self._rng.randint(2, 254)}",
                destination_ip=f"{self._rng.randint(1, 223)}.{self._rng.randint(0, 255)}."
                f"{self._rng.randint(0, 255)}.{self._rng.randint(1, 254)}",
                source_port=self._rng.randint(1024, 65535),
                destination_port=int(self._rng.choice(COMMON_PORTS)),
                protocol=self._rng.choice(["tcp", "udp"]),
                bytes=self._rng.randint(500, 5_000_000),
                packet_count=self._rng.randint(2, 4000),
                flow_duration=float(self._rng.randint(10, 120_000)),
            )
            for _ in range(self._rng.randint(0, 5))
        ]
        return TrafficSnapshot(
            download_bandwidth=round(self._rng.uniform(0.5, 950.0), 2),
            upload_bandwidth=round(self._rng.uniform(0.1, 300.0), 2),
            flows=flows,
            method="interface",
        )

    async def fetch_arp_entries(self) -> list[ArpEntryData]:
        await self._simulate_io()
        hosts = self._rng.sample(range(2, 255), self._rng.randint(3, 10))
        entries = []
        for i, host in enumerate(sorted(hosts), start=1):
            complete = self._rng.random() > 0.1
            entries.append(
                ArpEntryData(
                    id=f"*{i:X}",
                    address=f"192.168.88.{host}",
                    mac_address=(
                        ":".join(f"{self._rng.randint(0, 255):02X}" for _ in range(6))
                        if complete
                        else None
                    ),
                    interface=self._rng.choice(["bridge", "ether2", "ether3", "wlan1"]),
                    dynamic=self._rng.random() > 0.2,
                    disabled=False,
                    complete=complete,
                )
            )
        return entries
