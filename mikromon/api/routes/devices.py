"""
Device registry and per-device data API routes.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from mikromon.api.dependencies import Runtime, get_runtime
from mikromon.errors import DeviceNotFoundError
from mikromon.storage.database import get_db
from mikromon.storage.models import Device
from mikromon.storage.repositories import (
    CapsmanRepository,
    DeviceMetricsRepository,
    DevicesRepository,
    FirewallRulesRepository,
    InterfacesRepository,
    TrafficRepository,
    WirelessRepository,
)
from mikromon.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/devices", tags=["Devices"])


# ============================================================================
# Schemas
# ============================================================================


class DeviceCreate(BaseModel):
    """Request body for registering a device."""

    name: str = Field(min_length=1, max_length=255)
    address: str = Field(min_length=1, max_length=255)
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(default="", max_length=255)
    port: int = Field(default=8728, ge=1, le=65535)
    has_wireless: bool = False
    has_capsman: bool = False


class DeviceUpdate(BaseModel):
    """Request body for editing a device. Omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    address: str | None = Field(default=None, min_length=1, max_length=255)
    username: str | None = Field(default=None, min_length=1, max_length=255)
    password: str | None = Field(default=None, max_length=255)
    port: int | None = Field(default=None, ge=1, le=65535)
    has_wireless: bool | None = None
    has_capsman: bool | None = None


class DeviceResponse(BaseModel):
    """Device as returned by the API. The password is never echoed."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    address: str
    username: str
    port: int
    is_connected: bool
    last_connected: datetime | None
    uptime: str | None
    has_wireless: bool
    has_capsman: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MetricResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    timestamp: datetime
    cpu_load: float | None
    memory_used: int | None
    memory_total: int | None
    uptime: str | None
    temperature: float | None
    download_bandwidth: float | None
    upload_bandwidth: float | None


class InterfaceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: str
    mac_address: str | None
    running: bool
    disabled: bool
    rx_bytes: int
    tx_bytes: int
    last_updated: datetime


class FirewallRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    rule_id: str
    chain: str
    action: str
    enabled: bool
    src_address: str | None
    dst_address: str | None
    protocol: str | None
    src_port: str | None
    dst_port: str | None
    hits: int
    bytes: int
    comment: str | None
    position: int | None
    connection_state: str | None
    last_modified: datetime | None
    last_hit: datetime | None
    details: dict[str, Any]


class WirelessInterfaceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    ssid: str | None
    band: str | None
    frequency: int | None
    channel_width: str | None
    noise_floor: int | None
    tx_power: int | None
    client_count: int
    running: bool
    last_updated: datetime


class CapsmanAPResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    identity: str
    name: str | None
    mac_address: str | None
    ip_address: str | None
    model: str | None
    state: str | None
    radio_count: int
    client_count: int
    last_seen: datetime


class CapsmanClientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ap_id: int
    mac_address: str
    hostname: str | None
    ip_address: str | None
    signal_strength: int | None
    tx_rate: str | None
    rx_rate: str | None
    uptime: str | None
    last_seen: datetime


class TrafficFeatureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source_ip: str
    destination_ip: str
    source_port: int
    destination_port: int
    protocol: str
    bytes: int
    packet_count: int
    timestamp: datetime
    analyzed_at: datetime | None


class TrafficResponse(BaseModel):
    """Recent bandwidth samples and flows for a device."""

    device_id: int
    bandwidth: list[MetricResponse]
    flows: list[TrafficFeatureResponse]


class ProtocolShare(BaseModel):
    protocol: str
    count: int
    percentage: float


class SourceStats(BaseModel):
    source_ip: str
    flows: int
    bytes: int


class SyncResponse(BaseModel):
    device_id: int
    status: str
    count: int


class ArpEntryResponse(BaseModel):
    """One address resolved by the device."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    address: str
    mac_address: str | None
    interface: str | None
    dynamic: bool
    disabled: bool
    complete: bool


# ============================================================================
# Helpers
# ============================================================================


async def load_device(db: AsyncSession, device_id: int) -> Device:
    """Fetch a device or raise DeviceNotFoundError."""
    device = await DevicesRepository(db).get_by_id(device_id)
    if device is None:
        raise DeviceNotFoundError(device_id)
    return device


def _since(hours: int | None) -> datetime | None:
    return datetime.now(UTC) - timedelta(hours=hours) if hours else None


# ============================================================================
# Registry
# ============================================================================


@router.get("", response_model=list[DeviceResponse])
async def list_devices(db: AsyncSession = Depends(get_db)) -> list[DeviceResponse]:
    """List every registered device."""
    devices = await DevicesRepository(db).list_all()
    return [DeviceResponse.model_validate(d) for d in devices]


@router.post("", response_model=DeviceResponse, status_code=status.HTTP_201_CREATED)
async def create_device(
    body: DeviceCreate,
    db: AsyncSession = Depends(get_db),
) -> DeviceResponse:
    """Register a device. It is picked up by the next polling cycle."""
    device = await DevicesRepository(db).create(**body.model_dump())
    logger.info("Device registered", device_id=device.id, name=device.name)
    return DeviceResponse.model_validate(device)


@router.get("/{device_id}", response_model=DeviceResponse)
async def get_device(device_id: int, db: AsyncSession = Depends(get_db)) -> DeviceResponse:
    return DeviceResponse.model_validate(await load_device(db, device_id))


@router.put("/{device_id}", response_model=DeviceResponse)
async def update_device(
    device_id: int,
    body: DeviceUpdate,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
) -> DeviceResponse:
    """Edit a device. Changing how it is reached drops the current session."""
    await load_device(db, device_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    device = await DevicesRepository(db).update(device_id, **changes)

    if changes.keys() & {"address", "port", "username", "password", "has_wireless", "has_capsman"}:
        await runtime.connections.disconnect(device_id)

    return DeviceResponse.model_validate(device)


@router.delete("/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_device(
    device_id: int,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
) -> Response:
    """Remove a device, its session, its polling state and all stored data."""
    await load_device(db, device_id)
    runtime.scheduler.forget_device(device_id)
    await runtime.connections.disconnect(device_id)
    await DevicesRepository(db).delete(device_id)
    logger.info("Device deleted", device_id=device_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Stored data
# ============================================================================


@router.get("/{device_id}/metrics", response_model=list[MetricResponse])
async def get_device_metrics(
    device_id: int,
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
) -> list[MetricResponse]:
    """Most recent metric samples, newest first."""
    await load_device(db, device_id)
    rows = await DeviceMetricsRepository(db).get_recent(device_id, limit)
    return [MetricResponse.model_validate(r) for r in rows]


@router.get("/{device_id}/interfaces", response_model=list[InterfaceResponse])
async def get_device_interfaces(
    device_id: int, db: AsyncSession = Depends(get_db)
) -> list[InterfaceResponse]:
    await load_device(db, device_id)
    rows = await InterfacesRepository(db).list_for_device(device_id)
    return [InterfaceResponse.model_validate(r) for r in rows]


@router.get("/{device_id}/wireless", response_model=list[WirelessInterfaceResponse])
async def get_device_wireless(
    device_id: int, db: AsyncSession = Depends(get_db)
) -> list[WirelessInterfaceResponse]:
    await load_device(db, device_id)
    rows = await WirelessRepository(db).list_for_device(device_id)
    return [WirelessInterfaceResponse.model_validate(r) for r in rows]


@router.get("/{device_id}/capsman", response_model=list[CapsmanAPResponse])
async def get_device_capsman(
    device_id: int, db: AsyncSession = Depends(get_db)
) -> list[CapsmanAPResponse]:
    await load_device(db, device_id)
    rows = await CapsmanRepository(db).list_access_points(device_id)
    return [CapsmanAPResponse.model_validate(r) for r in rows]


@router.get("/{device_id}/clients", response_model=list[CapsmanClientResponse])
async def get_device_clients(
    device_id: int, db: AsyncSession = Depends(get_db)
) -> list[CapsmanClientResponse]:
    await load_device(db, device_id)
    rows = await CapsmanRepository(db).list_clients(device_id)
    return [CapsmanClientResponse.model_validate(r) for r in rows]


@router.get("/{device_id}/traffic", response_model=TrafficResponse)
async def get_device_traffic(
    device_id: int,
    hours: int = Query(default=1, ge=1, le=168),
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
) -> TrafficResponse:
    """Bandwidth history and recent flows."""
    await load_device(db, device_id)
    bandwidth = await DeviceMetricsRepository(db).get_bandwidth_history(
        device_id, _since(hours), limit
    )
    flows = await TrafficRepository(db).get_recent(device_id, limit)
    return TrafficResponse(
        device_id=device_id,
        bandwidth=[MetricResponse.model_validate(r) for r in bandwidth],
        flows=[TrafficFeatureResponse.model_validate(r) for r in flows],
    )


@router.get("/{device_id}/protocols", response_model=list[ProtocolShare])
async def get_device_protocols(
    device_id: int,
    hours: int | None = Query(default=None, ge=1, le=168),
    db: AsyncSession = Depends(get_db),
) -> list[ProtocolShare]:
    """Flow counts per protocol."""
    await load_device(db, device_id)
    rows = await TrafficRepository(db).protocol_distribution(device_id, _since(hours))
    return [ProtocolShare(**row) for row in rows]


@router.get("/{device_id}/sources", response_model=list[SourceStats])
async def get_device_sources(
    device_id: int,
    hours: int | None = Query(default=None, ge=1, le=168),
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> list[SourceStats]:
    """Top source addresses by bytes."""
    await load_device(db, device_id)
    rows = await TrafficRepository(db).top_sources(device_id, _since(hours), limit)
    return [SourceStats(**row) for row in rows]


@router.get("/{device_id}/firewall-rules", response_model=list[FirewallRuleResponse])
async def get_device_firewall_rules(
    device_id: int,
    chain: str | None = None,
    enabled: bool | None = None,
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> list[FirewallRuleResponse]:
    """Mirrored filter rules in router order."""
    await load_device(db, device_id)
    rows = await FirewallRulesRepository(db).list_for_device(device_id, chain, enabled, search)
    return [FirewallRuleResponse.model_validate(r) for r in rows]


# ============================================================================
# Actions
# ============================================================================


@router.get("/{device_id}/arp", response_model=list[ArpEntryResponse])
async def get_device_arp_table(
    device_id: int,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
) -> list[ArpEntryResponse]:
    """Read the ARP table live from the device. Nothing is stored."""
    device = await load_device(db, device_id)
    connection = await runtime.connections.connect(device)
    entries = await connection.get_arp_table()
    return [ArpEntryResponse.model_validate(entry) for entry in entries]


@router.post("/{device_id}/refresh")
async def refresh_device(
    device_id: int,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
) -> dict[str, Any]:
    """Poll a device now and return its polling status."""
    device = await load_device(db, device_id)
    poll_status = await runtime.scheduler.poll_now(device)
    return poll_status.to_dict()


@router.post("/{device_id}/sync-firewall-rules", response_model=SyncResponse)
async def sync_firewall_rules(
    device_id: int,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
) -> SyncResponse:
    """
    Pull filter rules from the device now.

    Raises DeviceConnectionError (502) when the device is unreachable.
    """
    device = await load_device(db, device_id)
    connection = await runtime.connections.connect(device)
    collector = runtime.poller.get_collector("firewall")
    rules = await collector.run(device, connection)
    return SyncResponse(device_id=device_id, status="synced", count=len(rules))


@router.post("/{device_id}/collect-traffic")
async def collect_traffic(
    device_id: int,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
) -> dict[str, Any]:
    """Take a traffic snapshot from the device now."""
    device = await load_device(db, device_id)
    connection = await runtime.connections.connect(device)
    collector = runtime.poller.get_collector("traffic")
    snapshot = await collector.run(device, connection)
    return {
        "device_id": device_id,
        "timestamp": snapshot.timestamp.isoformat(),
        "download_bandwidth": snapshot.download_bandwidth,
        "upload_bandwidth": snapshot.upload_bandwidth,
        "method": snapshot.method,
        "flow_count": len(snapshot.flows),
    }
