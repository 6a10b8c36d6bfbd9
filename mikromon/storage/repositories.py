"""
Async repository layer for database operations.

Provides clean abstraction over SQLAlchemy for CRUD operations. Router state
tables are upserted with a select-then-write so the same code runs on
PostgreSQL and SQLite.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mikromon.connections.types import (
    CapsmanAccessPointData,
    FirewallRuleData,
    InterfaceStats,
    SystemResources,
    TrafficSample,
    WirelessInterfaceData,
)

from .models import (
    Alert,
    AlertSeverity,
    CapsmanAP,
    CapsmanClient,
    Device,
    DeviceMetric,
    FirewallRule,
    IDSDetectionHistory,
    Interface,
    NetworkTrafficFeature,
    WirelessInterface,
)

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Base repository with common CRUD operations."""

    model: type[T]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, id: int) -> T | None:
        """Get a single record by ID."""
        result = await self.session.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def create(self, **kwargs: Any) -> T:
        """Create a new record."""
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def update(self, id: int, **kwargs: Any) -> T | None:
        """Update a record by ID."""
        instance = await self.get_by_id(id)
        if instance:
            for key, value in kwargs.items():
                setattr(instance, key, value)
            await self.session.flush()
        return instance

    async def delete(self, id: int) -> bool:
        """Delete a record by ID."""
        result = await self.session.execute(delete(self.model).where(self.model.id == id))
        return result.rowcount > 0


class DevicesRepository(BaseRepository[Device]):
    """Repository for the device registry."""

    model = Device

    async def list_all(self) -> Sequence[Device]:
        result = await self.session.execute(select(Device).order_by(Device.id))
        return result.scalars().all()

    async def delete(self, id: int) -> bool:
        """Delete a device and, through ORM cascades, every dependent row."""
        device = await self.get_by_id(id)
        if device is None:
            return False
        await self.session.delete(device)
        await self.session.flush()
        return True

    async def set_connection_status(
        self,
        device_id: int,
        is_connected: bool,
        last_connected: datetime | None = None,
        uptime: str | None = None,
    ) -> bool:
        """Record connection state. Returns False if the device no longer exists."""
        values: dict[str, Any] = {"is_connected": is_connected, "updated_at": datetime.now(UTC)}
        if last_connected is not None:
            values["last_connected"] = last_connected
        if uptime is not None:
            values["uptime"] = uptime
        result = await self.session.execute(
            update(Device).where(Device.id == device_id).values(**values)
        )
        return result.rowcount > 0


class DeviceMetricsRepository:
    """Repository for device metric samples."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(
        self,
        device_id: int,
        resources: SystemResources | None = None,
        download_bandwidth: float | None = None,
        upload_bandwidth: float | None = None,
        timestamp: datetime | None = None,
    ) -> DeviceMetric:
        """Insert a single metric sample."""
        metric = DeviceMetric(
            device_id=device_id,
            timestamp=timestamp or datetime.now(UTC),
            download_bandwidth=download_bandwidth,
            upload_bandwidth=upload_bandwidth,
        )
        if resources is not None:
            metric.cpu_load = resources.cpu_load
            metric.memory_used = resources.memory_used
            metric.memory_total = resources.memory_total
            metric.uptime = resources.uptime
            metric.temperature = resources.temperature
        self.session.add(metric)
        await self.session.flush()
        return metric

    async def get_recent(self, device_id: int, limit: int = 100) -> Sequence[DeviceMetric]:
        """Most recent samples, newest first."""
        result = await self.session.execute(
            select(DeviceMetric)
            .where(DeviceMetric.device_id == device_id)
            .order_by(DeviceMetric.timestamp.desc(), DeviceMetric.id.desc())
            .limit(limit)
        )
        return result.scalars().all()

    async def get_bandwidth_history(
        self, device_id: int, since: datetime, limit: int = 500
    ) -> Sequence[DeviceMetric]:
        result = await self.session.execute(
            select(DeviceMetric)
            .where(
                DeviceMetric.device_id == device_id,
                DeviceMetric.timestamp >= since,
                DeviceMetric.download_bandwidth.is_not(None),
            )
            .order_by(DeviceMetric.timestamp.desc())
            .limit(limit)
        )
        return result.scalars().all()


class InterfacesRepository:
    """Repository for device interfaces."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_many(self, device_id: int, interfaces: list[InterfaceStats]) -> int:
        """Insert or update interfaces by name."""
        result = await self.session.execute(
            select(Interface).where(Interface.device_id == device_id)
        )
        existing = {row.name: row for row in result.scalars()}
        now = datetime.now(UTC)

        for data in interfaces:
            row = existing.get(data.name)
            if row is None:
                row = Interface(device_id=device_id, name=data.name)
                self.session.add(row)
            row.type = data.type
            row.mac_address = data.mac_address
            row.running = data.running
            row.disabled = data.disabled
            row.rx_bytes = data.rx_bytes
            row.tx_bytes = data.tx_bytes
            row.last_updated = now

        await self.session.flush()
        return len(interfaces)

    async def list_for_device(self, device_id: int) -> Sequence[Interface]:
        result = await self.session.execute(
            select(Interface).where(Interface.device_id == device_id).order_by(Interface.name)
        )
        return result.scalars().all()


class FirewallRulesRepository:
    """Repository for mirrored firewall rules."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def sync(
        self,
        device_id: int,
        rules: Sequence[FirewallRuleData],
        remove_missing: bool = True,
    ) -> dict[str, int]:
        """
        Mirror the router's rule set.

        Rules are matched on ``rule_id``. Rules the router no longer reports
        are deleted when ``remove_missing`` is set.

        Returns:
            Counts of created, updated and removed rows
        """
        result = await self.session.execute(
            select(FirewallRule).where(FirewallRule.device_id == device_id)
        )
        existing = {row.rule_id: row for row in result.scalars()}
        created = updated = 0

        for data in rules:
            row = existing.get(data.id)
            if row is None:
                row = FirewallRule(device_id=device_id, rule_id=data.id)
                self.session.add(row)
                created += 1
            else:
                updated += 1
            row.chain = data.chain
            row.action = data.action
            row.enabled = data.enabled
            row.src_address = data.src_address
            row.dst_address = data.dst_address
            row.protocol = data.protocol
            row.src_port = data.src_port
            row.dst_port = data.dst_port
            row.hits = data.hits
            row.bytes = data.bytes
            row.comment = data.comment
            row.position = data.position
            row.connection_state = data.connection_state
            row.last_modified = data.last_modified
            row.last_hit = data.last_hit
            row.details = dict(data.details)

        removed = 0
        if remove_missing:
            stale = set(existing) - {data.id for data in rules}
            if stale:
                await self.session.execute(
                    delete(FirewallRule).where(
                        FirewallRule.device_id == device_id,
                        FirewallRule.rule_id.in_(stale),
                    )
                )
                removed = len(stale)

        await self.session.flush()
        return {"created": created, "updated": updated, "removed": removed}

    async def list_for_device(
        self,
        device_id: int,
        chain: str | None = None,
        enabled: bool | None = None,
        search: str | None = None,
    ) -> Sequence[FirewallRule]:
        """List rules in router order, optionally filtered."""
        query = select(FirewallRule).where(FirewallRule.device_id == device_id)
        if chain:
            query = query.where(FirewallRule.chain == chain)
        if enabled is not None:
            query = query.where(FirewallRule.enabled == enabled)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    FirewallRule.comment.ilike(pattern),
                    FirewallRule.src_address.ilike(pattern),
                    FirewallRule.dst_address.ilike(pattern),
                    FirewallRule.dst_port.ilike(pattern),
                    FirewallRule.action.ilike(pattern),
                )
            )
        result = await self.session.execute(query.order_by(FirewallRule.position))
        return result.scalars().all()


class WirelessRepository:
    """Repository for wireless interfaces."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_many(self, device_id: int, interfaces: list[WirelessInterfaceData]) -> int:
        result = await self.session.execute(
            select(WirelessInterface).where(WirelessInterface.device_id == device_id)
        )
        existing = {row.name: row for row in result.scalars()}
        now = datetime.now(UTC)

        for data in interfaces:
            row = existing.get(data.name)
            if row is None:
                row = WirelessInterface(device_id=device_id, name=data.name)
                self.session.add(row)
            row.ssid = data.ssid
            row.band = data.band
            row.frequency = data.frequency
            row.channel_width = data.channel_width
            row.noise_floor = data.noise_floor
            row.tx_power = data.tx_power
            row.client_count = data.client_count
            row.running = data.running
            row.last_updated = now

        await self.session.flush()
        return len(interfaces)

    async def list_for_device(self, device_id: int) -> Sequence[WirelessInterface]:
        result = await self.session.execute(
            select(WirelessInterface)
            .where(WirelessInterface.device_id == device_id)
            .order_by(WirelessInterface.name)
        )
        return result.scalars().all()


class CapsmanRepository:
    """Repository for CAPsMAN access points and their clients."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def sync_access_points(
        self, device_id: int, access_points: list[CapsmanAccessPointData]
    ) -> dict[str, int]:
        """Upsert APs by identity and replace each AP's client list."""
        result = await self.session.execute(
            select(CapsmanAP)
            .where(CapsmanAP.device_id == device_id)
            .options(selectinload(CapsmanAP.clients))
        )
        existing = {row.identity: row for row in result.scalars()}
        now = datetime.now(UTC)
        client_total = 0

        for data in access_points:
            ap = existing.get(data.identity)
            if ap is None:
                ap = CapsmanAP(device_id=device_id, identity=data.identity, clients=[])
                self.session.add(ap)
            ap.name = data.name
            ap.mac_address = data.mac_address
            ap.ip_address = data.ip_address
            ap.model = data.model
            ap.state = data.state
            ap.radio_count = data.radio_count
            ap.client_count = len(data.clients)
            ap.last_seen = now
            ap.clients = [
                CapsmanClient(
                    device_id=device_id,
                    mac_address=c.mac_address,
                    hostname=c.hostname,
                    ip_address=c.ip_address,
                    signal_strength=c.signal_strength,
                    tx_rate=c.tx_rate,
                    rx_rate=c.rx_rate,
                    uptime=c.uptime,
                    last_seen=now,
                )
                for c in data.clients
            ]
            client_total += len(data.clients)

        await self.session.flush()
        return {"access_points": len(access_points), "clients": client_total}

    async def list_access_points(self, device_id: int) -> Sequence[CapsmanAP]:
        result = await self.session.execute(
            select(CapsmanAP).where(CapsmanAP.device_id == device_id).order_by(CapsmanAP.identity)
        )
        return result.scalars().all()

    async def list_clients(self, device_id: int) -> Sequence[CapsmanClient]:
        result = await self.session.execute(
            select(CapsmanClient)
            .where(CapsmanClient.device_id == device_id)
            .order_by(CapsmanClient.ap_id, CapsmanClient.mac_address)
        )
        return result.scalars().all()


class TrafficRepository:
    """Repository for traffic feature rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(
        self,
        sample: TrafficSample,
        features: dict[str, float],
        analyzed_at: datetime | None = None,
    ) -> NetworkTrafficFeature:
        row = NetworkTrafficFeature(
            device_id=sample.device_id,
            source_ip=sample.source_ip,
            destination_ip=sample.destination_ip,
            source_port=sample.source_port,
            destination_port=sample.destination_port,
            protocol=sample.protocol,
            bytes=sample.bytes,
            packet_count=sample.packet_count,
            features_json=features,
            timestamp=sample.timestamp,
            analyzed_at=analyzed_at,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def mark_analyzed(self, feature_id: int, analyzed_at: datetime) -> None:
        await self.session.execute(
            update(NetworkTrafficFeature)
            .where(NetworkTrafficFeature.id == feature_id)
            .values(analyzed_at=analyzed_at)
        )

    async def get_recent(self, device_id: int, limit: int = 100) -> Sequence[NetworkTrafficFeature]:
        result = await self.session.execute(
            select(NetworkTrafficFeature)
            .where(NetworkTrafficFeature.device_id == device_id)
            .order_by(NetworkTrafficFeature.timestamp.desc(), NetworkTrafficFeature.id.desc())
            .limit(limit)
        )
        return result.scalars().all()

    async def protocol_distribution(
        self, device_id: int, since: datetime | None = None
    ) -> list[dict[str, Any]]:
        """Flow counts per protocol with their share of the total."""
        query = (
            select(NetworkTrafficFeature.protocol, func.count().label("count"))
            .where(NetworkTrafficFeature.device_id == device_id)
            .group_by(NetworkTrafficFeature.protocol)
        )
        if since is not None:
            query = query.where(NetworkTrafficFeature.timestamp >= since)
        rows = (await self.session.execute(query)).all()
        total = sum(row.count for row in rows)
        return [
            {
                "protocol": row.protocol,
                "count": row.count,
                "percentage": row.count / total if total else 0.0,
            }
            for row in sorted(rows, key=lambda r: r.count, reverse=True)
        ]

    async def top_sources(
        self, device_id: int, since: datetime | None = None, limit: int = 10
    ) -> list[dict[str, Any]]:
        """Source addresses ranked by bytes sent."""
        total_bytes = func.sum(NetworkTrafficFeature.bytes).label("bytes")
        query = (
            select(
                NetworkTrafficFeature.source_ip,
                func.count().label("flows"),
                total_bytes,
            )
            .where(NetworkTrafficFeature.device_id == device_id)
            .group_by(NetworkTrafficFeature.source_ip)
            .order_by(total_bytes.desc())
            .limit(limit)
        )
        if since is not None:
            query = query.where(NetworkTrafficFeature.timestamp >= since)
        rows = (await self.session.execute(query)).all()
        return [
            {"source_ip": row.source_ip, "flows": row.flows, "bytes": int(row.bytes or 0)}
            for row in rows
        ]


class AlertsRepository(BaseRepository[Alert]):
    """Repository for device alerts."""

    model = Alert

    async def create_alert(
        self,
        device_id: int,
        message: str,
        severity: str = AlertSeverity.INFO.value,
        source: str | None = None,
    ) -> Alert:
        return await self.create(
            device_id=device_id,
            message=message,
            severity=severity,
            source=source,
            acknowledged=False,
            timestamp=datetime.now(UTC),
        )

    async def list_alerts(
        self,
        device_id: int | None = None,
        acknowledged: bool | None = None,
        limit: int = 100,
    ) -> Sequence[Alert]:
        query = select(Alert)
        if device_id is not None:
            query = query.where(Alert.device_id == device_id)
        if acknowledged is not None:
            query = query.where(Alert.acknowledged == acknowledged)
        result = await self.session.execute(
            query.order_by(Alert.timestamp.desc(), Alert.id.desc()).limit(limit)
        )
        return result.scalars().all()

    async def acknowledge(self, alert_id: int) -> Alert | None:
        return await self.update(alert_id, acknowledged=True)

    async def acknowledge_all(self, device_id: int | None = None) -> int:
        stmt = update(Alert).where(Alert.acknowledged.is_(False)).values(acknowledged=True)
        if device_id is not None:
            stmt = stmt.where(Alert.device_id == device_id)
        result = await self.session.execute(stmt)
        return result.rowcount


class DetectionHistoryRepository:
    """Repository for IDS verdict history."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_for_traffic_feature(self, traffic_feature_id: int) -> IDSDetectionHistory | None:
        result = await self.session.execute(
            select(IDSDetectionHistory).where(
                IDSDetectionHistory.traffic_feature_id == traffic_feature_id
            )
        )
        return result.scalar_one_or_none()

    async def record(
        self,
        traffic_feature_id: int,
        device_id: int,
        is_anomaly: bool,
        probability: float,
        alert_id: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> tuple[IDSDetectionHistory, bool]:
        """
        Store a verdict for a traffic feature row.

        Returns:
            The history row and whether it was newly created. A second call for
            the same traffic feature returns the existing row unchanged.
        """
        existing = await self.get_for_traffic_feature(traffic_feature_id)
        if existing is not None:
            return existing, False

        row = IDSDetectionHistory(
            traffic_feature_id=traffic_feature_id,
            device_id=device_id,
            is_anomaly=is_anomaly,
            probability=probability,
            alert_id=alert_id,
            details=details or {},
            timestamp=datetime.now(UTC),
        )
        self.session.add(row)
        await self.session.flush()
        return row, True

    async def get_anomalies(self, start: datetime, end: datetime) -> Sequence[IDSDetectionHistory]:
        result = await self.session.execute(
            select(IDSDetectionHistory)
            .where(
                IDSDetectionHistory.timestamp >= start,
                IDSDetectionHistory.timestamp <= end,
                IDSDetectionHistory.is_anomaly.is_(True),
            )
            .order_by(IDSDetectionHistory.timestamp.desc())
        )
        return result.scalars().all()
