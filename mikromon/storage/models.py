"""
Database models for the monitoring backend.

Uses SQLAlchemy 2.0 typed mappings. JSON columns map to JSONB on PostgreSQL.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _device_fk() -> Any:
    return mapped_column(
        Integer, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True
    )


# ============================================================================
# Device Registry
# ============================================================================


class Device(Base):
    """A monitored MikroTik router or access point."""

    __tablename__ = "devices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    port: Mapped[int] = mapped_column(Integer, nullable=False, default=8728)

    # Connection state
    is_connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_connected: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    uptime: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Capabilities
    has_wireless: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_capsman: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Dependent rows go with the device
    metrics: Mapped[list["DeviceMetric"]] = relationship(cascade="all, delete-orphan")
    interfaces: Mapped[list["Interface"]] = relationship(cascade="all, delete-orphan")
    firewall_rules: Mapped[list["FirewallRule"]] = relationship(cascade="all, delete-orphan")
    wireless_interfaces: Mapped[list["WirelessInterface"]] = relationship(
        cascade="all, delete-orphan"
    )
    capsman_aps: Mapped[list["CapsmanAP"]] = relationship(cascade="all, delete-orphan")
    traffic_features: Mapped[list["NetworkTrafficFeature"]] = relationship(
        cascade="all, delete-orphan"
    )
    alerts: Mapped[list["Alert"]] = relationship(cascade="all, delete-orphan")
    detections: Mapped[list["IDSDetectionHistory"]] = relationship(cascade="all, delete-orphan")


# ============================================================================
# Time-Series Tables
# ============================================================================


class DeviceMetric(Base):
    """System resource and bandwidth sample for a device."""

    __tablename__ = "device_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = _device_fk()
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    cpu_load: Mapped[float | None] = mapped_column(Float, nullable=True)
    memory_used: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    memory_total: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    uptime: Mapped[str | None] = mapped_column(String(64), nullable=True)
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)
    download_bandwidth: Mapped[float | None] = mapped_column(Float, nullable=True)
    upload_bandwidth: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (Index("idx_device_metrics_device_time", "device_id", "timestamp"),)


class NetworkTrafficFeature(Base):
    """A traffic flow sample and the features extracted from it."""

    __tablename__ = "network_traffic_features"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = _device_fk()
    source_ip: Mapped[str] = mapped_column(String(64), nullable=False)
    destination_ip: Mapped[str] = mapped_column(String(64), nullable=False)
    source_port: Mapped[int] = mapped_column(Integer, nullable=False)
    destination_port: Mapped[int] = mapped_column(Integer, nullable=False)
    protocol: Mapped[str] = mapped_column(String(16), nullable=False)
    bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    packet_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    features_json: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_traffic_device_time", "device_id", "timestamp"),)


# ============================================================================
# Router State Tables (upserted)
# ============================================================================


class Interface(Base):
    """Network interface on a device."""

    __tablename__ = "interfaces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = _device_fk()
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False, default="ether")
    mac_address: Mapped[str | None] = mapped_column(String(32), nullable=True)
    running: Mapped[bool] = mapped_column(Boolean, default=False)
    disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    rx_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    tx_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("device_id", "name", name="uq_interfaces_device_name"),)


class FirewallRule(Base):
    """Firewall filter rule mirrored from a router."""

    __tablename__ = "firewall_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = _device_fk()
    rule_id: Mapped[str] = mapped_column(String(32), nullable=False)
    chain: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    src_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    dst_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    protocol: Mapped[str | None] = mapped_column(String(16), nullable=True)
    src_port: Mapped[str | None] = mapped_column(String(128), nullable=True)
    dst_port: Mapped[str | None] = mapped_column(String(128), nullable=True)
    hits: Mapped[int] = mapped_column(BigInteger, default=0)
    bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    connection_state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_modified: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_hit: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("device_id", "rule_id", name="uq_firewall_rules_device_rule"),
    )


class WirelessInterface(Base):
    """Wireless interface on a device."""

    __tablename__ = "wireless_interfaces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = _device_fk()
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    ssid: Mapped[str | None] = mapped_column(String(128), nullable=True)
    band: Mapped[str | None] = mapped_column(String(32), nullable=True)
    frequency: Mapped[int | None] = mapped_column(Integer, nullable=True)
    channel_width: Mapped[str | None] = mapped_column(String(32), nullable=True)
    noise_floor: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tx_power: Mapped[int | None] = mapped_column(Integer, nullable=True)
    client_count: Mapped[int] = mapped_column(Integer, default=0)
    running: Mapped[bool] = mapped_column(Boolean, default=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("device_id", "name", name="uq_wireless_device_name"),)


class CapsmanAP(Base):
    """Access point managed by a CAPsMAN controller."""

    __tablename__ = "capsman_aps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = _device_fk()
    identity: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    mac_address: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    model: Mapped[str | None] = mapped_column(String(64), nullable=True)
    state: Mapped[str | None] = mapped_column(String(32), nullable=True)
    radio_count: Mapped[int] = mapped_column(Integer, default=1)
    client_count: Mapped[int] = mapped_column(Integer, default=0)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    clients: Mapped[list["CapsmanClient"]] = relationship(
        back_populates="access_point", cascade="all, delete-orphan"
    )

    __table_args__ = (UniqueConstraint("device_id", "identity", name="uq_capsman_device_identity"),)


class CapsmanClient(Base):
    """Wireless client registered on a CAPsMAN access point."""

    __tablename__ = "capsman_clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ap_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("capsman_aps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    device_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    mac_address: Mapped[str] = mapped_column(String(32), nullable=False)
    hostname: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    signal_strength: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tx_rate: Mapped[str | None] = mapped_column(String(32), nullable=True)
    rx_rate: Mapped[str | None] = mapped_column(String(32), nullable=True)
    uptime: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    access_point: Mapped[CapsmanAP] = relationship(back_populates="clients")


# ============================================================================
# Security Tables
# ============================================================================


class Alert(Base):
    """Alert raised for a device."""

    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = _device_fk()
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default=AlertSeverity.INFO)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    acknowledged: Mapped[bool] = mapped_column(Boolean, default=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


class IDSDetectionHistory(Base):
    """Verdict history for analysed traffic samples."""

    __tablename__ = "ids_detection_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    traffic_feature_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("network_traffic_features.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    device_id: Mapped[int] = _device_fk()
    is_anomaly: Mapped[bool] = mapped_column(Boolean, nullable=False)
    probability: Mapped[float] = mapped_column(Float, nullable=False)
    alert_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("alerts.id", ondelete="SET NULL"), nullable=True
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
