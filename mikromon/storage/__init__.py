"""
Storage module for the monitoring backend.

Provides database connectivity, models, and repositories.
"""

from mikromon.storage.database import (
    Base,
    close_db,
    create_engine,
    create_session_factory,
    get_db,
    init_db,
)
from mikromon.storage.models import (
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
from mikromon.storage.repositories import (
    AlertsRepository,
    BaseRepository,
    CapsmanRepository,
    DetectionHistoryRepository,
    DeviceMetricsRepository,
    DevicesRepository,
    FirewallRulesRepository,
    InterfacesRepository,
    TrafficRepository,
    WirelessRepository,
)

__all__ = [
    # Database
    "Base",
    "close_db",
    "create_engine",
    "create_session_factory",
    "get_db",
    "init_db",
    # Models
    "Alert",
    "AlertSeverity",
    "CapsmanAP",
    "CapsmanClient",
    "Device",
    "DeviceMetric",
    "FirewallRule",
    "IDSDetectionHistory",
    "Interface",
    "NetworkTrafficFeature",
    "WirelessInterface",
    # Repositories
    "AlertsRepository",
    "BaseRepository",
    "CapsmanRepository",
    "DetectionHistoryRepository",
    "DeviceMetricsRepository",
    "DevicesRepository",
    "FirewallRulesRepository",
    "InterfacesRepository",
    "TrafficRepository",
    "WirelessRepository",
]
