"""
Device collectors.

Collectors read one aspect of a connected device, persist it and publish it:
- Metrics: system resources and interfaces
- Firewall: filter rules
- Wireless / CAPsMAN: radio interfaces and managed access points
- Traffic: bandwidth and flows, optionally through the IDS
"""

from .base import BaseCollector
from .firewall import FirewallCollector
from .metrics import MetricsCollector, ResourceSnapshot
from .traffic import TrafficCollector
from .wireless import CapsmanCollector, WirelessCollector

__all__ = [
    "BaseCollector",
    "CapsmanCollector",
    "FirewallCollector",
    "MetricsCollector",
    "ResourceSnapshot",
    "TrafficCollector",
    "WirelessCollector",
]
