"""
Monitoring module: Prometheus metrics for the backend itself.
"""

from .metrics import MonitorMetrics

__all__ = ["MonitorMetrics"]
