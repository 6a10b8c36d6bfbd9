"""
API route modules.
"""

from . import alerts, devices, health, scheduler, security, websocket

__all__ = ["alerts", "devices", "health", "scheduler", "security", "websocket"]
