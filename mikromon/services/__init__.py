"""
Background services for the monitoring backend.

This module provides:
- Polling scheduler that decides which devices to poll and when
- Device poller that runs the collectors for one device
- Relay that applies connection events to storage and clients
"""

from mikromon.services.polling import (
    DevicePoller,
    PollOutcome,
    PollResult,
    publish_device_status,
)
from mikromon.services.relay import ConnectionEventRelay
from mikromon.services.scheduler import DevicePollStatus, PollingScheduler, PollState

__all__ = [
    "ConnectionEventRelay",
    "DevicePollStatus",
    "DevicePoller",
    "PollOutcome",
    "PollResult",
    "PollState",
    "PollingScheduler",
    "publish_device_status",
]
