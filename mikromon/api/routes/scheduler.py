"""
Scheduler control API routes.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from mikromon.api.dependencies import get_scheduler
from mikromon.services.scheduler import PollingScheduler

router = APIRouter(prefix="/scheduler", tags=["Scheduler"])


class PollingIntervalRequest(BaseModel):
    """New polling interval in milliseconds."""

    interval: int


class MaxConcurrentRequest(BaseModel):
    count: int


class SchedulerSettingsResponse(BaseModel):
    polling_interval_ms: int
    max_concurrent_devices: int


@router.post("/polling-interval", response_model=SchedulerSettingsResponse)
async def set_polling_interval(
    body: PollingIntervalRequest,
    scheduler: PollingScheduler = Depends(get_scheduler),
) -> SchedulerSettingsResponse:
    """Change the polling interval. Values below the floor are rejected with 400."""
    scheduler.set_polling_interval(body.interval)
    return SchedulerSettingsResponse(
        polling_interval_ms=scheduler.polling_interval_ms,
        max_concurrent_devices=scheduler.max_concurrent_devices,
    )


@router.post("/max-concurrent-devices", response_model=SchedulerSettingsResponse)
async def set_max_concurrent_devices(
    body: MaxConcurrentRequest,
    scheduler: PollingScheduler = Depends(get_scheduler),
) -> SchedulerSettingsResponse:
    scheduler.set_max_concurrent_devices(body.count)
    return SchedulerSettingsResponse(
        polling_interval_ms=scheduler.polling_interval_ms,
        max_concurrent_devices=scheduler.max_concurrent_devices,
    )


@router.get("/device-status")
async def get_device_status(
    scheduler: PollingScheduler = Depends(get_scheduler),
) -> list[dict[str, Any]]:
    """Per-device polling state."""
    return scheduler.get_device_polling_status()


@router.get("/stats")
async def get_scheduler_stats(
    scheduler: PollingScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    return scheduler.get_stats()
