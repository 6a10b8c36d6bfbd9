"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mikromon.api.dependencies import Runtime, get_runtime
from mikromon.storage.database import get_db
from mikromon.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


class ReadinessResponse(BaseModel):
    """Readiness check response with component status."""

    status: str
    database: str
    scheduler: str
    predictor: str
    connected_devices: int
    websocket_clients: int


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(status="healthy")


@router.get("/health/live", response_model=HealthResponse)
async def liveness_check() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(status="alive")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
) -> ReadinessResponse:
    """
    Readiness probe.

    Only the database decides readiness; the scheduler and predictor are
    reported for information.
    """
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Readiness database check failed", error=str(e))
        db_status = "unhealthy"

    if runtime.scheduler.is_running:
        scheduler_status = "running"
    elif runtime.settings.scheduler.enabled:
        scheduler_status = "stopped"
    else:
        scheduler_status = "disabled"

    predictor_status = "configured" if runtime.ids.is_available else "not_configured"

    return ReadinessResponse(
        status="ready" if db_status == "healthy" else "not_ready",
        database=db_status,
        scheduler=scheduler_status,
        predictor=predictor_status,
        connected_devices=len(runtime.connections.connected_device_ids()),
        websocket_clients=runtime.hub.client_count,
    )
