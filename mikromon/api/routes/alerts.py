"""
Alert API routes.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from mikromon.errors import DeviceNotFoundError, ResourceNotFoundError
from mikromon.storage.database import get_db
from mikromon.storage.models import AlertSeverity
from mikromon.storage.repositories import AlertsRepository, DevicesRepository

router = APIRouter(prefix="/alerts", tags=["Alerts"])


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    device_id: int
    severity: str
    message: str
    source: str | None
    acknowledged: bool
    timestamp: datetime


class AlertCreate(BaseModel):
    """Request body for raising an alert by hand."""

    device_id: int
    message: str = Field(min_length=1, max_length=1000)
    severity: AlertSeverity = AlertSeverity.INFO
    source: str | None = Field(default=None, max_length=64)


class AcknowledgeAllResponse(BaseModel):
    acknowledged: int


@router.get("", response_model=list[AlertResponse])
async def list_alerts(
    device_id: int | None = None,
    acknowledged: bool | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
) -> list[AlertResponse]:
    """Alerts, newest first."""
    rows = await AlertsRepository(db).list_alerts(device_id, acknowledged, limit)
    return [AlertResponse.model_validate(r) for r in rows]


@router.post("", response_model=AlertResponse, status_code=status.HTTP_201_CREATED)
async def create_alert(body: AlertCreate, db: AsyncSession = Depends(get_db)) -> AlertResponse:
    if await DevicesRepository(db).get_by_id(body.device_id) is None:
        raise DeviceNotFoundError(body.device_id)
    alert = await AlertsRepository(db).create_alert(
        body.device_id, body.message, severity=body.severity.value, source=body.source
    )
    return AlertResponse.model_validate(alert)


@router.post("/acknowledge-all", response_model=AcknowledgeAllResponse)
async def acknowledge_all_alerts(
    device_id: int | None = None,
    db: AsyncSession = Depends(get_db),
) -> AcknowledgeAllResponse:
    count = await AlertsRepository(db).acknowledge_all(device_id)
    return AcknowledgeAllResponse(acknowledged=count)


@router.post("/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(alert_id: int, db: AsyncSession = Depends(get_db)) -> AlertResponse:
    alert = await AlertsRepository(db).acknowledge(alert_id)
    if alert is None:
        raise ResourceNotFoundError("Alert", alert_id)
    return AlertResponse.model_validate(alert)
