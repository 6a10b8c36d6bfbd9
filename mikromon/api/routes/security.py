"""
Intrusion detection API routes.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from mikromon.api.dependencies import Runtime, get_ids_service, get_runtime
from mikromon.api.routes.devices import load_device
from mikromon.connections.types import TrafficSample
from mikromon.errors import PredictorError
from mikromon.ids.service import IDSService
from mikromon.ids.simulation import AttackType
from mikromon.storage.database import get_db

router = APIRouter(prefix="/security", tags=["Security"])


class TrafficSampleRequest(BaseModel):
    """A flow to analyse. ``flow_duration`` is in milliseconds."""

    device_id: int
    source_ip: str = Field(min_length=1)
    destination_ip: str = Field(min_length=1)
    source_port: int = Field(ge=0, le=65535)
    destination_port: int = Field(ge=0, le=65535)
    protocol: str = Field(min_length=1, max_length=16)
    bytes: int = Field(ge=0)
    packet_count: int = Field(ge=0)
    flow_duration: float = Field(ge=0)
    timestamp: datetime | None = None

    def to_sample(self) -> TrafficSample:
        data = self.model_dump(exclude={"timestamp"})
        if self.timestamp is not None:
            return TrafficSample(**data, timestamp=self.timestamp)
        return TrafficSample(**data)


class AnalysisResponse(BaseModel):
    is_anomaly: bool
    probability: float
    timestamp: datetime
    alert_id: int | None
    traffic_feature_id: int


class AnomalyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    traffic_feature_id: int
    device_id: int
    is_anomaly: bool
    probability: float
    alert_id: int | None
    details: dict[str, Any]
    timestamp: datetime


class TestDetectionRequest(BaseModel):
    device_id: int
    type: AttackType
    source_ip: str | None = None
    destination_ip: str | None = None


class TestDetectionResponse(BaseModel):
    type: str
    sample_count: int
    analyzed_count: int
    anomaly_count: int
    detection_rate: float


def _require_predictor(ids: IDSService) -> None:
    if not ids.is_available:
        raise PredictorError("Traffic analysis unavailable: no predictor configured")


@router.post("/analyze-traffic", response_model=AnalysisResponse)
async def analyze_traffic(
    body: TrafficSampleRequest,
    db: AsyncSession = Depends(get_db),
    ids: IDSService = Depends(get_ids_service),
) -> AnalysisResponse:
    """
    Run one flow through the IDS.

    Returns 503 when no verdict could be obtained.
    """
    await load_device(db, body.device_id)
    _require_predictor(ids)
    result = await ids.analyze_traffic(body.to_sample())
    if result is None:
        raise PredictorError("Traffic analysis unavailable")
    return AnalysisResponse(
        is_anomaly=result.is_anomaly,
        probability=result.probability,
        timestamp=result.timestamp,
        alert_id=result.alert_id,
        traffic_feature_id=result.traffic_feature_id,
    )


@router.get("/anomalies", response_model=list[AnomalyResponse])
async def get_anomalies(
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    ids: IDSService = Depends(get_ids_service),
    runtime: Runtime = Depends(get_runtime),
) -> list[AnomalyResponse]:
    """Anomalies in a time range. Defaults to the configured trailing window."""
    end = end_time or datetime.now(UTC)
    start = start_time or end - timedelta(hours=runtime.settings.ids.anomaly_window_hours)
    rows = await ids.get_anomalies(start, end)
    return [AnomalyResponse.model_validate(r) for r in rows]


@router.post("/test-scan-detection", response_model=TestDetectionResponse)
async def test_scan_detection(
    body: TestDetectionRequest,
    db: AsyncSession = Depends(get_db),
    ids: IDSService = Depends(get_ids_service),
) -> TestDetectionResponse:
    """Generate synthetic attack traffic for a device and analyse it."""
    await load_device(db, body.device_id)
    _require_predictor(ids)
    summary = await ids.run_test_detection(
        body.device_id, body.type, body.source_ip, body.destination_ip
    )
    return TestDetectionResponse(**summary)
