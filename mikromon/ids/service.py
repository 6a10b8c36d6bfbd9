"""
Intrusion detection service.

Responsibilities:
- Extract model features from traffic samples and store them
- Ask the external predictor for a verdict
- Raise alerts for anomalies and push them to subscribed clients
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mikromon.connections.types import TrafficSample
from mikromon.errors import PredictorError
from mikromon.monitoring.metrics import MonitorMetrics
from mikromon.realtime.hub import BroadcastHub
from mikromon.realtime.messages import (
    ALL_ALERTS,
    MessageType,
    ServerMessage,
    device_alerts_topic,
)
from mikromon.storage.models import AlertSeverity, IDSDetectionHistory
from mikromon.storage.repositories import (
    AlertsRepository,
    DetectionHistoryRepository,
    TrafficRepository,
)
from mikromon.utils.logging import get_logger

from .features import extract_features
from .predictor import Predictor
from .simulation import AttackType, generate_test_traffic

logger = get_logger(__name__)

ALERT_SOURCE = "ai_ids"


@dataclass
class AnalysisResult:
    """Outcome of analysing one traffic sample."""

    is_anomaly: bool
    probability: float
    traffic_feature_id: int
    alert_id: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_anomaly": self.is_anomaly,
            "probability": self.probability,
            "timestamp": self.timestamp.isoformat(),
            "alert_id": self.alert_id,
            "traffic_feature_id": self.traffic_feature_id,
        }


def intrusion_message(sample: TrafficSample) -> str:
    return (
        f"Possible intrusion detected: {sample.source_ip}:{sample.source_port} -> "
        f"{sample.destination_ip}:{sample.destination_port} ({sample.protocol.upper()})"
    )


class IDSService:
    """
    Adapter between collected traffic and the external classifier.

    The predictor is optional; without one, ``analyze_traffic`` returns None
    and nothing is stored.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hub: BroadcastHub,
        predictor: Predictor | None = None,
        metrics: MonitorMetrics | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._hub = hub
        self._predictor = predictor
        self._metrics = metrics

        self._stats = {
            "analyzed": 0,
            "anomalies": 0,
            "predictor_errors": 0,
        }

    @property
    def is_available(self) -> bool:
        return self._predictor is not None

    async def analyze_traffic(self, sample: TrafficSample) -> AnalysisResult | None:
        """
        Store, classify and, if anomalous, alert on a traffic sample.

        Returns:
            The verdict, or None when no predictor is configured or the
            predictor failed. A failed prediction leaves the feature row stored
            but unanalysed.
        """
        if self._predictor is None:
            logger.warning("IDS analysis requested but no predictor is configured")
            return None

        features = extract_features(sample)
        async with self._session_factory() as session:
            feature_row = await TrafficRepository(session).insert(sample, features)
            feature_id = feature_row.id
            await session.commit()

        try:
            verdict = await self._predictor.predict(features)
        except PredictorError as e:
            self._stats["predictor_errors"] += 1
            if self._metrics is not None:
                self._metrics.record_predictor_error()
            logger.error(
                "Traffic analysis failed",
                device_id=sample.device_id,
                error=e.message,
                **e.context,
            )
            return None

        self._stats["analyzed"] += 1
        if self._metrics is not None:
            self._metrics.record_prediction(verdict.is_anomaly)

        result = AnalysisResult(
            is_anomaly=verdict.is_anomaly,
            probability=verdict.probability,
            traffic_feature_id=feature_id,
            timestamp=verdict.timestamp,
        )

        alert_message = intrusion_message(sample)
        created = False
        async with self._session_factory() as session:
            await TrafficRepository(session).mark_analyzed(feature_id, verdict.timestamp)
            if verdict.is_anomaly:
                result.alert_id, created = await self._store_detection(
                    session, sample, feature_id, verdict.probability, alert_message
                )
            await session.commit()

        if created:
            self._stats["anomalies"] += 1
            logger.warning(
                alert_message,
                device_id=sample.device_id,
                probability=verdict.probability,
                alert_id=result.alert_id,
            )
            await self._broadcast_alert(sample, result, alert_message)

        return result

    async def _store_detection(
        self,
        session: AsyncSession,
        sample: TrafficSample,
        feature_id: int,
        probability: float,
        message: str,
    ) -> tuple[int | None, bool]:
        history = DetectionHistoryRepository(session)
        existing = await history.get_for_traffic_feature(feature_id)
        if existing is not None:
            return existing.alert_id, False

        alert = await AlertsRepository(session).create_alert(
            device_id=sample.device_id,
            message=message,
            severity=AlertSeverity.ERROR.value,
            source=ALERT_SOURCE,
        )
        await history.record(
            traffic_feature_id=feature_id,
            device_id=sample.device_id,
            is_anomaly=True,
            probability=probability,
            alert_id=alert.id,
            details={
                "source_ip": sample.source_ip,
                "destination_ip": sample.destination_ip,
                "source_port": sample.source_port,
                "destination_port": sample.destination_port,
                "protocol": sample.protocol,
                "flow_duration": sample.flow_duration,
                "bytes": sample.bytes,
                "packet_count": sample.packet_count,
            },
        )
        return alert.id, True

    async def _broadcast_alert(
        self, sample: TrafficSample, result: AnalysisResult, message: str
    ) -> None:
        alert = ServerMessage(
            type=MessageType.SECURITY_ALERT,
            payload={
                "alert_id": result.alert_id,
                "device_id": sample.device_id,
                "message": message,
                "severity": AlertSeverity.ERROR.value,
                "source": ALERT_SOURCE,
                "details": {
                    "source_ip": sample.source_ip,
                    "destination_ip": sample.destination_ip,
                    "probability": result.probability,
                    "timestamp": result.timestamp.isoformat(),
                },
            },
        )
        await self._hub.broadcast_to_topic(ALL_ALERTS, alert)
        await self._hub.broadcast_to_topic(device_alerts_topic(sample.device_id), alert)

    async def get_anomalies(self, start: datetime, end: datetime) -> Sequence[IDSDetectionHistory]:
        """Anomalous verdicts recorded between two instants."""
        async with self._session_factory() as session:
            return await DetectionHistoryRepository(session).get_anomalies(start, end)

    async def run_test_detection(
        self,
        device_id: int,
        attack_type: AttackType | str,
        source_ip: str | None = None,
        destination_ip: str | None = None,
    ) -> dict[str, Any]:
        """Push a synthetic attack through the analysis path and summarise."""
        samples = generate_test_traffic(device_id, attack_type, source_ip, destination_ip)
        analyzed = 0
        anomalies = 0
        for sample in samples:
            result = await self.analyze_traffic(sample)
            if result is None:
                continue
            analyzed += 1
            if result.is_anomaly:
                anomalies += 1

        return {
            "type": AttackType(attack_type).value,
            "sample_count": len(samples),
            "analyzed_count": analyzed,
            "anomaly_count": anomalies,
            "detection_rate": anomalies / len(samples) * 100 if samples else 0.0,
        }

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "available": self.is_available}
