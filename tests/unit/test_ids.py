"""
Unit tests for the intrusion detection adapter.

Tests cover:
- Feature extraction
- Predictor output parsing and the subprocess predictor
- Synthetic attack traffic
- IDSService storage, alerting and broadcast
"""

import json
import sys
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from mikromon.errors import PredictorError
from mikromon.ids import (
    FEATURE_NAMES,
    AttackType,
    IDSService,
    SubprocessPredictor,
    extract_features,
    generate_test_traffic,
    intrusion_message,
    parse_verdict,
)
from mikromon.realtime.messages import ALL_ALERTS, device_alerts_topic
from mikromon.storage.models import Alert, IDSDetectionHistory, NetworkTrafficFeature
from mikromon.storage.repositories import DetectionHistoryRepository

# =============================================================================
# Feature Extraction Tests
# =============================================================================


class TestFeatureExtraction:
    """Tests for extract_features."""

    def test_all_features_present(self, sample_factory):
        features = extract_features(sample_factory(1))

        assert tuple(features) == FEATURE_NAMES
        assert all(isinstance(v, float) for v in features.values())

    def test_rates(self, sample_factory):
        features = extract_features(
            sample_factory(1, bytes=10000, packet_count=100, flow_duration=2000.0)
        )

        assert features["Flow Bytes/s"] == pytest.approx(5000.0)
        assert features["Flow Packets/s"] == pytest.approx(50.0)
        assert features["Flow IAT Mean"] == pytest.approx(20.0)
        assert features["Average Packet Size"] == pytest.approx(100.0)
        assert features["Total Fwd Packets"] == 50.0
        assert features["ACK Flag Count"] == 98.0

    def test_zero_packets_and_duration(self, sample_factory):
        features = extract_features(
            sample_factory(1, bytes=0, packet_count=0, flow_duration=0.0)
        )

        assert features["Flow Bytes/s"] == 0.0
        assert features["Flow Packets/s"] == 0.0
        assert features["Flow IAT Mean"] == 0.0
        assert features["Packet Length Mean"] == 0.0
        assert features["ACK Flag Count"] == 0.0

    def test_udp_has_no_tcp_flags(self, sample_factory):
        features = extract_features(sample_factory(1, protocol="udp"))

        assert features["SYN Flag Count"] == 0.0
        assert features["Fwd Header Length"] == 0.0

    def test_deterministic(self, sample_factory):
        sample = sample_factory(1)
        assert extract_features(sample) == extract_features(sample)


# =============================================================================
# Predictor Tests
# =============================================================================


class TestParseVerdict:
    def test_valid(self):
        verdict = parse_verdict('{"is_anomaly": true, "probability": 0.82}')

        assert verdict.is_anomaly is True
        assert verdict.probability == pytest.approx(0.82)

    @pytest.mark.parametrize(
        "output",
        [
            "",
            "not json",
            '{"probability": 0.5}',
            '{"is_anomaly": "yes", "probability": 0.5}',
            '{"is_anomaly": true, "probability": "high"}',
        ],
    )
    def test_malformed(self, output):
        with pytest.raises(PredictorError):
            parse_verdict(output)


def python_predictor(script: str, timeout: float = 5.0) -> SubprocessPredictor:
    return SubprocessPredictor([sys.executable, "-c", script], timeout=timeout)


class TestSubprocessPredictor:
    """Tests for SubprocessPredictor."""

    def test_command_string_is_split(self):
        predictor = SubprocessPredictor("python3 scripts/predict.py --quiet")
        assert predictor.argv == ["python3", "scripts/predict.py", "--quiet"]

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            SubprocessPredictor("")

    @pytest.mark.asyncio
    async def test_features_passed_as_last_argument(self):
        predictor = python_predictor(
            "import json, sys\n"
            "features = json.loads(sys.argv[-1])\n"
            "print(json.dumps({'is_anomaly': features['Destination Port'] == 22.0,"
            " 'probability': 0.82}))\n"
        )

        verdict = await predictor.predict({"Destination Port": 22.0})

        assert verdict.is_anomaly is True
        assert verdict.probability == pytest.approx(0.82)

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        predictor = python_predictor(
            "import sys\nsys.stderr.write('model missing')\nsys.exit(3)\n"
        )

        with pytest.raises(PredictorError, match="code 3") as exc_info:
            await predictor.predict({})

        assert exc_info.value.context["stderr"] == "model missing"

    @pytest.mark.asyncio
    async def test_malformed_output(self):
        predictor = python_predictor("print('ok')")

        with pytest.raises(PredictorError, match="Malformed"):
            await predictor.predict({})

    @pytest.mark.asyncio
    async def test_timeout(self):
        predictor = python_predictor("import time\ntime.sleep(10)\n", timeout=0.2)

        with pytest.raises(PredictorError, match="timed out"):
            await predictor.predict({})

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        predictor = SubprocessPredictor(["/nonexistent/predictor-binary"])

        with pytest.raises(PredictorError, match="could not be started"):
            await predictor.predict({})


# =============================================================================
# Simulation Tests
# =============================================================================


class TestGenerateTestTraffic:
    def test_port_scan(self):
        samples = generate_test_traffic(3, AttackType.PORT_SCAN, seed=1)

        assert len(samples) == 20
        assert [s.destination_port for s in samples] == list(range(1, 21))
        assert {s.source_ip for s in samples} == {"203.0.113.66"}
        assert all(s.device_id == 3 for s in samples)

    def test_addresses_override(self):
        samples = generate_test_traffic(
            1, "bruteforce", source_ip="198.51.100.7", destination_ip="10.0.0.1", sample_count=3
        )

        assert all(s.destination_port == 22 for s in samples)
        assert {(s.source_ip, s.destination_ip) for s in samples} == {
            ("198.51.100.7", "10.0.0.1")
        }

    def test_dos_has_high_packet_rate(self):
        samples = generate_test_traffic(1, AttackType.DOS_ATTACK, seed=2)
        features = extract_features(samples[0])

        assert features["Flow Packets/s"] > 1000

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            generate_test_traffic(1, "ping_of_death")


# =============================================================================
# IDSService Tests
# =============================================================================


async def count(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


class TestIDSService:
    """Tests for IDSService."""

    @pytest.fixture
    def alert_sockets(self, hub, websocket_factory, device):
        return websocket_factory(), websocket_factory()

    async def subscribe(self, hub, sockets, device_id):
        all_alerts, device_alerts = sockets
        await hub.register(all_alerts)
        await hub.register(device_alerts)
        await hub.subscribe(all_alerts, ALL_ALERTS)
        await hub.subscribe(device_alerts, device_alerts_topic(device_id))

    @pytest.mark.asyncio
    async def test_anomaly_creates_alert_and_broadcasts(
        self, session_factory, hub, device, alert_sockets, predictor_factory, sample_factory
    ):
        await self.subscribe(hub, alert_sockets, device.id)
        service = IDSService(session_factory, hub, predictor_factory(True, 0.82))
        sample = sample_factory(device.id)

        result = await service.analyze_traffic(sample)

        assert result.is_anomaly is True
        assert result.probability == pytest.approx(0.82)
        assert result.alert_id is not None

        async with session_factory() as session:
            alerts = (await session.execute(select(Alert))).scalars().all()
            feature = await session.get(NetworkTrafficFeature, result.traffic_feature_id)
        assert len(alerts) == 1
        assert alerts[0].severity == "error"
        assert alerts[0].source == "ai_ids"
        assert alerts[0].message == intrusion_message(sample)
        assert feature.analyzed_at is not None
        assert await count(session_factory, IDSDetectionHistory) == 1

        for socket in alert_sockets:
            socket.send_text.assert_awaited_once()
            message = json.loads(socket.send_text.await_args.args[0])
            assert message["type"] == "SECURITY_ALERT"
            assert message["payload"]["alert_id"] == result.alert_id
            assert message["payload"]["details"]["source_ip"] == "10.0.0.5"
            assert message["payload"]["details"]["probability"] == pytest.approx(0.82)

    @pytest.mark.asyncio
    async def test_normal_traffic_has_no_alert(
        self, session_factory, hub, device, alert_sockets, predictor_factory, sample_factory
    ):
        await self.subscribe(hub, alert_sockets, device.id)
        service = IDSService(session_factory, hub, predictor_factory(False, 0.05))

        result = await service.analyze_traffic(sample_factory(device.id))

        assert result.is_anomaly is False
        assert result.alert_id is None
        assert await count(session_factory, Alert) == 0
        assert await count(session_factory, IDSDetectionHistory) == 0
        for socket in alert_sockets:
            socket.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_predictor_failure(
        self, session_factory, hub, device, predictor_factory, sample_factory
    ):
        service = IDSService(session_factory, hub, predictor_factory(fail=True))

        assert await service.analyze_traffic(sample_factory(device.id)) is None

        async with session_factory() as session:
            features = (await session.execute(select(NetworkTrafficFeature))).scalars().all()
        assert len(features) == 1
        assert features[0].analyzed_at is None
        assert await count(session_factory, Alert) == 0
        assert service.get_stats()["predictor_errors"] == 1

    @pytest.mark.asyncio
    async def test_without_predictor(self, session_factory, hub, device, sample_factory):
        service = IDSService(session_factory, hub)

        assert service.is_available is False
        assert await service.analyze_traffic(sample_factory(device.id)) is None
        assert await count(session_factory, NetworkTrafficFeature) == 0

    @pytest.mark.asyncio
    async def test_detection_is_idempotent(
        self, session_factory, hub, device, predictor_factory, sample_factory
    ):
        service = IDSService(session_factory, hub, predictor_factory(True, 0.9))
        sample = sample_factory(device.id)
        result = await service.analyze_traffic(sample)

        async with session_factory() as session:
            alert_id, created = await service._store_detection(
                session, sample, result.traffic_feature_id, 0.9, "again"
            )
            row, recorded = await DetectionHistoryRepository(session).record(
                traffic_feature_id=result.traffic_feature_id,
                device_id=device.id,
                is_anomaly=True,
                probability=0.9,
            )
            await session.commit()

        assert created is False
        assert recorded is False
        assert alert_id == result.alert_id
        assert row.alert_id == result.alert_id
        assert await count(session_factory, Alert) == 1
        assert await count(session_factory, IDSDetectionHistory) == 1

    @pytest.mark.asyncio
    async def test_get_anomalies(
        self, session_factory, hub, device, predictor_factory, sample_factory
    ):
        service = IDSService(session_factory, hub, predictor_factory(True, 0.7))
        await service.analyze_traffic(sample_factory(device.id))
        now = datetime.now(UTC)

        recent = await service.get_anomalies(now - timedelta(hours=1), now + timedelta(hours=1))
        old = await service.get_anomalies(now - timedelta(days=2), now - timedelta(days=1))

        assert len(recent) == 1
        assert recent[0].device_id == device.id
        assert old == []

    @pytest.mark.asyncio
    async def test_run_test_detection(
        self, session_factory, hub, device, predictor_factory
    ):
        predictor = predictor_factory(True, 0.95)
        service = IDSService(session_factory, hub, predictor)

        summary = await service.run_test_detection(device.id, "port_scan")

        assert summary == {
            "type": "port_scan",
            "sample_count": 20,
            "analyzed_count": 20,
            "anomaly_count": 20,
            "detection_rate": 100.0,
        }
        assert len(predictor.calls) == 20
        assert await count(session_factory, Alert) == 20
