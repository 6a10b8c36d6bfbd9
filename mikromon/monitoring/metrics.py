"""
Prometheus metrics for the monitoring backend.

Each application instance owns its own registry so tests and multiple apps in
one process do not collide.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from mikromon.utils.logging import get_logger

logger = get_logger(__name__)


class MonitorMetrics:
    """
    Prometheus metrics for the polling and broadcast pipeline.

    Exposes metrics for:
    - Device polls and their duration
    - Collector runs
    - WebSocket broadcasts and connected clients
    - IDS predictions
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        prefix: str = "mikromon",
    ) -> None:
        self._registry = registry or CollectorRegistry()
        self._prefix = prefix

        self._init_polling_metrics()
        self._init_realtime_metrics()
        self._init_ids_metrics()

        logger.debug("Metrics initialized", prefix=prefix)

    def _metric_name(self, name: str) -> str:
        return f"{self._prefix}_{name}"

    def _init_polling_metrics(self) -> None:
        self.polls_total = Counter(
            self._metric_name("polls_total"),
            "Device polls by outcome",
            ["outcome"],
            registry=self._registry,
        )

        self.poll_duration_seconds = Histogram(
            self._metric_name("poll_duration_seconds"),
            "Time taken to poll one device",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )

        self.polls_in_flight = Gauge(
            self._metric_name("polls_in_flight"),
            "Device polls currently running",
            registry=self._registry,
        )

        self.collector_runs_total = Counter(
            self._metric_name("collector_runs_total"),
            "Collector runs by collector and status",
            ["collector", "status"],
            registry=self._registry,
        )

    def _init_realtime_metrics(self) -> None:
        self.broadcasts_total = Counter(
            self._metric_name("broadcasts_total"),
            "Messages broadcast by message type",
            ["type"],
            registry=self._registry,
        )

        self.websocket_clients = Gauge(
            self._metric_name("websocket_clients"),
            "Connected WebSocket clients",
            registry=self._registry,
        )

    def _init_ids_metrics(self) -> None:
        self.ids_predictions_total = Counter(
            self._metric_name("ids_predictions_total"),
            "IDS verdicts by result",
            ["verdict"],
            registry=self._registry,
        )

        self.predictor_errors_total = Counter(
            self._metric_name("predictor_errors_total"),
            "Failed predictor invocations",
            registry=self._registry,
        )

    # ==========================================================================
    # Recording methods
    # ==========================================================================

    def record_poll(self, outcome: str, duration_seconds: float) -> None:
        """Record a finished device poll."""
        self.polls_total.labels(outcome=outcome).inc()
        self.poll_duration_seconds.observe(duration_seconds)

    def set_polls_in_flight(self, count: int) -> None:
        self.polls_in_flight.set(count)

    def record_collector_run(self, collector: str, success: bool) -> None:
        self.collector_runs_total.labels(
            collector=collector, status="success" if success else "error"
        ).inc()

    def record_broadcast(self, message_type: str) -> None:
        self.broadcasts_total.labels(type=message_type).inc()

    def set_websocket_clients(self, count: int) -> None:
        self.websocket_clients.set(count)

    def record_prediction(self, is_anomaly: bool) -> None:
        self.ids_predictions_total.labels(verdict="anomaly" if is_anomaly else "normal").inc()

    def record_predictor_error(self) -> None:
        self.predictor_errors_total.inc()

    # ==========================================================================
    # Export methods
    # ==========================================================================

    def generate_metrics(self) -> bytes:
        """Generate Prometheus metrics output."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def get_registry(self) -> CollectorRegistry:
        return self._registry
