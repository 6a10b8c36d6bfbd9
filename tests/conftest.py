"""
Shared test fixtures and configuration.
"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from starlette.websockets import WebSocketState

from config.settings import (
    AppSettings,
    ConnectionSettings,
    DatabaseSettings,
    IDSSettings,
    SchedulerSettings,
)
from mikromon.connections.types import TrafficSample
from mikromon.errors import PredictorError
from mikromon.ids.predictor import Predictor, Verdict
from mikromon.realtime.hub import BroadcastHub
from mikromon.storage.database import close_db, create_engine, create_session_factory, init_db
from mikromon.storage.models import Device

# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def test_settings() -> AppSettings:
    """Settings for an isolated in-memory application."""
    return AppSettings(
        env="development",
        debug=True,
        log_level="WARNING",
        log_format="console",
        database=DatabaseSettings(url="sqlite+aiosqlite:///:memory:"),
        scheduler=SchedulerSettings(
            enabled=False,
            polling_interval_ms=60000,
            min_polling_interval_ms=5000,
            max_concurrent_devices=2,
            poll_timeout_seconds=5.0,
        ),
        connection=ConnectionSettings(emission_interval_seconds=60.0, simulated_seed=7),
        ids=IDSSettings(enabled=False),
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory database with the full schema."""
    engine = create_engine(DatabaseSettings(url="sqlite+aiosqlite:///:memory:"))
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


async def add_device(
    session_factory: async_sessionmaker[AsyncSession], **overrides: Any
) -> Device:
    """Insert a device row and return it."""
    values: dict[str, Any] = {
        "name": "core-router",
        "address": "192.168.88.1",
        "username": "admin",
        "password": "secret",
        "port": 8728,
    }
    values.update(overrides)
    async with session_factory() as session:
        device = Device(**values)
        session.add(device)
        await session.commit()
        return device


@pytest_asyncio.fixture
async def device(session_factory: async_sessionmaker[AsyncSession]) -> Device:
    return await add_device(session_factory)


# ============================================================================
# Realtime Fixtures
# ============================================================================


def make_websocket() -> MagicMock:
    """A connected WebSocket double that records what it is sent."""
    websocket = MagicMock()
    websocket.client_state = WebSocketState.CONNECTED
    websocket.send_text = AsyncMock()
    websocket.close = AsyncMock()
    return websocket


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub()


# ============================================================================
# IDS Fixtures
# ============================================================================


class FakePredictor(Predictor):
    """Predictor returning a fixed verdict, or failing."""

    def __init__(self, is_anomaly: bool = False, probability: float = 0.1, fail: bool = False):
        self.is_anomaly = is_anomaly
        self.probability = probability
        self.fail = fail
        self.calls: list[dict[str, float]] = []

    async def predict(self, features: dict[str, float]) -> Verdict:
        self.calls.append(features)
        if self.fail:
            raise PredictorError("Predictor exited with code 1")
        return Verdict(is_anomaly=self.is_anomaly, probability=self.probability)


def make_sample(device_id: int, **overrides: Any) -> TrafficSample:
    values: dict[str, Any] = {
        "device_id": device_id,
        "source_ip": "10.0.0.5",
        "destination_ip": "192.168.88.1",
        "source_port": 51515,
        "destination_port": 22,
        "protocol": "tcp",
        "bytes": 12000,
        "packet_count": 40,
        "flow_duration": 2000.0,
        "timestamp": datetime.now(UTC),
    }
    values.update(overrides)
    return TrafficSample(**values)


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest.fixture
def make_device(session_factory: async_sessionmaker[AsyncSession]):
    """Async factory inserting device rows."""

    async def factory(**overrides: Any) -> Device:
        return await add_device(session_factory, **overrides)

    return factory


@pytest.fixture
def websocket_factory():
    return make_websocket


@pytest.fixture
def sample_factory():
    return make_sample


@pytest.fixture
def predictor_factory():
    return FakePredictor
