"""Shared fixtures for unit tests.

This module provides reusable fixtures for testing the cold-chain monitor
components without a broker.
"""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from coldchain_monitor.config import MonitorConfig
from coldchain_monitor.models import ConnectionStatus, InboundMessage
from coldchain_monitor.mqtt.synchronizer import StateSynchronizer


@pytest.fixture
def config(tmp_path: Path) -> MonitorConfig:
    """Default configuration with the threshold file kept inside tmp_path."""
    return MonitorConfig(threshold_store_path=tmp_path / "thresholds.yaml")


@pytest.fixture
def synchronizer(config: MonitorConfig) -> StateSynchronizer:
    return StateSynchronizer(config)


@pytest.fixture
def make_message() -> Callable[..., InboundMessage]:
    """Build inbound messages; `at` is the arrival time in seconds."""

    def _make(topic: str, payload: str, at: float = 0.0) -> InboundMessage:
        return InboundMessage(topic=topic, payload=payload, received_at=at)

    return _make


@pytest.fixture
def mock_session() -> MagicMock:
    """Mock TransportSession that is connected and publishes successfully."""
    session: MagicMock = MagicMock()
    session.status = ConnectionStatus.CONNECTED
    session.publish = AsyncMock(return_value=None)
    session.request_reconnect = MagicMock()
    return session
