"""Core data structures for the cold-chain monitor."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

__all__ = [
    "ConnectionStatus",
    "DeviceState",
    "InboundMessage",
    "LogEntry",
    "Severity",
    "StatisticsSnapshot",
    "Thresholds",
]


class ConnectionStatus(StrEnum):
    """Dashboard-side transport status, owned by the transport session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Severity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class DeviceState(BaseModel):
    """Last known state of the refrigeration device.

    Mutated field by field by the state synchronizer; never replaced.
    `wifi_connected`/`mqtt_connected` are what the device reports about its
    own links, not the dashboard's broker connection.
    """

    temperature: float = 0.0
    humidity: float = 0.0
    temp_min: float = 2.0
    temp_max: float = 8.0
    temp_min_day: float = 0.0
    temp_max_day: float = 0.0
    alert_active: bool = False
    system_enabled: bool = True
    wifi_connected: bool = False
    mqtt_connected: bool = False
    uptime: int = 0
    readings_successful: int = 0
    sendings_successful: int = 0
    display_available: bool = False


class LogEntry(BaseModel):
    """One line of the human-readable activity log."""

    model_config = ConfigDict(frozen=True)

    id: int
    timestamp: datetime
    severity: Severity
    message: str


class Thresholds(BaseModel):
    """Operator-configured alarm thresholds."""

    temp_min: float
    temp_max: float


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """Raw message as delivered by the transport session."""

    topic: str
    payload: str
    received_at: float


def _feed_float(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _feed_flag(value: Any) -> bool | None:
    if value is None:
        return None
    return str(value).strip() == "1"


class StatisticsSnapshot(BaseModel):
    """Most recent record from the external data-logging service.

    Read-only and displayed next to `DeviceState`; it is replaced wholesale
    on every successful poll and never merged into the device snapshot.
    """

    model_config = ConfigDict(frozen=True)

    temperature: float | None = None
    humidity: float | None = None
    temp_min_day: float | None = None
    temp_max_day: float | None = None
    alert_active: bool | None = None
    display_available: bool | None = None
    recorded_at: datetime | None = None
    sequence_id: int | None = None

    @classmethod
    def from_feed(cls, feed: dict[str, Any]) -> StatisticsSnapshot:
        """Build from a channel feed record (`field1`..`field6`, `created_at`, `entry_id`)."""
        entry_id = feed.get("entry_id")
        return cls(
            temperature=_feed_float(feed.get("field1")),
            humidity=_feed_float(feed.get("field2")),
            temp_min_day=_feed_float(feed.get("field3")),
            temp_max_day=_feed_float(feed.get("field4")),
            alert_active=_feed_flag(feed.get("field5")),
            display_available=_feed_flag(feed.get("field6")),
            recorded_at=feed.get("created_at"),
            sequence_id=int(entry_id) if isinstance(entry_id, int | str) and str(entry_id).isdigit() else None,
        )
