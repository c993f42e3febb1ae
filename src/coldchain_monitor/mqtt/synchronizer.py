"""State synchronizer: inbound messages -> DeviceState + activity log.

Receives raw messages from the transport session, drops short-window
duplicates, parses each topic's payload shape and merges only validated
fields into the device snapshot. Everything worth telling an operator is
appended to the bounded `LogBuffer`.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from coldchain_monitor import metrics
from coldchain_monitor.config import MonitorConfig
from coldchain_monitor.log_buffer import LogBuffer
from coldchain_monitor.logging_abstraction import get_logger
from coldchain_monitor.models import (
    ConnectionStatus,
    DeviceState,
    InboundMessage,
    LogEntry,
    Severity,
    StatisticsSnapshot,
    Thresholds,
)
from coldchain_monitor.mqtt.dedup import RecentMessageCache
from coldchain_monitor.mqtt.payloads import FreeText, parse_scalar, parse_status, resolve_fields

logger = get_logger(__name__)


class StateSynchronizer:
    """Owner of the device snapshot and the activity log.

    Also acts as the transport session's listener so connection events end up
    in the same log stream as device messages. Only this class mutates
    `state` and `log`; everyone else reads.
    """

    lp: str = "sync:"

    def __init__(
        self,
        config: MonitorConfig,
        *,
        thresholds: Thresholds | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config: MonitorConfig = config
        self.state: DeviceState = DeviceState(temp_min=config.default_temp_min, temp_max=config.default_temp_max)
        self.log: LogBuffer = LogBuffer(capacity=config.log_capacity)
        self.statistics: StatisticsSnapshot | None = None
        self.connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
        self._recent: RecentMessageCache = RecentMessageCache(window=config.dedup_window_ms / 1000, clock=clock)
        self._closed: bool = False

        topics = config.topics
        self._handlers: dict[str, Callable[[str], str]] = {
            topics.temperature: self._handle_temperature,
            topics.humidity: self._handle_humidity,
            topics.status: self._handle_status,
            topics.alert: self._handle_alert,
        }
        if thresholds is not None:
            self.seed_thresholds(thresholds)

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> DeviceState:
        """Copy of the current device state for readers."""
        return self.state.model_copy()

    def record(self, severity: Severity, message: str) -> LogEntry | None:
        """Append to the activity log. No-op once closed."""
        if self._closed:
            return None
        return self.log.append(severity, message)

    # -- inbound messages -------------------------------------------------

    def handle_message(self, message: InboundMessage) -> bool:
        """Process one inbound message.

        Returns:
            False if the message was dropped as a duplicate (or after close)

        """
        if self._closed:
            return False
        topic, payload = message.topic, message.payload
        if self._recent.check_and_remember(topic, payload, message.received_at):
            logger.debug("%s duplicate ignored: %s %r", self.lp, topic, payload)
            metrics.messages_total.labels(topic=topic, outcome="duplicate").inc()
            return False

        _ = self.record(Severity.INFO, f"{topic}: {payload}")
        handler = self._handlers.get(topic)
        if handler is None:
            logger.debug("%s no handler for topic %s", self.lp, topic)
            outcome = "unhandled"
        else:
            outcome = handler(payload)
        metrics.messages_total.labels(topic=topic, outcome=outcome).inc()
        return True

    def _handle_temperature(self, payload: str) -> str:
        reading = parse_scalar(payload)
        if reading is None:
            logger.debug("%s unparsable temperature %r", self.lp, payload)
            return "discarded"
        self.state.temperature = reading.value
        return "applied"

    def _handle_humidity(self, payload: str) -> str:
        reading = parse_scalar(payload)
        if reading is None or not 0.0 <= reading.value <= 100.0:
            logger.debug("%s unusable humidity %r", self.lp, payload)
            return "discarded"
        self.state.humidity = reading.value
        return "applied"

    def _handle_alert(self, payload: str) -> str:
        _ = self.record(Severity.WARNING, f"ALERT: {payload}")
        return "alert"

    def _handle_status(self, payload: str) -> str:
        parsed = parse_status(payload)
        if isinstance(parsed, FreeText):
            positive = any(marker in parsed.text for marker in self.config.positive_status_markers)
            _ = self.record(Severity.SUCCESS if positive else Severity.INFO, f"System status: {parsed.text}")
            return "text"

        updates = resolve_fields(parsed)
        if not updates:
            return "empty"
        for name, value in updates.items():
            setattr(self.state, name, value)
        logger.debug("%s merged %s", self.lp, sorted(updates))

        if "temp_min_day" in updates:
            _ = self.record(Severity.INFO, f"Daily minimum temperature updated: {updates['temp_min_day']:.1f}°C")
        if "temp_max_day" in updates:
            _ = self.record(Severity.INFO, f"Daily maximum temperature updated: {updates['temp_max_day']:.1f}°C")
        if "display_available" in updates:
            _ = self.record(Severity.INFO, f"Display status: {'OK' if updates['display_available'] else 'Error'}")
        self._check_thresholds(updates)
        return "applied"

    def _check_thresholds(self, updates: dict[str, Any]) -> None:
        # Only bounds carried by the same record count; stored thresholds may be stale
        temperature = updates.get("temperature")
        if temperature is None:
            return
        temp_min = updates.get("temp_min")
        temp_max = updates.get("temp_max")
        if temp_min is not None and temperature < temp_min:
            _ = self.record(
                Severity.WARNING,
                f"Temperature below minimum: {temperature:.1f}°C (min: {temp_min:.1f}°C)",
            )
        elif temp_max is not None and temperature > temp_max:
            _ = self.record(
                Severity.WARNING,
                f"Temperature above maximum: {temperature:.1f}°C (max: {temp_max:.1f}°C)",
            )

    # -- thresholds and statistics ---------------------------------------

    def apply_thresholds(self, temp_min: float, temp_max: float) -> Thresholds:
        """Set the operator thresholds after a threshold update."""
        if not self._closed:
            self.state.temp_min = temp_min
            self.state.temp_max = temp_max
        return Thresholds(temp_min=self.state.temp_min, temp_max=self.state.temp_max)

    def seed_thresholds(self, thresholds: Thresholds) -> None:
        """Seed the snapshot from persisted thresholds at startup."""
        self.state.temp_min = thresholds.temp_min
        self.state.temp_max = thresholds.temp_max
        _ = self.record(
            Severity.INFO,
            f"Temperature ranges loaded: min {thresholds.temp_min:.1f}°C, max {thresholds.temp_max:.1f}°C",
        )

    def replace_statistics(self, snapshot: StatisticsSnapshot) -> None:
        if self._closed:
            return
        self.statistics = snapshot

    # -- SessionListener --------------------------------------------------

    def session_status_changed(self, status: ConnectionStatus) -> None:
        if self._closed:
            return
        self.connection_status = status

    def session_connected(self, reconnected: bool) -> None:
        _ = self.record(Severity.SUCCESS, "Reconnected to MQTT broker" if reconnected else "Connected to MQTT broker")

    def session_connecting(self, attempt: int, delay: float) -> None:
        _ = self.record(
            Severity.WARNING,
            f"Attempting to reconnect to MQTT broker (attempt {attempt}, in {delay:.1f}s)",
        )

    def session_connection_lost(self, error: Exception) -> None:
        _ = self.record(Severity.WARNING, f"MQTT connection lost, reconnecting: {error}")

    def session_error(self, error: Exception) -> None:
        _ = self.record(Severity.ERROR, f"MQTT error: {error}")

    def session_closed(self) -> None:
        _ = self.record(Severity.INFO, "Disconnected from MQTT broker")

    def message_received(self, message: InboundMessage) -> None:
        _ = self.handle_message(message)

    def close(self) -> None:
        """Cancel pending dedup expiries; later events are ignored."""
        if self._closed:
            return
        self._recent.close()
        self._closed = True
        logger.debug("%s closed with %d log entries", self.lp, len(self.log))
