"""Command dispatcher: operator intents -> exactly one publish each.

If the session is not connected when a command is issued, the dispatcher asks
for a reconnect and waits one grace period. A command that still cannot be
sent is reported as undeliverable; nothing is queued or retried.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass

from coldchain_monitor import metrics
from coldchain_monitor.config import MonitorConfig
from coldchain_monitor.const import (
    ACTUATOR_BEEP,
    ACTUATOR_OFF,
    ACTUATOR_ON,
    CONTROL_DISABLE,
    CONTROL_DISPLAY_RESET,
    CONTROL_ENABLE,
    CONTROL_STATUS,
)
from coldchain_monitor.correlation import correlation_context
from coldchain_monitor.exceptions import (
    ColdChainError,
    CommandUndeliverableError,
    ThresholdValidationError,
    TransportUnavailableError,
)
from coldchain_monitor.logging_abstraction import get_logger
from coldchain_monitor.models import ConnectionStatus, Severity, Thresholds
from coldchain_monitor.mqtt.session import TransportSession
from coldchain_monitor.mqtt.synchronizer import StateSynchronizer
from coldchain_monitor.threshold_store import ThresholdStore

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DeviceCommand:
    """A single outbound publish."""

    topic: str
    payload: str


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    command: DeviceCommand | None
    delivered: bool
    error: Exception | None = None


def parse_bound(field: str, text: str) -> float:
    """Parse one threshold bound.

    Raises:
        ThresholdValidationError: Not a finite number

    """
    try:
        value = float(str(text).strip())
    except ValueError:
        raise ThresholdValidationError(field, text) from None
    if not math.isfinite(value):
        raise ThresholdValidationError(field, text)
    return value


def format_bound(value: float) -> str:
    """Render a bound the way the firmware expects: 9.0 -> "9", 3.5 -> "3.5"."""
    if value.is_integer():
        return str(int(value))
    return repr(value)


def thresholds_payload(temp_min: float, temp_max: float) -> str:
    return f"MIN:{format_bound(temp_min)},MAX:{format_bound(temp_max)}"


class CommandDispatcher:
    """Turns command intents into publishes on the transport session."""

    lp: str = "commands:"

    def __init__(
        self,
        session: TransportSession | None,
        synchronizer: StateSynchronizer,
        config: MonitorConfig,
        *,
        store: ThresholdStore | None = None,
    ) -> None:
        self.session: TransportSession | None = session
        self.synchronizer: StateSynchronizer = synchronizer
        self.config: MonitorConfig = config
        self.store: ThresholdStore | None = store
        # Last commanded actuator states; the device does not report these back
        self.actuators: dict[str, bool] = {"relay": False, "buzzer": False, "led": False}
        self._closing: asyncio.Event = asyncio.Event()

    @property
    def grace_seconds(self) -> float:
        return self.config.command_grace_ms / 1000

    @property
    def closed(self) -> bool:
        return self._closing.is_set()

    def _fail(self, command: DeviceCommand | None, error: ColdChainError, outcome: str) -> CommandOutcome:
        _ = self.synchronizer.record(Severity.ERROR, str(error))
        if command is not None:
            metrics.commands_total.labels(topic=command.topic, outcome=outcome).inc()
        return CommandOutcome(command, delivered=False, error=error)

    async def send(self, command: DeviceCommand) -> CommandOutcome:
        """Publish `command` once, with a single reconnect grace period if needed."""
        lp = f"{self.lp}send:"
        if self.closed:
            return CommandOutcome(command, delivered=False, error=CommandUndeliverableError(command.topic, 0))

        with correlation_context():
            session = self.session
            if session is None:
                logger.error("%s no transport session for %s", lp, command.topic)
                return self._fail(command, TransportUnavailableError(), "unavailable")

            if session.status is not ConnectionStatus.CONNECTED:
                _ = self.synchronizer.record(Severity.WARNING, "Trying to send a command without an MQTT connection")
                session.request_reconnect()
                try:
                    _ = await asyncio.wait_for(self._closing.wait(), timeout=self.grace_seconds)
                except TimeoutError:
                    pass
                else:
                    # Torn down mid-wait: report undelivered without touching the log
                    logger.debug("%s dispatcher closed during grace period for %s", lp, command.topic)
                    return CommandOutcome(
                        command,
                        delivered=False,
                        error=CommandUndeliverableError(command.topic, self.grace_seconds),
                    )
                if session.status is not ConnectionStatus.CONNECTED:
                    logger.warning("%s still not connected after %.1fs", lp, self.grace_seconds)
                    return self._fail(
                        command,
                        CommandUndeliverableError(command.topic, self.grace_seconds),
                        "undeliverable",
                    )

            error = await session.publish(command.topic, command.payload, qos=1, retain=False)
            if error is not None:
                _ = self.synchronizer.record(
                    Severity.ERROR,
                    f"Failed to send command - {command.topic}: {command.payload} ({error})",
                )
                metrics.commands_total.labels(topic=command.topic, outcome="failed").inc()
                return CommandOutcome(command, delivered=False, error=error)

            _ = self.synchronizer.record(Severity.SUCCESS, f"Command sent - {command.topic}: {command.payload}")
            metrics.commands_total.labels(topic=command.topic, outcome="sent").inc()
            return CommandOutcome(command, delivered=True)

    # -- actuators --------------------------------------------------------

    async def _set_actuator(self, name: str, topic: str, on: bool) -> CommandOutcome:
        self.actuators[name] = on
        return await self.send(DeviceCommand(topic, ACTUATOR_ON if on else ACTUATOR_OFF))

    async def set_relay(self, on: bool) -> CommandOutcome:
        return await self._set_actuator("relay", self.config.topics.relay, on)

    async def toggle_relay(self) -> CommandOutcome:
        return await self.set_relay(not self.actuators["relay"])

    async def set_buzzer(self, on: bool) -> CommandOutcome:
        return await self._set_actuator("buzzer", self.config.topics.buzzer, on)

    async def toggle_buzzer(self) -> CommandOutcome:
        return await self.set_buzzer(not self.actuators["buzzer"])

    async def beep_buzzer(self) -> CommandOutcome:
        """Momentary buzzer pulse; leaves the latched buzzer state alone."""
        return await self.send(DeviceCommand(self.config.topics.buzzer, ACTUATOR_BEEP))

    async def set_led(self, on: bool) -> CommandOutcome:
        return await self._set_actuator("led", self.config.topics.led, on)

    async def toggle_led(self) -> CommandOutcome:
        return await self.set_led(not self.actuators["led"])

    # -- system control ---------------------------------------------------

    async def set_system_enabled(self, enabled: bool) -> CommandOutcome:
        return await self.send(DeviceCommand(self.config.topics.control, CONTROL_ENABLE if enabled else CONTROL_DISABLE))

    async def toggle_system(self) -> CommandOutcome:
        """Flip the device's reported enable flag."""
        return await self.set_system_enabled(not self.synchronizer.state.system_enabled)

    async def reset_display(self) -> CommandOutcome:
        outcome = await self.send(DeviceCommand(self.config.topics.control, CONTROL_DISPLAY_RESET))
        if not self.closed:
            _ = self.synchronizer.record(Severity.INFO, "Display reset command sent")
        return outcome

    async def request_status(self) -> CommandOutcome:
        return await self.send(DeviceCommand(self.config.topics.control, CONTROL_STATUS))

    # -- thresholds -------------------------------------------------------

    async def update_thresholds(self, min_text: str, max_text: str) -> CommandOutcome:
        """Validate, publish `MIN:<n>,MAX:<n>`, then apply and persist locally.

        Valid thresholds are applied and saved whether or not the publish was
        delivered; `send()` already logs the delivery outcome.
        """
        try:
            temp_min = parse_bound("min", min_text)
            temp_max = parse_bound("max", max_text)
        except ThresholdValidationError as e:
            logger.info("%s rejected threshold input: %s", self.lp, e)
            _ = self.synchronizer.record(Severity.ERROR, "Thresholds must be valid numbers")
            metrics.commands_total.labels(topic=self.config.topics.thresholds, outcome="invalid").inc()
            return CommandOutcome(None, delivered=False, error=e)

        command = DeviceCommand(self.config.topics.thresholds, thresholds_payload(temp_min, temp_max))
        outcome = await self.send(command)
        if self.closed:
            return outcome

        thresholds: Thresholds = self.synchronizer.apply_thresholds(temp_min, temp_max)
        saved = self.store is None or await self.store.save(thresholds)
        if saved:
            _ = self.synchronizer.record(
                Severity.SUCCESS,
                f"Temperature limits updated and saved: min {format_bound(temp_min)}°C, max {format_bound(temp_max)}°C",
            )
        else:
            _ = self.synchronizer.record(
                Severity.WARNING,
                f"Temperature limits updated but not saved: min {format_bound(temp_min)}°C, "
                f"max {format_bound(temp_max)}°C",
            )
        return outcome

    def close(self) -> None:
        """Resolve pending grace waits as undelivered; later sends fail silently."""
        if self.closed:
            return
        self._closing.set()
        logger.debug("%s closed", self.lp)
