"""Exception hierarchy for the cold-chain monitor.

None of these are allowed to escape into the event loop: the component that
detects a failure converts it into a log entry and/or a returned value.
"""

from __future__ import annotations


class ColdChainError(Exception):
    """Base class for all cold-chain monitor errors."""


class ConfigError(ColdChainError):
    """Configuration could not be interpreted (bad broker URL, bad file)."""


class TransportError(ColdChainError):
    """Broker transport failure (disconnect, publish failure, broker error)."""


class TransportNotConnectedError(TransportError):
    """Publish attempted while the session is not connected.

    Attributes:
        state: Session status when the publish was attempted

    """

    def __init__(self, state: str = "unknown") -> None:
        """Initialize with the session state at the time of the attempt."""
        self.state: str = state
        super().__init__(f"Transport not connected (state: {state})")


class PublishError(TransportError):
    """Broker rejected or failed a publish.

    Attributes:
        topic: Topic that was being published to
        reason: Transport-reported failure reason

    """

    def __init__(self, topic: str, reason: str) -> None:
        """Initialize publish error with topic and reason."""
        self.topic: str = topic
        self.reason: str = reason
        super().__init__(f"Publish to {topic} failed: {reason}")


class CommandError(ColdChainError):
    """A command intent could not be delivered."""


class TransportUnavailableError(CommandError):
    """No transport session exists; the command fails immediately."""

    def __init__(self) -> None:
        """Initialize transport unavailable error."""
        super().__init__("MQTT client not initialized")


class CommandUndeliverableError(CommandError):
    """Reconnect grace period elapsed without a connected session.

    Attributes:
        topic: Command topic
        grace_seconds: Grace period that was granted

    """

    def __init__(self, topic: str, grace_seconds: float) -> None:
        """Initialize undeliverable error with topic and grace period."""
        self.topic: str = topic
        self.grace_seconds: float = grace_seconds
        super().__init__(f"Could not establish MQTT connection within {grace_seconds:g}s to send command to {topic}")


class ThresholdValidationError(ColdChainError, ValueError):
    """Threshold input failed local validation; nothing was published.

    Attributes:
        field: Name of the offending bound ("min" or "max")
        value: Raw input that failed to parse

    """

    def __init__(self, field: str, value: object) -> None:
        """Initialize validation error with the offending bound."""
        self.field: str = field
        self.value: object = value
        super().__init__(f"Threshold {field} must be a valid number, got {value!r}")
