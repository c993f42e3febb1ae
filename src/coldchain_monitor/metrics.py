"""Prometheus metrics for the cold-chain monitor."""

from typing import Final

from prometheus_client import Counter, Gauge, start_http_server

from coldchain_monitor.logging_abstraction import get_logger
from coldchain_monitor.models import ConnectionStatus

logger = get_logger(__name__)

messages_total: Final = Counter(
    "coldchain_messages_total",
    "Inbound MQTT messages by handling outcome",
    ["topic", "outcome"],
)

commands_total: Final = Counter(
    "coldchain_commands_total",
    "Outbound commands by delivery outcome",
    ["topic", "outcome"],
)

reconnect_attempts_total: Final = Counter(
    "coldchain_reconnect_attempts_total",
    "Broker connection attempts after the first",
)

session_state: Final = Gauge(
    "coldchain_session_state",
    "Current transport session state (1 for the active state)",
    ["state"],
)


def record_session_state(status: ConnectionStatus) -> None:
    for state in ConnectionStatus:
        session_state.labels(state=state.value).set(1 if state is status else 0)


def start_metrics_server(port: int) -> None:
    """Expose /metrics on `port`. Failure to bind is logged, not fatal."""
    try:
        start_http_server(port)
    except OSError as e:
        logger.warning("Failed to start metrics server on port %s: %s", port, e)
    else:
        logger.info("Metrics server listening on port %s", port)
