"""Cold-chain monitor: MQTT state synchronization for refrigeration telemetry devices."""

__version__ = "0.3.0"
