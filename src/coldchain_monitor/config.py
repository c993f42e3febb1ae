"""Monitor configuration.

One `MonitorConfig` is built at startup (environment, then an optional YAML
file layered on top) and handed to every component. Nothing else reads the
environment at runtime.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from coldchain_monitor.const import (
    DEFAULT_BROKER_URL,
    DEFAULT_TEMP_MAX,
    DEFAULT_TEMP_MIN,
    DEFAULT_TOPIC_PREFIX,
    ENV_PREFIX,
    POSITIVE_STATUS_MARKERS,
)
from coldchain_monitor.exceptions import ConfigError

_SCHEME_DEFAULTS: dict[str, tuple[str, bool, int]] = {
    # scheme: (aiomqtt transport, tls, default port)
    "mqtt": ("tcp", False, 1883),
    "tcp": ("tcp", False, 1883),
    "mqtts": ("tcp", True, 8883),
    "ssl": ("tcp", True, 8883),
    "ws": ("websockets", False, 80),
    "wss": ("websockets", True, 443),
}


class BrokerEndpoint(BaseModel):
    """Broker URL broken down into the pieces aiomqtt needs."""

    hostname: str
    port: int
    transport: str = "tcp"
    tls: bool = False
    websocket_path: str | None = None

    @classmethod
    def from_url(cls, url: str) -> BrokerEndpoint:
        """Parse `mqtt://`, `mqtts://`, `ws://` or `wss://` broker URLs.

        Raises:
            ConfigError: Unknown scheme or missing host

        """
        parts = urlsplit(url)
        scheme = parts.scheme.casefold()
        if scheme not in _SCHEME_DEFAULTS:
            msg = f"Unsupported broker URL scheme {parts.scheme!r} in {url!r}"
            raise ConfigError(msg)
        if not parts.hostname:
            msg = f"Broker URL {url!r} has no host"
            raise ConfigError(msg)
        transport, tls, default_port = _SCHEME_DEFAULTS[scheme]
        try:
            port = parts.port or default_port
        except ValueError as e:
            msg = f"Broker URL {url!r} has an invalid port"
            raise ConfigError(msg) from e
        websocket_path = (parts.path or "/") if transport == "websockets" else None
        return cls(
            hostname=parts.hostname,
            port=port,
            transport=transport,
            tls=tls,
            websocket_path=websocket_path,
        )


class TopicConfig(BaseModel):
    """Fixed topic set. Alert and actuator topics hang off the topic prefix."""

    temperature: str = f"{DEFAULT_TOPIC_PREFIX}/temperatura"
    humidity: str = f"{DEFAULT_TOPIC_PREFIX}/humedad"
    status: str = f"{DEFAULT_TOPIC_PREFIX}/estado"
    alert: str = f"{DEFAULT_TOPIC_PREFIX}/alertas"
    control: str = f"{DEFAULT_TOPIC_PREFIX}/control/sistema"
    relay: str = f"{DEFAULT_TOPIC_PREFIX}/control/relay"
    buzzer: str = f"{DEFAULT_TOPIC_PREFIX}/control/buzzer"
    led: str = f"{DEFAULT_TOPIC_PREFIX}/control/led"
    thresholds: str = f"{DEFAULT_TOPIC_PREFIX}/control/limites"

    @classmethod
    def for_prefix(cls, prefix: str, **overrides: str | None) -> TopicConfig:
        """Build the topic set for a prefix, honouring explicit overrides."""
        derived = {
            "alert": f"{prefix}/alertas",
            "relay": f"{prefix}/control/relay",
            "buzzer": f"{prefix}/control/buzzer",
            "led": f"{prefix}/control/led",
            "thresholds": f"{prefix}/control/limites",
        }
        derived.update({k: v for k, v in overrides.items() if v})
        return cls(**derived)

    @property
    def subscriptions(self) -> list[str]:
        """Topics the session subscribes to on every (re)connect."""
        return [self.temperature, self.humidity, self.status, self.alert]


class MonitorConfig(BaseModel):
    """Everything the session, synchronizer and dispatcher need."""

    broker_url: str = DEFAULT_BROKER_URL
    username: str | None = None
    password: str | None = None
    topic_prefix: str = DEFAULT_TOPIC_PREFIX
    topics: TopicConfig = Field(default_factory=TopicConfig)

    reconnect_interval_ms: int = Field(default=5000, gt=0)
    # None keeps a fixed retry interval; set it above the interval for exponential backoff
    reconnect_max_interval_ms: int | None = Field(default=None, gt=0)
    reconnect_jitter: float = Field(default=0.0, ge=0.0, le=1.0)
    connect_timeout_ms: int = Field(default=30000, gt=0)
    keepalive_sec: int = Field(default=60, gt=0)
    liveness_interval_ms: int = Field(default=5000, gt=0)
    dedup_window_ms: int = Field(default=2000, ge=0)
    command_grace_ms: int = Field(default=2000, ge=0)

    log_capacity: int = Field(default=50, gt=0)
    default_temp_min: float = DEFAULT_TEMP_MIN
    default_temp_max: float = DEFAULT_TEMP_MAX
    positive_status_markers: tuple[str, ...] = POSITIVE_STATUS_MARKERS
    threshold_store_path: Path = Path("~/.config/coldchain-monitor/thresholds.yaml")
    metrics_port: int | None = None

    @field_validator("broker_url")
    @classmethod
    def _check_broker_url(cls, value: str) -> str:
        try:
            _ = BrokerEndpoint.from_url(value)
        except ConfigError as e:
            raise ValueError(str(e)) from e
        return value

    @property
    def endpoint(self) -> BrokerEndpoint:
        return BrokerEndpoint.from_url(self.broker_url)

    @property
    def reconnect_ceiling_ms(self) -> int:
        """Longest reconnect delay; equals the interval unless backoff is enabled."""
        return max(self.reconnect_max_interval_ms or 0, self.reconnect_interval_ms)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> MonitorConfig:
        """Build a config from `COLDCHAIN_*` environment variables."""
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(f"{ENV_PREFIX}{name}")
            return value.strip() if value and value.strip() else None

        prefix = get("TOPIC_PREFIX") or DEFAULT_TOPIC_PREFIX
        topics = TopicConfig.for_prefix(
            prefix,
            temperature=get("TOPIC_TEMPERATURE"),
            humidity=get("TOPIC_HUMIDITY"),
            status=get("TOPIC_STATUS"),
            control=get("TOPIC_CONTROL"),
        )

        values: dict[str, Any] = {"topic_prefix": prefix, "topics": topics}
        simple = {
            "broker_url": "MQTT_BROKER_URL",
            "username": "MQTT_USERNAME",
            "password": "MQTT_PASSWORD",
            "reconnect_interval_ms": "MQTT_RECONNECT_PERIOD",
            "reconnect_max_interval_ms": "MQTT_RECONNECT_MAX_PERIOD",
            "connect_timeout_ms": "MQTT_CONNECT_TIMEOUT",
            "keepalive_sec": "MQTT_KEEPALIVE",
            "liveness_interval_ms": "LIVENESS_INTERVAL",
            "dedup_window_ms": "DEDUP_WINDOW",
            "command_grace_ms": "COMMAND_GRACE",
            "log_capacity": "LOG_CAPACITY",
            "threshold_store_path": "THRESHOLD_STORE",
            "metrics_port": "METRICS_PORT",
        }
        for field_name, env_name in simple.items():
            value = get(env_name)
            if value is not None:
                values[field_name] = value

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            msg = f"Invalid environment configuration: {e}"
            raise ConfigError(msg) from e

    def merged_with(self, overrides: Mapping[str, Any]) -> MonitorConfig:
        """Return a copy with `overrides` (e.g. from a YAML file) applied and re-validated."""
        data = self.model_dump()
        topic_overrides = overrides.get("topics") or {}
        data.update({k: v for k, v in overrides.items() if k != "topics"})
        if "topic_prefix" in overrides and not topic_overrides:
            data["topics"] = TopicConfig.for_prefix(
                str(overrides["topic_prefix"]),
                temperature=self.topics.temperature,
                humidity=self.topics.humidity,
                status=self.topics.status,
                control=self.topics.control,
            ).model_dump()
        else:
            data["topics"] = {**data["topics"], **topic_overrides}
        try:
            return MonitorConfig.model_validate(data)
        except ValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigError(msg) from e


def load_config(path: Path | None = None, environ: Mapping[str, str] | None = None) -> MonitorConfig:
    """Load config from the environment, then layer a YAML file over it.

    Raises:
        ConfigError: File unreadable, not a mapping, or values invalid

    """
    config = MonitorConfig.from_env(environ)
    if path is None:
        return config

    cfg_path = path.expanduser().resolve()
    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        msg = f"Failed to read config file {cfg_path}: {e}"
        raise ConfigError(msg) from e

    if raw is None:
        return config
    if not isinstance(raw, dict):
        msg = f"Config file {cfg_path} must contain a mapping"
        raise ConfigError(msg)
    return config.merged_with(raw)
