"""Inbound payload shapes and their parsers.

A device publishes three kinds of payload: a bare decimal reading, a JSON
status record, or free text. Each gets its own variant and parser, and status
records go through an explicit field resolution table instead of ad hoc
probing.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "FIELD_NAMES",
    "FreeText",
    "InboundPayload",
    "ScalarReading",
    "StatusRecord",
    "clean_text",
    "parse_scalar",
    "parse_status",
    "resolve_fields",
]


@dataclass(frozen=True, slots=True)
class ScalarReading:
    value: float


@dataclass(frozen=True, slots=True)
class StatusRecord:
    """A JSON object from the status topic, still unvalidated."""

    fields: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class FreeText:
    text: str


type InboundPayload = ScalarReading | StatusRecord | FreeText


def _is_number(value: Any) -> bool:
    # bool is an int subclass; JSON true/false never count as numbers
    if not isinstance(value, int | float) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints beyond float range
        return False


def _as_float(value: Any) -> float | None:
    return float(value) if _is_number(value) else None


def _as_humidity(value: Any) -> float | None:
    number = _as_float(value)
    return number if number is not None and 0.0 <= number <= 100.0 else None


def _as_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def _as_counter(value: Any) -> int | None:
    if not _is_number(value) or value < 0 or float(value) != int(value):
        return None
    return int(value)


# state field: (localized key, internal key, validator)
FIELD_NAMES: dict[str, tuple[str, str, Callable[[Any], Any]]] = {
    "temperature": ("temperatura", "temperature", _as_float),
    "humidity": ("humedad", "humidity", _as_humidity),
    "temp_min": ("temp_min", "tempMin", _as_float),
    "temp_max": ("temp_max", "tempMax", _as_float),
    "temp_min_day": ("temp_min_dia", "tempMinDay", _as_float),
    "temp_max_day": ("temp_max_dia", "tempMaxDay", _as_float),
    "system_enabled": ("sistema_habilitado", "systemEnabled", _as_bool),
    "alert_active": ("alerta_activa", "alertActive", _as_bool),
    "wifi_connected": ("wifi_conectado", "wifiConnected", _as_bool),
    "mqtt_connected": ("mqtt_conectado", "mqttConnected", _as_bool),
    "uptime": ("tiempo_activo", "uptime", _as_counter),
    "readings_successful": ("lecturas_exitosas", "readingsSuccessful", _as_counter),
    "sendings_successful": ("envios_exitosos", "sendingsSuccessful", _as_counter),
    "display_available": ("display_disponible", "displayAvailable", _as_bool),
}

_NON_PRINTABLE = re.compile(r"[^\x20-\x7E\u00A0-\uFFFF]")


def parse_scalar(payload: str) -> ScalarReading | None:
    """Parse a bare decimal reading; None for anything else (including nan/inf)."""
    try:
        value = float(payload.strip())
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return ScalarReading(value)


def parse_status(payload: str) -> StatusRecord | FreeText:
    """Parse a status-topic payload.

    Only a JSON object counts as a structured record; other JSON values and
    unparsable text fall back to free text.
    """
    try:
        data = json.loads(payload)
    except (ValueError, RecursionError):
        # JSONDecodeError, and over-long integer literals
        data = None
    if isinstance(data, dict):
        return StatusRecord(data)
    return FreeText(clean_text(payload))


def clean_text(payload: str) -> str:
    """Drop control characters and surrounding whitespace."""
    return _NON_PRINTABLE.sub("", payload).strip()


def resolve_fields(record: StatusRecord) -> dict[str, Any]:
    """Validated updates from a status record, keyed by `DeviceState` field.

    The localized key wins when present and valid; otherwise the internal key
    is tried. Fields with no valid value under either name are left out.
    """
    updates: dict[str, Any] = {}
    for state_field, (localized, internal, validate) in FIELD_NAMES.items():
        for key in (localized, internal):
            if key not in record.fields:
                continue
            value = validate(record.fields[key])
            if value is not None:
                updates[state_field] = value
                break
    return updates
