import os
import zoneinfo

import tzlocal

from coldchain_monitor import __version__

__all__ = [
    "ACTUATOR_BEEP",
    "ACTUATOR_OFF",
    "ACTUATOR_ON",
    "COLDCHAIN_DEBUG",
    "COLDCHAIN_LOG_FORMAT",
    "COLDCHAIN_LOG_HUMAN_OUTPUT",
    "COLDCHAIN_LOG_JSON_FILE",
    "COLDCHAIN_VERSION",
    "CONTROL_DISABLE",
    "CONTROL_DISCONNECT",
    "CONTROL_DISPLAY_RESET",
    "CONTROL_ENABLE",
    "CONTROL_STATUS",
    "DEFAULT_BROKER_URL",
    "DEFAULT_TEMP_MAX",
    "DEFAULT_TEMP_MIN",
    "DEFAULT_TOPIC_PREFIX",
    "ENV_PREFIX",
    "LOCAL_TZ",
    "POSITIVE_STATUS_MARKERS",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
LOCAL_TZ: zoneinfo.ZoneInfo = tzlocal.get_localzone()
COLDCHAIN_VERSION: str = __version__
ENV_PREFIX = "COLDCHAIN_"

DEFAULT_BROKER_URL = "wss://broker.hivemq.com:8884/mqtt"
DEFAULT_TOPIC_PREFIX = "cadena-frio"
DEFAULT_TEMP_MIN = 2.0
DEFAULT_TEMP_MAX = 8.0

# Control topic vocabulary
CONTROL_STATUS = "STATUS"
CONTROL_ENABLE = "ENABLE"
CONTROL_DISABLE = "DISABLE"
CONTROL_DISPLAY_RESET = "DISPLAY_RESET"
CONTROL_DISCONNECT = "DISCONNECT"

# Actuator vocabulary
ACTUATOR_ON = "ON"
ACTUATOR_OFF = "OFF"
ACTUATOR_BEEP = "BEEP"

# Free-text status messages containing one of these are reported as success.
# Matching is a plain substring test, so "desconectado" also matches.
POSITIVE_STATUS_MARKERS: tuple[str, ...] = ("conectado", "ÓPTIMA")

COLDCHAIN_DEBUG = os.environ.get("COLDCHAIN_DEBUG", "0").casefold() in YES_ANSWER
COLDCHAIN_LOG_FORMAT: str = os.environ.get("COLDCHAIN_LOG_FORMAT", "human").casefold()
_log_json_file = os.environ.get("COLDCHAIN_LOG_JSON_FILE")
COLDCHAIN_LOG_JSON_FILE: str | None = _log_json_file if _log_json_file else None
COLDCHAIN_LOG_HUMAN_OUTPUT: str = os.environ.get("COLDCHAIN_LOG_HUMAN_OUTPUT", "stdout")
