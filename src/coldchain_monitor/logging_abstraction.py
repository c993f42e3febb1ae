"""Logging for the cold-chain monitor.

Every module gets a `MonitorLogger` from `get_logger(__name__)`. Records can
go to a human-readable stream, a JSON-lines file, or both
(`COLDCHAIN_LOG_FORMAT`). Both formats carry the correlation id of the
inbound message or command being handled, plus any `extra=` context.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast, override

from coldchain_monitor.correlation import get_correlation_id

__all__ = [
    "HumanReadableFormatter",
    "JSONFormatter",
    "MonitorLogger",
    "get_logger",
    "set_package_level",
]

type Context = Mapping[str, object]


def _context_of(record: logging.LogRecord) -> dict[str, object]:
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping):
        return dict(cast("Context", extra_data))
    return {}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }
        if context := _context_of(record):
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class HumanReadableFormatter(logging.Formatter):
    """`time LEVEL [module:line] [corr-id] > message | key=value ...`"""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"
        line = super().format(record)
        context = _context_of(record)
        if not context:
            return line
        return " | ".join([line, *(f"{key}={value}" for key, value in context.items())])


def _open_handler(target: str | Path) -> logging.Handler:
    """Stream handler for "stdout"/"stderr", otherwise an appending file handler.

    A file that cannot be opened falls back to stderr so logging never stops
    the monitor from starting.
    """
    if target == "stdout":
        return logging.StreamHandler(sys.stdout)
    if target == "stderr":
        return logging.StreamHandler(sys.stderr)
    path = Path(target).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(path, mode="a", encoding="utf-8")
    except OSError as e:
        print(f"Warning: cannot open log file {path}: {e}; logging to stderr", file=sys.stderr)
        return logging.StreamHandler(sys.stderr)


class MonitorLogger:
    """Thin wrapper over `logging.Logger` that turns `extra=` into structured context."""

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
        debug: bool = False,
    ) -> None:
        self.name: str = name
        self.log_format: str = log_format
        self.logger: logging.Logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if debug else logging.INFO)
        # Loggers are process-wide; only the first wrapper per name attaches handlers
        if not self.logger.handlers:
            for target, formatter in self._targets(json_file, human_output):
                handler = _open_handler(target)
                handler.setFormatter(formatter)
                handler.setLevel(self.logger.level)
                self.logger.addHandler(handler)

    def _targets(
        self,
        json_file: str | Path | None,
        human_output: str | None,
    ) -> list[tuple[str | Path, logging.Formatter]]:
        targets: list[tuple[str | Path, logging.Formatter]] = []
        if self.log_format in ("json", "both") and json_file:
            targets.append((json_file, JSONFormatter()))
        if self.log_format in ("human", "both"):
            targets.append((human_output or "stdout", HumanReadableFormatter()))
        return targets

    def _log(self, level: int, msg: str, *args: object, extra: Context | None = None, exc_info: bool = False) -> None:
        # stacklevel=3 attributes the record to our caller, not this wrapper
        self.logger.log(
            level,
            msg,
            *args,
            extra={"extra_data": dict(extra)} if extra else None,
            exc_info=exc_info,
            stacklevel=3,
        )

    def debug(self, msg: str, *args: object, extra: Context | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Context | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Context | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Context | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Context | None = None) -> None:
        """Error with the active exception's traceback attached."""
        self._log(logging.ERROR, msg, *args, extra=extra, exc_info=True)

    def log(self, level: int, msg: str, *args: object, extra: Context | None = None) -> None:
        self._log(level, msg, *args, extra=extra)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    @property
    def handlers(self) -> list[logging.Handler]:
        return self.logger.handlers


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> MonitorLogger:
    """Return the logger for `name`, configured from `COLDCHAIN_LOG_*` unless overridden."""
    # Deferred so tests can patch the environment before const is evaluated
    from coldchain_monitor.const import (  # noqa: PLC0415
        COLDCHAIN_DEBUG,
        COLDCHAIN_LOG_FORMAT,
        COLDCHAIN_LOG_HUMAN_OUTPUT,
        COLDCHAIN_LOG_JSON_FILE,
    )

    return MonitorLogger(
        name,
        log_format=log_format or COLDCHAIN_LOG_FORMAT,
        json_file=json_file or COLDCHAIN_LOG_JSON_FILE,
        human_output=human_output or COLDCHAIN_LOG_HUMAN_OUTPUT,
        debug=COLDCHAIN_DEBUG,
    )


def set_package_level(level: int, package: str = "coldchain_monitor") -> None:
    """Apply `level` to every logger already created under `package`."""
    for name in list(logging.Logger.manager.loggerDict):
        if name == package or name.startswith(f"{package}."):
            logger = logging.getLogger(name)
            logger.setLevel(level)
            for handler in logger.handlers:
                handler.setLevel(level)
