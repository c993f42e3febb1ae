"""Unit tests for the logging abstraction and correlation ids."""

from __future__ import annotations

import asyncio
import json
import logging

from coldchain_monitor.correlation import correlation_context, get_correlation_id, new_correlation_id
from coldchain_monitor.logging_abstraction import (
    HumanReadableFormatter,
    JSONFormatter,
    MonitorLogger,
    get_logger,
    set_package_level,
)


def _record(msg: str = "hello %s", args: tuple[object, ...] = ("world",)) -> logging.LogRecord:
    return logging.LogRecord("coldchain_monitor.test", logging.INFO, __file__, 10, msg, args, None)


class TestCorrelation:
    """Tests for correlation id scoping."""

    def test_new_ids_are_unique_hex(self):
        """Test ids are 32-char UUID4 hex and unique."""
        ids = {new_correlation_id() for _ in range(10)}
        assert len(ids) == 10
        assert all(len(i) == 32 for i in ids)

    def test_context_sets_and_restores(self):
        """Test nested contexts restore the outer id on exit."""
        assert get_correlation_id() is None
        with correlation_context("outer") as outer:
            assert outer == "outer"
            with correlation_context() as inner:
                assert get_correlation_id() == inner
                assert inner != "outer"
            assert get_correlation_id() == "outer"
        assert get_correlation_id() is None

    async def _read_in_task(self) -> str | None:
        await asyncio.sleep(0)
        return get_correlation_id()

    def test_tasks_inherit_the_context(self):
        """Test a task created inside a context sees its id."""

        async def _main() -> str | None:
            with correlation_context("cmd-1"):
                return await asyncio.create_task(self._read_in_task())

        assert asyncio.run(_main()) == "cmd-1"


class TestFormatters:
    """Tests for JSON and human-readable formatters."""

    def test_json_formatter_includes_correlation_and_context(self):
        """Test JSON output carries the message, correlation id and extra context."""
        record = _record()
        record.extra_data = {"topic": "cadena-frio/estado"}
        with correlation_context("abc123"):
            data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "hello world"
        assert data["level"] == "INFO"
        assert data["correlation_id"] == "abc123"
        assert data["context"] == {"topic": "cadena-frio/estado"}

    def test_human_formatter_shows_short_correlation_id(self):
        """Test the human format shows the first 8 chars of the id."""
        with correlation_context("0123456789abcdef"):
            line = HumanReadableFormatter().format(_record())

        assert "[01234567]" in line
        assert line.endswith("> hello world")

    def test_human_formatter_placeholder_without_correlation(self):
        line = HumanReadableFormatter().format(_record())
        assert "[--------]" in line


class TestLoggerLevels:
    def test_set_package_level_reaches_every_module_logger(self):
        """Test --debug style level changes apply to all package loggers."""
        a = get_logger("coldchain_monitor.level_test_a")
        b = get_logger("coldchain_monitor.level_test_b")
        other = logging.getLogger("someone_else")
        other.setLevel(logging.WARNING)

        set_package_level(logging.DEBUG)

        assert a.logger.level == logging.DEBUG
        assert b.logger.level == logging.DEBUG
        assert all(h.level == logging.DEBUG for h in a.handlers)
        assert other.level == logging.WARNING

        set_package_level(logging.INFO)

    def test_both_formats_write_json_lines_to_file(self, tmp_path):
        """Test "both" attaches a JSON file handler next to the console handler."""
        json_path = tmp_path / "logs" / "monitor.jsonl"
        log = MonitorLogger("coldchain_monitor.both_format_test", log_format="both", json_file=json_path)

        log.info("threshold %s", "saved", extra={"prefix": "cadena-frio"})
        for handler in log.handlers:
            handler.flush()

        assert len(log.handlers) == 2
        entry = json.loads(json_path.read_text().splitlines()[-1])
        assert entry["message"] == "threshold saved"
        assert entry["context"] == {"prefix": "cadena-frio"}
        assert entry["location"].startswith("test_logging_abstraction:")
        for handler in list(log.handlers):
            log.logger.removeHandler(handler)
            handler.close()

    def test_unopenable_file_falls_back_to_stderr(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        _ = blocker.write_text("")

        log = MonitorLogger(
            "coldchain_monitor.fallback_test",
            log_format="human",
            human_output=str(blocker / "monitor.log"),
        )

        assert len(log.handlers) == 1
        assert isinstance(log.handlers[0], logging.StreamHandler)
        assert not isinstance(log.handlers[0], logging.FileHandler)
