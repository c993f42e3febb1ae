"""Unit tests for the CLI entry point and component wiring."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest
import yaml

from coldchain_monitor.config import MonitorConfig
from coldchain_monitor.exceptions import ConfigError
from coldchain_monitor.main import ColdChainMonitor, build_intent, build_parser, main
from coldchain_monitor.mqtt.commands import CommandOutcome


def _intent_for(*argv: str):
    return build_intent(build_parser().parse_args(["send", *argv]))


class TestParser:
    def test_defaults_to_run(self):
        args = build_parser().parse_args([])
        assert args.command is None
        assert args.debug is False

    def test_rejects_unknown_state(self):
        with pytest.raises(SystemExit):
            _ = build_parser().parse_args(["send", "relay", "maybe"])


class TestBuildIntent:
    """Tests for mapping `send` arguments onto dispatcher calls."""

    @pytest.mark.parametrize(
        ("argv", "method", "args"),
        [
            (("relay", "on"), "set_relay", (True,)),
            (("led", "off"), "set_led", (False,)),
            (("buzzer", "on"), "set_buzzer", (True,)),
            (("buzzer", "beep"), "beep_buzzer", ()),
            (("system", "disable"), "set_system_enabled", (False,)),
            (("thresholds", "3.5", "9.0"), "update_thresholds", ("3.5", "9.0")),
            (("display-reset",), "reset_display", ()),
            (("status",), "request_status", ()),
        ],
    )
    def test_intent_calls_dispatcher(self, argv, method, args):
        """Test each CLI target calls the matching dispatcher method."""
        dispatcher = MagicMock()
        getattr(dispatcher, method).return_value = "outcome"

        intent = _intent_for(*argv)

        assert intent(dispatcher) == "outcome"
        getattr(dispatcher, method).assert_called_once_with(*args)


class TestMain:
    def test_config_error_exits_with_2(self):
        """Test an invalid configuration never starts the event loop."""
        with (
            patch("coldchain_monitor.main.load_config", side_effect=ConfigError("bad broker URL")),
            patch("coldchain_monitor.main.uvloop.run") as mock_run,
        ):
            assert main(["run"]) == 2

        mock_run.assert_not_called()

    def test_keyboard_interrupt_exits_with_130(self, config: MonitorConfig):
        def _interrupt(coro):
            coro.close()
            raise KeyboardInterrupt

        with (
            patch("coldchain_monitor.main.load_config", return_value=config),
            patch("coldchain_monitor.main.uvloop.run", side_effect=_interrupt),
        ):
            assert main(["run"]) == 130

    def test_exit_code_comes_from_the_loop(self, config: MonitorConfig):
        def _finish(coro):
            coro.close()
            return 1

        with (
            patch("coldchain_monitor.main.load_config", return_value=config),
            patch("coldchain_monitor.main.uvloop.run", side_effect=_finish),
        ):
            assert main(["send", "status"]) == 1


class TestColdChainMonitor:
    """Tests for wiring and teardown of the monitor."""

    def test_saved_thresholds_seed_the_state(self, config: MonitorConfig):
        """Test thresholds on disk become the initial device thresholds."""
        Path(config.threshold_store_path).write_text(
            yaml.safe_dump({"cadena-frio-temp-min": 1.0, "cadena-frio-temp-max": 6.5}),
        )

        monitor = ColdChainMonitor(config)

        assert monitor.synchronizer.state.temp_min == 1.0
        assert monitor.synchronizer.state.temp_max == 6.5
        assert monitor.synchronizer.log.entries()[0].message == "Temperature ranges loaded: min 1.0°C, max 6.5°C"

    @pytest.mark.asyncio
    async def test_stop_tears_down_in_order_once(self, config: MonitorConfig):
        """Test dispatcher, then session, then synchronizer; a second stop is a no-op."""
        monitor = ColdChainMonitor(config)
        order = MagicMock()
        monitor.dispatcher.close = order.dispatcher
        monitor.session.close = AsyncMock(side_effect=lambda: order.session())
        monitor.synchronizer.close = order.synchronizer

        await monitor.stop()
        await monitor.stop()

        assert order.mock_calls == [call.dispatcher(), call.session(), call.synchronizer()]

    @pytest.mark.asyncio
    async def test_send_reports_delivery(self, config: MonitorConfig):
        monitor = ColdChainMonitor(config)
        monitor.session.start = MagicMock()
        monitor.session.wait_connected = AsyncMock(return_value=True)
        monitor.session.close = AsyncMock()
        intent = AsyncMock(return_value=CommandOutcome(None, delivered=True))

        assert await monitor.send(intent) == 0

        intent.assert_awaited_once_with(monitor.dispatcher)
        monitor.session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_send_reports_failure(self, config: MonitorConfig):
        monitor = ColdChainMonitor(config)
        monitor.session.start = MagicMock()
        monitor.session.wait_connected = AsyncMock(return_value=False)
        monitor.session.close = AsyncMock()
        intent = AsyncMock(return_value=CommandOutcome(None, delivered=False, error=RuntimeError("x")))

        assert await monitor.send(intent) == 1
