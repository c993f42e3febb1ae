from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable, Sequence
from functools import partial
from pathlib import Path

import dotenv
import uvloop

from coldchain_monitor.config import MonitorConfig, load_config
from coldchain_monitor.const import COLDCHAIN_DEBUG, COLDCHAIN_VERSION
from coldchain_monitor.correlation import correlation_context
from coldchain_monitor.exceptions import ConfigError
from coldchain_monitor.logging_abstraction import get_logger, set_package_level
from coldchain_monitor.metrics import start_metrics_server
from coldchain_monitor.mqtt.commands import CommandDispatcher, CommandOutcome
from coldchain_monitor.mqtt.session import TransportSession
from coldchain_monitor.mqtt.synchronizer import StateSynchronizer
from coldchain_monitor.threshold_store import ThresholdStore

logger = get_logger(__name__)

# paho/aiomqtt chatter is not useful at INFO
logging.getLogger("mqtt").setLevel(logging.ERROR)

type Intent = Callable[[CommandDispatcher], Awaitable[CommandOutcome]]


class ColdChainMonitor:
    """Wires the session, synchronizer and dispatcher together and tears them down in order."""

    lp: str = "ColdChainMonitor:"

    def __init__(self, config: MonitorConfig) -> None:
        self.config: MonitorConfig = config
        self.store: ThresholdStore = ThresholdStore(
            config.threshold_store_path,
            config.topic_prefix,
            default_min=config.default_temp_min,
            default_max=config.default_temp_max,
        )
        self.synchronizer: StateSynchronizer = StateSynchronizer(config, thresholds=self.store.load())
        self.session: TransportSession = TransportSession(config, self.synchronizer)
        self.dispatcher: CommandDispatcher = CommandDispatcher(
            self.session,
            self.synchronizer,
            config,
            store=self.store,
        )
        self._stop_requested: asyncio.Event = asyncio.Event()
        self._stopped: bool = False

    def request_stop(self, signum: int) -> None:
        logger.info("%s Intercepted signal: %s (%s)", self.lp, signal.Signals(signum).name, signum)
        self._stop_requested.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, partial(self.request_stop, signal.SIGINT))
        loop.add_signal_handler(signal.SIGTERM, partial(self.request_stop, signal.SIGTERM))
        logger.debug("%s Signal handlers configured for SIGINT & SIGTERM", self.lp)

    async def run(self) -> int:
        """Stay connected and stream the activity log until SIGINT/SIGTERM."""
        self._install_signal_handlers()
        if self.config.metrics_port:
            start_metrics_server(self.config.metrics_port)
        logger.info(
            "%s Starting",
            self.lp,
            extra={"broker": self.config.broker_url, "topic_prefix": self.config.topic_prefix},
        )
        self.session.start()
        try:
            _ = await self._stop_requested.wait()
        finally:
            await self.stop()
        return 0

    async def send(self, intent: Intent) -> int:
        """Connect, dispatch one command and report whether it was delivered."""
        self.session.start()
        try:
            if not await self.session.wait_connected(self.config.connect_timeout_ms / 1000):
                logger.warning("%s Not connected yet, command will use the reconnect grace period", self.lp)
            outcome = await intent(self.dispatcher)
        finally:
            await self.stop()
        if outcome.delivered:
            logger.info("%s Command delivered", self.lp)
            return 0
        logger.error("%s Command not delivered: %s", self.lp, outcome.error)
        return 1

    async def stop(self) -> None:
        """Teardown order: dispatcher, session, synchronizer."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("%s Shutting down...", self.lp)
        self.dispatcher.close()
        await self.session.close()
        self.synchronizer.close()


def _on_off(value: str) -> bool:
    return value == "on"


def build_intent(args: argparse.Namespace) -> Intent:
    """Map parsed `send` arguments to a dispatcher call."""
    target: str = args.target
    if target in ("relay", "led"):
        on = _on_off(args.state)
        return (lambda d: d.set_relay(on)) if target == "relay" else (lambda d: d.set_led(on))
    if target == "buzzer":
        if args.state == "beep":
            return lambda d: d.beep_buzzer()
        on = _on_off(args.state)
        return lambda d: d.set_buzzer(on)
    if target == "system":
        enabled = args.state == "enable"
        return lambda d: d.set_system_enabled(enabled)
    if target == "thresholds":
        min_text, max_text = args.min, args.max
        return lambda d: d.update_thresholds(min_text, max_text)
    if target == "display-reset":
        return lambda d: d.reset_display()
    return lambda d: d.request_status()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="coldchain-monitor", description="Cold-chain MQTT monitor")
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument("-c", "--config", help="Path to a YAML config file", default=None, type=Path)
    _ = parser.add_argument("--version", action="version", version=f"%(prog)s {COLDCHAIN_VERSION}")

    commands = parser.add_subparsers(dest="command")
    _ = commands.add_parser("run", help="Monitor the device until interrupted (default)")

    send = commands.add_parser("send", help="Send one command and exit")
    targets = send.add_subparsers(dest="target", required=True)
    for name in ("relay", "led"):
        p = targets.add_parser(name, help=f"Switch the {name}")
        _ = p.add_argument("state", choices=("on", "off"))
    buzzer = targets.add_parser("buzzer", help="Switch or pulse the buzzer")
    _ = buzzer.add_argument("state", choices=("on", "off", "beep"))
    system = targets.add_parser("system", help="Enable or disable the device")
    _ = system.add_argument("state", choices=("enable", "disable"))
    thresholds = targets.add_parser("thresholds", help="Set the alarm thresholds")
    _ = thresholds.add_argument("min", help="Minimum temperature (°C)")
    _ = thresholds.add_argument("max", help="Maximum temperature (°C)")
    _ = targets.add_parser("display-reset", help="Reset the device display")
    _ = targets.add_parser("status", help="Ask the device to publish its status")
    return parser


def _load_env_file(path: Path) -> None:
    env_path = path.expanduser().resolve()
    if not env_path.exists():
        logger.error("Environment file not found", extra={"path": str(env_path)})
        return
    if dotenv.load_dotenv(env_path, override=True):
        logger.info(" Environment variables loaded", extra={"source": str(env_path)})
    else:
        logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})


def parse_cli(argv: Sequence[str] | None = None) -> argparse.Namespace:
    args = build_parser().parse_args(argv)
    if args.debug:
        set_package_level(logging.DEBUG)
        logger.info("Debug mode enabled via CLI argument")
    if args.env:
        _load_env_file(args.env)
    return args


async def _amain(config: MonitorConfig, args: argparse.Namespace) -> int:
    monitor = ColdChainMonitor(config)
    if args.command == "send":
        return await monitor.send(build_intent(args))
    return await monitor.run()


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the cold-chain monitor."""
    with correlation_context():
        logger.info("Starting cold-chain monitor", extra={"version": COLDCHAIN_VERSION})
        args = parse_cli(argv)
        if COLDCHAIN_DEBUG:
            logger.info("Debug logging enabled via configuration")
            set_package_level(logging.DEBUG)

        try:
            config = load_config(args.config)
        except ConfigError as e:
            logger.error("Invalid configuration: %s", e)
            return 2

        try:
            exit_code = uvloop.run(_amain(config, args))
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
            exit_code = 130
        logger.info("Cold-chain monitor shutdown complete")
        return exit_code


if __name__ == "__main__":
    sys.exit(main())
