"""Broker transport session.

Owns the single aiomqtt connection: connect, subscribe, reconnect with
backoff, publish, raw message delivery, liveness reconciliation and teardown.
The session's status is a small state machine driven from the event loop:

    disconnected -> connecting -> connected -> disconnected

Everything observable (status changes, first connect vs reconnect, lost
connections, transport errors, inbound messages) is reported to a
`SessionListener`; nothing here raises into the caller.
"""

from __future__ import annotations

import asyncio
import secrets
import ssl
import time
from collections.abc import Callable
from typing import Protocol

import aiomqtt

from coldchain_monitor import metrics
from coldchain_monitor.config import MonitorConfig
from coldchain_monitor.const import CONTROL_DISCONNECT, CONTROL_STATUS
from coldchain_monitor.correlation import correlation_context
from coldchain_monitor.exceptions import PublishError, TransportError, TransportNotConnectedError
from coldchain_monitor.logging_abstraction import get_logger
from coldchain_monitor.models import ConnectionStatus, InboundMessage
from coldchain_monitor.mqtt.retry_policy import RetryPolicy

logger = get_logger(__name__)

type PublishCallback = Callable[[Exception | None], None]


class SessionListener(Protocol):
    """Receiver of everything the transport session observes."""

    def session_status_changed(self, status: ConnectionStatus) -> None: ...

    def session_connecting(self, attempt: int, delay: float) -> None: ...

    def session_connected(self, reconnected: bool) -> None: ...

    def session_connection_lost(self, error: Exception) -> None: ...

    def session_error(self, error: Exception) -> None: ...

    def session_closed(self) -> None: ...

    def message_received(self, message: InboundMessage) -> None: ...


def _decode_payload(payload: object) -> str:
    if payload is None:
        return ""
    if isinstance(payload, bytes | bytearray):
        return bytes(payload).decode("utf-8", errors="replace")
    return str(payload)


class TransportSession:
    """One logical broker connection with automatic reconnection."""

    lp: str = "session:"

    def __init__(
        self,
        config: MonitorConfig,
        listener: SessionListener,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config: MonitorConfig = config
        self.listener: SessionListener = listener
        self.client_id: str = f"{config.topic_prefix}-dashboard-{secrets.token_hex(4)}"
        self.retry_policy: RetryPolicy = RetryPolicy(
            base_delay_seconds=config.reconnect_interval_ms / 1000,
            max_delay_seconds=config.reconnect_ceiling_ms / 1000,
            jitter_factor=config.reconnect_jitter,
        )
        self._clock: Callable[[], float] = clock
        self._status: ConnectionStatus = ConnectionStatus.DISCONNECTED
        self._client: aiomqtt.Client | None = None
        self._has_connected: bool = False
        self._stopping: bool = False
        self._closed: bool = False
        self._retry_now: asyncio.Event = asyncio.Event()
        self._connected: asyncio.Event = asyncio.Event()
        self._run_task: asyncio.Task[None] | None = None
        self._liveness_task: asyncio.Task[None] | None = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    @property
    def has_connected(self) -> bool:
        """True once the session has completed at least one connection."""
        return self._has_connected

    def _notify(self, callback: Callable[..., None], *args: object) -> None:
        if self._closed:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("%s listener %s failed", self.lp, getattr(callback, "__name__", callback))

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        logger.debug("%s status %s -> %s", self.lp, self._status.value, status.value)
        self._status = status
        if status is ConnectionStatus.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()
        metrics.record_session_state(status)
        self._notify(self.listener.session_status_changed, status)

    def start(self) -> None:
        """Begin connecting in the background; returns immediately."""
        if self._closed:
            logger.warning("%s start() called on a closed session", self.lp)
            return
        if self._run_task is not None and not self._run_task.done():
            return
        self._stopping = False
        self._run_task = asyncio.create_task(self._run(), name="coldchain-session")
        if self._liveness_task is None or self._liveness_task.done():
            self._liveness_task = asyncio.create_task(self._watch_liveness(), name="coldchain-liveness")

    def _build_client(self) -> aiomqtt.Client:
        endpoint = self.config.endpoint
        return aiomqtt.Client(
            hostname=endpoint.hostname,
            port=endpoint.port,
            username=self.config.username,
            password=self.config.password,
            identifier=self.client_id,
            clean_session=True,
            keepalive=self.config.keepalive_sec,
            timeout=self.config.connect_timeout_ms / 1000,
            transport=endpoint.transport,
            websocket_path=endpoint.websocket_path,
            tls_context=ssl.create_default_context() if endpoint.tls else None,
        )

    async def _run(self) -> None:
        lp = f"{self.lp}run:"
        attempt = 0
        while not self._stopping:
            self._set_status(ConnectionStatus.CONNECTING)
            client = self._build_client()
            logger.info(
                "%s connecting to %s as %s",
                lp,
                self.config.broker_url,
                self.client_id,
            )
            try:
                _ = await client.__aenter__()
            except aiomqtt.MqttError as e:
                # -> [Errno 111] Connection refused, timeouts, bad credentials
                logger.warning("%s connection failed: %s", lp, e)
                self._set_status(ConnectionStatus.DISCONNECTED)
                self._notify(self.listener.session_error, TransportError(str(e)))
            else:
                attempt = 0
                await self._serve(client)

            if self._stopping:
                break
            delay = self.retry_policy.get_delay(attempt)
            attempt += 1
            metrics.reconnect_attempts_total.inc()
            self._set_status(ConnectionStatus.CONNECTING)
            self._notify(self.listener.session_connecting, attempt, delay)
            logger.info("%s reconnect attempt %d in %.1fs", lp, attempt, delay)
            await self._wait_before_retry(delay)

    async def _wait_before_retry(self, delay: float) -> None:
        self._retry_now.clear()
        try:
            _ = await asyncio.wait_for(self._retry_now.wait(), timeout=delay)
        except TimeoutError:
            return
        logger.debug("%s reconnect requested, skipping remaining backoff", self.lp)

    async def _serve(self, client: aiomqtt.Client) -> None:
        lp = f"{self.lp}serve:"
        self._client = client
        reconnected = self._has_connected
        self._has_connected = True
        self._set_status(ConnectionStatus.CONNECTED)
        logger.info("%s %s to %s", lp, "reconnected" if reconnected else "connected", self.config.broker_url)
        self._notify(self.listener.session_connected, reconnected)
        try:
            _ = await self.subscribe(self.config.topics.subscriptions)
            # Prime the snapshot once every subscription is in place
            _ = await self.publish(self.config.topics.control, CONTROL_STATUS)
            async for message in client.messages:
                self._deliver(str(message.topic), message.payload)
        except aiomqtt.MqttError as e:
            if not self._stopping:
                logger.warning("%s connection lost: %s", lp, e)
                self._notify(self.listener.session_connection_lost, TransportError(str(e)))
        else:
            if not self._stopping:
                logger.warning("%s message stream ended", lp)
                self._notify(self.listener.session_connection_lost, TransportError("Message stream ended"))
        finally:
            self._client = None
            if not self._stopping:
                self._set_status(ConnectionStatus.DISCONNECTED)
                await self._discard(client)

    async def _discard(self, client: aiomqtt.Client) -> None:
        try:
            await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as e:
            logger.debug("%s discarding dead client: %s", self.lp, e)

    def _deliver(self, topic: str, payload: object) -> None:
        message = InboundMessage(topic=topic, payload=_decode_payload(payload), received_at=self._clock())
        with correlation_context():
            logger.debug("%s received %s (%d bytes)", self.lp, topic, len(message.payload))
            self._notify(self.listener.message_received, message)

    async def subscribe(self, topics: list[str], qos: int = 1) -> bool:
        """Subscribe to every topic; failures are reported, not raised.

        Returns:
            True when every subscription succeeded

        """
        client = self._client
        if client is None:
            return False
        ok = True
        for topic in topics:
            try:
                _ = await client.subscribe(topic, qos=qos)
            except aiomqtt.MqttError as e:
                ok = False
                logger.warning("%s subscribe to %s failed: %s", self.lp, topic, e)
                self._notify(self.listener.session_error, TransportError(f"Subscribe to {topic} failed: {e}"))
        logger.debug("%s subscribed to %s (qos=%d)", self.lp, topics, qos)
        return ok

    async def publish(
        self,
        topic: str,
        payload: str,
        qos: int = 1,
        retain: bool = False,
        on_result: PublishCallback | None = None,
    ) -> Exception | None:
        """Publish without ever raising a transport error.

        Returns:
            None on success, otherwise the error (also passed to `on_result`)

        """
        client = self._client
        error: Exception | None = None
        if client is None or self._status is not ConnectionStatus.CONNECTED:
            error = TransportNotConnectedError(self._status.value)
        else:
            try:
                _ = await client.publish(topic, payload, qos=qos, retain=retain)
            except aiomqtt.MqttError as e:
                logger.warning("%s publish to %s failed: %s", self.lp, topic, e)
                error = PublishError(topic, str(e))
        if on_result is not None:
            on_result(error)
        return error

    async def wait_connected(self, timeout: float) -> bool:
        """Wait up to `timeout` seconds for the session to be connected."""
        if self.is_connected:
            return True
        try:
            _ = await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return self.is_connected

    def request_reconnect(self) -> None:
        """Cut the current backoff short, or start the session if it never ran."""
        if self._closed or self._stopping:
            return
        # A live transport may only have been marked down by a stale liveness tick
        if self.check_liveness() is ConnectionStatus.CONNECTED:
            return
        logger.info("%s reconnect requested", self.lp)
        if self._run_task is None or self._run_task.done():
            self.start()
        else:
            self._retry_now.set()

    def _transport_alive(self) -> bool:
        client = self._client
        if client is None:
            return False
        # aiomqtt keeps the paho client private; its is_connected() is the only direct probe
        paho_client = getattr(client, "_client", None)
        return bool(paho_client is not None and paho_client.is_connected())

    def check_liveness(self) -> ConnectionStatus:
        """Reconcile the reported status with the actual transport state."""
        alive = self._transport_alive()
        if alive and self._status is not ConnectionStatus.CONNECTED:
            logger.info("%s transport is up but status was %s, correcting", self.lp, self._status.value)
            self._set_status(ConnectionStatus.CONNECTED)
        elif not alive and self._status is ConnectionStatus.CONNECTED:
            logger.warning("%s transport is down but status was connected, correcting", self.lp)
            self._set_status(ConnectionStatus.DISCONNECTED)
        return self._status

    async def _watch_liveness(self) -> None:
        interval = self.config.liveness_interval_ms / 1000
        while not self._stopping:
            await asyncio.sleep(interval)
            _ = self.check_liveness()

    async def close(self) -> None:
        """Unsubscribe, send a best-effort DISCONNECT notice and close the transport."""
        lp = f"{self.lp}close:"
        if self._closed:
            return
        self._stopping = True
        self._retry_now.set()
        client = self._client

        if client is not None and self._status is ConnectionStatus.CONNECTED:
            for topic in self.config.topics.subscriptions:
                try:
                    _ = await client.unsubscribe(topic)
                except aiomqtt.MqttError as e:
                    logger.warning("%s unsubscribe from %s failed: %s", lp, topic, e)
            try:
                _ = await client.publish(self.config.topics.control, CONTROL_DISCONNECT, qos=0)
            except aiomqtt.MqttError as e:
                logger.debug("%s disconnect notice not sent: %s", lp, e)

        tasks = [t for t in (self._liveness_task, self._run_task) if t is not None and not t.done()]
        for task in tasks:
            _ = task.cancel()
        if tasks:
            _ = await asyncio.gather(*tasks, return_exceptions=True)

        if client is not None:
            try:
                await client.__aexit__(None, None, None)
            except aiomqtt.MqttError as e:
                logger.warning("%s MQTT disconnect failed: %s", lp, e)
            else:
                logger.info("%s disconnected from MQTT broker", lp)

        self._client = None
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._notify(self.listener.session_closed)
        self._closed = True
