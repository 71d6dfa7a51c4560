"""Blade connection - TCP session, heartbeat, liveness and reconnection.

This module contains the connection manager with:
- Connection state machine (disconnected/connecting/connected/reconnecting)
- Heartbeat sending and heartbeat-loss detection
- Fixed-delay reconnection after failures
- Frame sending with NotConnected / BladeIOError semantics
- Mixer subscriptions that are replayed on every reconnect
- Listener notifications for status changes and parsed events

Socket and timer failures never escape to the caller; they become
``status_changed`` notifications."""

import asyncio
import logging
from asyncio import AbstractEventLoop, Task, TimerHandle
from enum import Enum
from typing import Any, Optional

from pyblade.codec import HEARTBEAT_FRAME, Command, Event, EventType, ParamsLike, build_frame
from pyblade.commands import sys_query, umix_subscribe
from pyblade.exceptions import BladeIOError, InvalidCommand, NotConnected
from pyblade.heartbeat import HeartbeatClock
from pyblade.listener import BladeListener, MultiplexingListener
from pyblade.protocol import ENCODING, BladeProtocol

DEFAULT_PORT = 55776
DEFAULT_HEARTBEAT_INTERVAL = 5.0
# No inbound byte for this long means the link is dead
DEFAULT_HEARTBEAT_TIMEOUT = 10.0
DEFAULT_RECONNECT_DELAY = 5.0
DEFAULT_CONNECT_TIMEOUT = 10.0

HEARTBEAT_LOST_MESSAGE = "Heartbeat lost, reconnecting..."


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class Status(Enum):
    """Status reported to listeners alongside each state change."""

    OK = "ok"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"
    CONNECTION_FAILURE = "connection_failure"


class BladeConnection:
    """One persistent control session with a Blade device.

    Configuration is passed in by the caller; nothing is read from the
    environment. Listeners receive every status change and every parsed
    frame, in wire order.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: int = DEFAULT_PORT,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        heartbeat_timeout: float = DEFAULT_HEARTBEAT_TIMEOUT,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        auto_reconnect: bool = True,
        max_reconnect_attempts: Optional[int] = None,
        query_system_info: bool = True,
        listener: Optional[BladeListener] = None,
    ):
        """Initialize connection.

        Args:
            host: Device hostname or IP
            port: TCP control port
            heartbeat_interval: Seconds between ``<>`` heartbeats, 0 disables
                heartbeats and heartbeat-loss detection
            heartbeat_timeout: Seconds without inbound data before the link is
                considered dead
            reconnect_delay: Fixed delay before each reconnection attempt
            connect_timeout: Seconds to wait for the TCP connect
            auto_reconnect: Whether to reconnect after failures
            max_reconnect_attempts: Give up after this many consecutive failed
                attempts, None retries forever
            query_system_info: Send ``<SYS?>`` after connecting
            listener: Optional listener to register
        """
        self._host = host
        self._port = port
        self._heartbeat_interval = heartbeat_interval
        self._heartbeat_timeout = heartbeat_timeout
        self._reconnect_delay = reconnect_delay
        self._connect_timeout = connect_timeout
        self._auto_reconnect = auto_reconnect
        self._max_reconnect_attempts = max_reconnect_attempts
        self._query_system_info = query_system_info

        self._logger = logging.getLogger(__name__)
        self._loop: Optional[AbstractEventLoop] = None

        # Connection state
        self._state = ConnectionState.DISCONNECTED
        # True once the caller asked to disconnect; nothing may reconnect after that
        self._closed = True
        self._last_error: Optional[str] = None
        self._reconnect_attempts: int = 0

        # Current socket
        self._protocol: Optional[BladeProtocol] = None
        self._transport: Optional[asyncio.Transport] = None

        # Timers
        self._heartbeat: Optional[HeartbeatClock] = None
        self._reconnect_handle: Optional[TimerHandle] = None
        self._connect_task: Optional[Task[Any]] = None

        # (subaddr, parameter) pairs subscribed with UMIXSUB, in subscription order
        self._subscriptions: dict[tuple[str, str], bool] = {}

        self._multiplex_callback = MultiplexingListener()
        if listener is not None:
            self._multiplex_callback.register_listener(listener)

    # ========== Public API ==========

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def host(self) -> Optional[str]:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def heartbeat_interval(self) -> float:
        return self._heartbeat_interval

    @property
    def last_error(self) -> Optional[str]:
        """Message of the most recent connection failure."""
        return self._last_error

    @property
    def subscriptions(self) -> list[tuple[str, str]]:
        return list(self._subscriptions)

    def register_listener(self, listener: BladeListener):
        """Register external listener for connection events."""
        self._multiplex_callback.register_listener(listener)

    def unregister_listener(self, listener: BladeListener):
        """Unregister external listener."""
        self._multiplex_callback.unregister_listener(listener)

    async def async_connect(self, host: Optional[str] = None, port: Optional[int] = None,
                            heartbeat_interval: Optional[float] = None) -> bool:
        """Connect to the device, replacing any existing session.

        Connection failures are reported to listeners and retried according to
        the reconnect settings rather than raised.

        Returns:
            Whether the connection is established when this returns.
        """
        if host is not None:
            self._host = host
        if port is not None:
            self._port = port
        if heartbeat_interval is not None:
            self._heartbeat_interval = heartbeat_interval
        if not self._host:
            raise ValueError("No host configured")

        self._loop = asyncio.get_running_loop()
        self._closed = False
        self._cancel_reconnect()
        self._teardown()
        self._reconnect_attempts = 0

        # Tracked like a reconnect so disconnect() can cancel it
        task = self._loop.create_task(self._open_connection())
        self._connect_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task.cancelled():
            self._logger.info(f"Connect to {self._host}:{self._port} cancelled")
            return False
        return task.result()

    async def async_update_config(self, host: Optional[str] = None, port: Optional[int] = None,
                                  heartbeat_interval: Optional[float] = None) -> bool:
        """Apply new connection settings and reconnect with them."""
        self._logger.info(f"Configuration updated: host={host} port={port} heartbeat={heartbeat_interval}")
        return await self.async_connect(host, port, heartbeat_interval)

    def disconnect(self):
        """Close the connection and stop reconnection attempts.

        Cancels the heartbeat, the timeout and any scheduled or in-flight
        reconnect together with the socket. Calling it again is a no-op.
        """
        self._closed = True
        self._cancel_reconnect()
        was_connected = self._state is ConnectionState.CONNECTED
        self._teardown(abort=False)
        if self._state is ConnectionState.DISCONNECTED:
            return
        self._logger.info(f"Disconnected from {self._host}, not reconnecting")
        self._set_state(ConnectionState.DISCONNECTED, Status.DISCONNECTED)
        if was_connected:
            self._notify("disconnected")

    def send(self, target: str, subaddr: Optional[str] = None, params: ParamsLike = None):
        """Send one frame built from ``target``, ``subaddr`` and ``params``.

        Raises:
            InvalidCommand: the frame cannot be built; nothing is sent
            NotConnected: not connected; nothing is sent or queued
            BladeIOError: the socket write failed
        """
        self._write_frame(build_frame(target, subaddr, params))

    def send_command(self, command: Command):
        """Send a :class:`Command`, see :meth:`send`."""
        self._write_frame(command.to_frame())

    def subscribe_mixer(self, subaddr: str, parameter: str):
        """Subscribe to updates for one mixer parameter, e.g. ``("1.2", "ON")``.

        The subscription is remembered and sent again after every reconnect.
        While disconnected it is only remembered.
        """
        self._subscriptions[(subaddr, parameter)] = True
        if self.connected:
            self.send_command(umix_subscribe(subaddr, parameter))

    def unsubscribe_mixer(self, subaddr: str, parameter: str):
        self._subscriptions.pop((subaddr, parameter), None)
        if self.connected:
            self.send_command(umix_subscribe(subaddr, parameter, enabled=False))

    # ========== Connection flow ==========

    async def _open_connection(self) -> bool:
        protocol = BladeProtocol(self)
        self._protocol = protocol
        self._set_state(ConnectionState.CONNECTING, Status.CONNECTING)
        if self._protocol is not protocol:
            # A listener disconnected us from inside the notification
            return False

        self._logger.info(f"Connecting to {self._host}:{self._port}")
        try:
            await asyncio.wait_for(
                self._loop.create_connection(lambda: protocol, host=self._host, port=self._port),
                timeout=self._connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            if self._protocol is not protocol:
                # Superseded by disconnect() or a newer connect
                return False
            self._teardown()
            message = str(e) or f"Timed out connecting to {self._host}:{self._port}"
            self._logger.warning(f"Connection to {self._host}:{self._port} failed: {message}")
            self._handle_failure(message, was_connected=False)
            return False
        return self._state is ConnectionState.CONNECTED and self._protocol is protocol

    async def _reconnect(self):
        try:
            await self._open_connection()
        except asyncio.CancelledError:
            self._logger.debug("Reconnect attempt cancelled")
            raise
        except Exception as e:
            self._logger.warning(f"Reconnect attempt failed: {e}")
            self._teardown()
            if not self._closed:
                self._handle_failure(str(e), was_connected=False)

    def _on_connection_made(self, protocol: BladeProtocol, transport: asyncio.Transport):
        """Called by BladeProtocol when the socket is established."""
        if protocol is not self._protocol or self._closed:
            self._logger.debug("Closing connection that is no longer wanted")
            transport.close()
            return

        self._transport = transport
        self._reconnect_attempts = 0
        self._last_error = None
        self._logger.info(f"Connected to: {self._host}:{self._port}")
        self._set_state(ConnectionState.CONNECTED, Status.OK)
        self._notify("connected")
        if protocol is not self._protocol:
            return

        if self._heartbeat_interval > 0:
            self._heartbeat = HeartbeatClock(
                self._send_heartbeat,
                self._on_heartbeat_timeout,
                self._heartbeat_interval,
                self._heartbeat_timeout,
                loop=self._loop,
            )
            self._heartbeat.start()

        try:
            if self._query_system_info:
                self.send_command(sys_query())
            for subaddr, parameter in list(self._subscriptions):
                self._logger.info(f"Re-subscribing to {subaddr} {parameter}")
                self.send_command(umix_subscribe(subaddr, parameter))
        except (NotConnected, BladeIOError) as e:
            self._logger.warning(f"Initial requests not sent: {e}")

    def _on_connection_lost(self, protocol: BladeProtocol, exc: Optional[Exception]):
        """Called by BladeProtocol when the socket closes."""
        if protocol is not self._protocol:
            # Socket we tore down ourselves
            return
        message = str(exc) if exc else "Connection closed by peer"
        self._transport = None
        self._handle_failure(message, was_connected=self._state is ConnectionState.CONNECTED)

    def _on_data_received(self, protocol: BladeProtocol):
        if protocol is self._protocol and self._heartbeat is not None:
            self._heartbeat.feed()

    def _on_event(self, protocol: BladeProtocol, event: Event) -> bool:
        """Deliver a parsed frame. Returns False once the protocol is stale."""
        if protocol is not self._protocol:
            return False
        self._notify("event_received", event)
        if event.type is EventType.MIXER_UPDATE:
            self._notify("mixer_updated", event.subaddr, event.params)
        elif event.type is EventType.SYSTEM_INFO:
            self._notify("system_info_received", event.params)
        else:
            self._notify("unrecognized_received", event)
        return protocol is self._protocol

    # ========== Heartbeat ==========

    def _send_heartbeat(self):
        try:
            self._write_frame(HEARTBEAT_FRAME, quiet=True)
        except (NotConnected, BladeIOError) as e:
            self._logger.debug(f"Heartbeat not sent: {e}")

    def _on_heartbeat_timeout(self):
        if self._state is not ConnectionState.CONNECTED:
            return
        self._teardown()
        self._last_error = "Heartbeat lost"
        if self._can_reconnect():
            self._logger.error(
                f"Heartbeat lost from {self._host}, will try to reconnect in {self._reconnect_delay} seconds"
            )
            self._schedule_reconnect(HEARTBEAT_LOST_MESSAGE)
        else:
            self._logger.error(f"Heartbeat lost from {self._host}, not reconnecting")
            self._set_state(ConnectionState.DISCONNECTED, Status.CONNECTION_FAILURE, self._last_error)
        self._notify("disconnected")

    # ========== Failure handling ==========

    def _handle_failure(self, message: str, was_connected: bool):
        """Socket error or close: report the failure, then schedule a reconnect."""
        self._teardown()
        self._last_error = message
        self._logger.error(f"Disconnected from {self._host}: {message}")
        self._set_state(ConnectionState.DISCONNECTED, Status.CONNECTION_FAILURE, message)
        if was_connected:
            self._notify("disconnected")
        if self._state is ConnectionState.DISCONNECTED and self._can_reconnect():
            self._schedule_reconnect(f"{message}, reconnecting in {self._reconnect_delay} seconds")

    def _can_reconnect(self) -> bool:
        if self._closed or not self._auto_reconnect:
            return False
        if (
            self._max_reconnect_attempts is not None
            and self._reconnect_attempts >= self._max_reconnect_attempts
        ):
            self._logger.error(
                f"Giving up on {self._host} after {self._reconnect_attempts} reconnect attempts"
            )
            return False
        return True

    def _schedule_reconnect(self, message: str):
        self._cancel_reconnect()
        self._set_state(ConnectionState.RECONNECTING, Status.CONNECTION_FAILURE, message)
        if self._state is ConnectionState.RECONNECTING:
            self._reconnect_handle = self._loop.call_later(self._reconnect_delay, self._reconnect_now)

    def _reconnect_now(self):
        self._reconnect_handle = None
        if self._closed or self._state is not ConnectionState.RECONNECTING:
            return
        self._reconnect_attempts += 1
        self._logger.info(f"Reconnect attempt {self._reconnect_attempts} to {self._host}:{self._port}")
        self._connect_task = self._loop.create_task(self._reconnect())

    def _cancel_reconnect(self):
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        if self._connect_task is not None:
            if not self._connect_task.done() and self._connect_task is not asyncio.current_task():
                self._connect_task.cancel()
            self._connect_task = None

    def _teardown(self, abort: bool = True):
        """Stop timers and drop the socket. Safe to call when already torn down."""
        if self._heartbeat is not None:
            self._heartbeat.stop()
            self._heartbeat = None
        self._protocol = None
        transport, self._transport = self._transport, None
        if transport is not None and not transport.is_closing():
            if abort:
                transport.abort()
            else:
                transport.close()

    # ========== Writing ==========

    def _write_frame(self, frame: str, quiet: bool = False):
        try:
            frame.encode(ENCODING)
        except UnicodeEncodeError as e:
            raise InvalidCommand(f"Frame is not {ENCODING} encodable: {frame!r}") from e
        if self._state is not ConnectionState.CONNECTED or self._protocol is None:
            raise NotConnected(f"Not connected to {self._host}, not sending {frame}")

        if quiet:
            self._logger.debug(f"SEND: {frame}")
        else:
            self._logger.info(f"SEND: {frame}")
        try:
            self._protocol.write(frame)
        except (OSError, RuntimeError) as e:
            self._logger.error(f"SEND FAILED: {frame} - {e}")
            self._handle_failure(str(e) or type(e).__name__, was_connected=True)
            raise BladeIOError(f"Failed to send {frame}: {e}") from e

    # ========== Notifications ==========

    def _set_state(self, state: ConnectionState, status: Status, message: Optional[str] = None):
        self._logger.debug(f"State {self._state.name} -> {state.name} ({status.name})")
        self._state = state
        self._notify("status_changed", state, status, message)

    def _notify(self, method: str, *args):
        # Listener exceptions must not break the state machine
        try:
            getattr(self._multiplex_callback, method)(*args)
        except Exception as e:
            self._logger.error(f"Exception in {method}() callback: {e}", exc_info=True)
