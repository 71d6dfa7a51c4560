"""Heartbeat sender and liveness deadline for a connected session."""

import asyncio
import logging
import time
from asyncio import Task, TimerHandle
from typing import Any, Callable, Optional


class HeartbeatClock:
    """Sends a heartbeat every ``interval`` seconds and fires ``on_timeout``
    when nothing has been received for ``timeout`` seconds.

    Only inbound traffic (:meth:`feed`) pushes the deadline back. Sending a
    heartbeat does not, so a socket that still accepts writes cannot hide a
    silent peer.
    """

    def __init__(
        self,
        send_heartbeat: Callable[[], None],
        on_timeout: Callable[[], None],
        interval: float,
        timeout: float,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._logger = logging.getLogger(__name__)
        self._send_heartbeat = send_heartbeat
        self._on_timeout = on_timeout
        self._interval = interval
        self._timeout = timeout
        self._loop = loop or asyncio.get_event_loop()

        self._heartbeat_task: Optional[Task[Any]] = None
        self._timeout_handle: Optional[TimerHandle] = None
        self.last_sent_timestamp: Optional[float] = None
        self.last_receive_timestamp: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._heartbeat_task is not None

    @property
    def deadline(self) -> Optional[float]:
        """Loop time at which the peer is considered lost, if running."""
        if self._timeout_handle is None:
            return None
        return self._timeout_handle.when()

    def start(self):
        """Start sending heartbeats and arm the timeout deadline."""
        self.stop()
        self.last_receive_timestamp = time.time()
        self._heartbeat_task = self._loop.create_task(self._heartbeat())
        self._reset_deadline()
        self._logger.info(
            f"Heartbeat started (interval={self._interval}s, timeout={self._timeout}s)"
        )

    def stop(self):
        """Cancel the heartbeat task and the deadline. Safe to call repeatedly."""
        if self._heartbeat_task is not None:
            if not self._heartbeat_task.done():
                self._heartbeat_task.cancel()
            self._heartbeat_task = None
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def feed(self):
        """Record inbound traffic and push the deadline back."""
        self.last_receive_timestamp = time.time()
        if self.running:
            self._reset_deadline()

    def _reset_deadline(self):
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
        self._timeout_handle = self._loop.call_later(self._timeout, self._expired)

    def _expired(self):
        self._timeout_handle = None
        elapsed = time.time() - (self.last_receive_timestamp or 0)
        self._logger.error(f"No data received for {elapsed:.1f}s, heartbeat lost")
        self.stop()
        self._on_timeout()

    async def _heartbeat(self):
        while True:
            try:
                await asyncio.sleep(self._interval)
                self._logger.debug("heartbeat")
                self.last_sent_timestamp = time.time()
                self._send_heartbeat()
            except asyncio.CancelledError:
                self._logger.debug("Heartbeat task cancelled")
                break
            except Exception as e:
                self._logger.error(f"Error sending heartbeat: {e}", exc_info=True)
