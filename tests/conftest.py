"""Shared helpers for connection tests."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pyblade.codec import Event  # noqa: E402
from pyblade.listener import BladeListener  # noqa: E402

logger = logging.getLogger(__name__)


class MockBladeServer:
    """Mock Blade device: records received lines and can push frames back."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0):
        """Initialize mock server.

        Args:
            host: Host to bind to
            port: Port to bind to (0 = OS assigns)
        """
        self.host = host
        self.port = port
        self.server: Optional[asyncio.Server] = None
        self.received: list[str] = []
        self.connection_count = 0
        self.writers: list[asyncio.StreamWriter] = []
        # When False, incoming connections are accepted then closed immediately
        self.accept = True

    async def start(self):
        self.server = await asyncio.start_server(self._handle_client, self.host, self.port)
        if self.port == 0:
            self.port = self.server.sockets[0].getsockname()[1]
        logger.info("Mock Blade server started on %s:%d", self.host, self.port)

    async def stop(self):
        self.drop_clients()
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            logger.info("Mock Blade server stopped")

    async def wait_for_clients(self, count: int = 1) -> bool:
        """Wait until the server side has picked up ``count`` clients."""
        return await wait_until(lambda: len(self.writers) >= count)

    def push(self, data: bytes):
        """Send raw bytes to every connected client."""
        for writer in self.writers:
            if not writer.is_closing():
                writer.write(data)

    def drop_clients(self):
        for writer in self.writers:
            writer.close()
        self.writers.clear()

    def frames(self, without_heartbeats: bool = True) -> list[str]:
        if without_heartbeats:
            return [line for line in self.received if line != "<>"]
        return list(self.received)

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.connection_count += 1
        logger.info("Connection #%d", self.connection_count)
        if not self.accept:
            writer.close()
            return
        self.writers.append(writer)
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                assert line.endswith(b"\r\n"), line
                self.received.append(line.decode("latin-1").rstrip("\r\n"))
        except (ConnectionError, asyncio.CancelledError):
            pass
        finally:
            writer.close()


class RecordingListener(BladeListener):
    """Listener that records every callback in order."""

    def __init__(self):
        self.statuses = []
        self.events: list[Event] = []
        self.calls: list[str] = []

    def status_changed(self, state, status, message=None):
        self.statuses.append((state, status, message))
        self.calls.append("status_changed")

    def event_received(self, event: Event):
        self.events.append(event)
        self.calls.append("event_received")

    def connected(self):
        self.calls.append("connected")

    def disconnected(self):
        self.calls.append("disconnected")

    def mixer_updated(self, subaddr, params):
        self.calls.append("mixer_updated")

    def system_info_received(self, params):
        self.calls.append("system_info_received")

    def unrecognized_received(self, event):
        self.calls.append("unrecognized_received")

    def status_values(self):
        return [status for _, status, _ in self.statuses]

    def state_values(self):
        return [state for state, _, _ in self.statuses]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(interval)
    return True


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()
