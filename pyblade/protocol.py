import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from pyblade.codec import FRAME_TERMINATOR, decode_event

if TYPE_CHECKING:
    from pyblade.connection import BladeConnection

# The device speaks ASCII; latin-1 keeps any stray byte instead of dropping it
ENCODING = "latin-1"


class BladeProtocol(asyncio.Protocol):
    """Transport side of one TCP session.

    Splits the byte stream into newline-terminated frames and hands each
    parsed event to the owning connection, in wire order. A new instance is
    created for every connection attempt, so callbacks arriving from a socket
    that has already been torn down can be recognised and ignored by the
    owner.
    """

    _buffer: str

    def __init__(self, owner: "BladeConnection"):
        self._logger = logging.getLogger(__name__)
        self._owner = owner
        self._transport: Optional[asyncio.Transport] = None
        self._buffer = ""
        self.peer_name = None

    @property
    def buffered(self) -> str:
        """Partial frame data waiting for its terminator."""
        return self._buffer

    def connection_made(self, transport):
        """Method from asyncio.Protocol"""
        self._transport = transport
        self._buffer = ""
        self.peer_name = transport.get_extra_info("peername")
        self._logger.info(f"Connection Made: {self.peer_name}")
        self._owner._on_connection_made(self, transport)

    def connection_lost(self, exc):
        """Method from asyncio.Protocol"""
        self._logger.debug(f"Connection lost: {self.peer_name} ({exc})")
        self._transport = None
        self._owner._on_connection_lost(self, exc)

    def data_received(self, data):
        """Method from asyncio.Protocol"""
        self._logger.debug(f"data_received client: {data}")
        # Liveness first: any byte counts, whether or not it completes a frame
        self._owner._on_data_received(self)

        self._buffer += data.decode(ENCODING)
        while "\n" in self._buffer:
            line, _, self._buffer = self._buffer.partition("\n")
            message = line.strip()
            if not message:
                continue
            self._logger.debug(f"Whole message: {message}")
            event = decode_event(message)
            if not self._owner._on_event(self, event):
                # Owner has moved on to another socket, stop delivering
                break

    def write(self, frame: str):
        """Write one frame followed by CRLF."""
        if self._transport is None or self._transport.is_closing():
            raise ConnectionResetError("Transport is closed")
        self._transport.write((frame + FRAME_TERMINATOR).encode(ENCODING))

    def close(self):
        if self._transport is not None:
            self._transport.close()
            self._transport = None
