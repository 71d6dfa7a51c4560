"""pyblade Python Package

Python library for controlling Blade audio routing engines over TCP.
"""

from pyblade.codec import Command, Event, EventType, build_frame, parse_frame
from pyblade.connection import BladeConnection, ConnectionState, Status
from pyblade.exceptions import (
    BladeError,
    BladeIOError,
    InvalidCommand,
    MalformedFrame,
    NotConnected,
)
from pyblade.listener import BladeListener, LoggingListener
from pyblade.state import MixerStateCache

__all__ = [
    "BladeConnection",
    "BladeError",
    "BladeIOError",
    "BladeListener",
    "Command",
    "ConnectionState",
    "Event",
    "EventType",
    "InvalidCommand",
    "LoggingListener",
    "MalformedFrame",
    "MixerStateCache",
    "NotConnected",
    "Status",
    "build_frame",
    "parse_frame",
]
