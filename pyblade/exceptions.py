"""Exceptions raised by pyblade."""


class BladeError(Exception):
    """Base exception for Blade control errors."""

    pass


class NotConnected(BladeError):
    """Raised when a frame is sent while the connection is not established.

    Nothing is queued; the caller decides whether to retry after reconnection.
    """

    pass


class BladeIOError(BladeError, OSError):
    """Raised when writing to the socket fails."""

    pass


class MalformedFrame(BladeError, ValueError):
    """Raised by the frame parser for input that is not a frame."""

    pass


class InvalidCommand(BladeError, ValueError):
    """Raised when a command cannot be framed safely."""

    pass
