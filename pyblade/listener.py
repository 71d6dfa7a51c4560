from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional
import logging

from pyblade.codec import Event

if TYPE_CHECKING:
    from pyblade.connection import ConnectionState, Status


class BladeListener(ABC):

    @abstractmethod
    def status_changed(self, state: "ConnectionState", status: "Status", message: Optional[str] = None):
        """Called on every connection state change, with an optional error message."""
        pass

    @abstractmethod
    def event_received(self, event: Event):
        """Called for every inbound frame, including unrecognized ones."""
        pass

    def connected(self):
        # By default, do nothing but can be overwritten to be notified of these messages.
        pass

    def disconnected(self):
        # By default, do nothing but can be overwritten to be notified of these messages.
        pass

    def mixer_updated(self, subaddr: str, params: dict[str, str]):
        """Called for UMIX/UMIXEVENT frames. ``subaddr`` is MIXER.CHANNEL, e.g. 1.2."""
        pass

    def system_info_received(self, params: dict[str, str]):
        pass

    def unrecognized_received(self, event: Event):
        pass


class MultiplexingListener(BladeListener):

    _listeners: List[BladeListener]

    def __init__(self):
        self._listeners = []

    def status_changed(self, state, status, message=None):
        for listener in self._listeners:
            listener.status_changed(state, status, message)

    def event_received(self, event: Event):
        for listener in self._listeners:
            listener.event_received(event)

    def connected(self):
        for listener in self._listeners:
            listener.connected()

    def disconnected(self):
        for listener in self._listeners:
            listener.disconnected()

    def mixer_updated(self, subaddr: str, params: dict[str, str]):
        for listener in self._listeners:
            listener.mixer_updated(subaddr, params)

    def system_info_received(self, params: dict[str, str]):
        for listener in self._listeners:
            listener.system_info_received(params)

    def unrecognized_received(self, event: Event):
        for listener in self._listeners:
            listener.unrecognized_received(event)

    def register_listener(self, listener: BladeListener):
        self._listeners.append(listener)

    def unregister_listener(self, listener: BladeListener):
        if listener in self._listeners:
            self._listeners.remove(listener)
        else:
            logging.info("Listener isn't registered")


class LoggingListener(BladeListener):

    def __init__(self, logger = logging):
        self.logger = logger

    def status_changed(self, state, status, message=None):
        if message:
            self.logger.info(f"Status {status.name} ({state.name}): {message}")
        else:
            self.logger.info(f"Status {status.name} ({state.name})")

    def event_received(self, event: Event):
        self.logger.debug(f"Event {event.type.name}: {event.raw}")

    def connected(self):
        self.logger.info("Connected")

    def disconnected(self):
        self.logger.info("Disconnected")

    def mixer_updated(self, subaddr: str, params: dict[str, str]):
        self.logger.info(f"Mixer {subaddr} update: {params}")

    def system_info_received(self, params: dict[str, str]):
        self.logger.info(f"System info: {params}")

    def unrecognized_received(self, event: Event):
        self.logger.warning(f"Unknown message type: {event.target}")
        self.logger.warning(f"Message content: {event.params}")
