import logging
from typing import Optional

from pyblade.codec import Event
from pyblade.listener import BladeListener


class MixerStateCache(BladeListener):
    """Listener that keeps the last known parameters of each mixer channel.

    Register it on a ``BladeConnection``; it is filled from ``UMIX`` /
    ``UMIXEVENT`` frames and from ``<SYS|...>`` replies. Updates only carry
    the parameters that changed, so they are merged into what is already
    known for the channel.
    """

    def __init__(self):
        self._logger = logging.getLogger(__name__)
        self.umix: dict[str, dict[str, str]] = {}
        self.system_info: dict[str, str] = {}

    def status_changed(self, state, status, message=None):
        pass

    def event_received(self, event: Event):
        pass

    def mixer_updated(self, subaddr: str, params: dict[str, str]):
        """Merge an update for ``subaddr`` (MIXER.CHANNEL)."""
        self.umix.setdefault(subaddr, {}).update(params)
        self._logger.debug(f"Mixer {subaddr} state: {self.umix[subaddr]}")

    def system_info_received(self, params: dict[str, str]):
        self.system_info.update(params)

    def get(self, subaddr: str, parameter: str) -> Optional[str]:
        """Last known value of ``parameter`` on ``subaddr``, if any."""
        return self.umix.get(subaddr, {}).get(parameter)

    def is_on(self, subaddr: str) -> bool:
        """Whether the channel was last reported as switched on (``ON:1``)."""
        return self.get(subaddr, "ON") == "1"

    def clear(self):
        self.umix.clear()
        self.system_info.clear()
