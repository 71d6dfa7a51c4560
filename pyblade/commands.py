"""Builders for common Blade commands.

Each function returns a :class:`~pyblade.codec.Command`; pass it to
``BladeConnection.send_command``. Mixer inputs and output buses are
addressed as ``MIXER.CHANNEL`` / ``MIXER.BUS``, e.g. ``<UMIX:1.2|ON:1>``.
"""

from typing import Union

from pyblade.codec import Command
from pyblade.exceptions import InvalidCommand

Number = Union[int, float]

# Source id the device uses for "no source" on a destination
DISCONNECTED_SOURCE = "0000FFFF"

BUSES = ("A", "B")
DUCK_OUTPUTS = ("DUCKA", "DUCKB")
BALANCE_OUTPUTS = ("BALA", "BALB")
# Up/down ramps for outputs A and B
RAMP_TYPES = ("URAMPA", "DRAMPA", "URAMPB", "DRAMPB")
# 0 = off, 1 = fast, 2 = medium, 3 = slow
RAMP_SPEEDS = (0, 1, 2, 3)
SALVO_RANGE = (1, 256)
BALANCE_RANGE = (-100, 100)


def _choice(name: str, value, choices):
    if value not in choices:
        raise InvalidCommand(f"Invalid {name} {value!r}, must be one of {', '.join(map(str, choices))}")
    return value


def _in_range(name: str, value: Number, limits: tuple[int, int]) -> Number:
    low, high = limits
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidCommand(f"Invalid {name} {value!r}, must be a number")
    if not (low <= value <= high):
        raise InvalidCommand(f"Invalid {name} {value}, must be {low}-{high}")
    return value


def _flag(value) -> int:
    return 1 if value else 0


def _channel(mixer, channel) -> str:
    return f"{mixer}.{channel}"


# ========== SYS ==========

def sys_query() -> Command:
    """Request system information, answered with a ``<SYS|...>`` frame."""
    return Command("SYS?")


def sys_set_ifid(ifid: str = "Companion") -> Command:
    """Identify this controller to the device."""
    return Command("SYS", params={"IFID": ifid})


def sys_set_subrate(capacity: int, rate: int) -> Command:
    """Set subscription capacity and rate (messages per second)."""
    return Command("SYS", params={"SUBRATE": f"{capacity}.{rate}"})


# ========== UMIX input channel ==========

def umix_input_on(mixer: int, channel: int, on: bool = True) -> Command:
    return Command("UMIX", _channel(mixer, channel), {"ON": _flag(on)})


def umix_input_fader(mixer: int, channel: int, db: Number, bus: str = "A") -> Command:
    """Set the input fader feeding bus A (FDRA) or B (FDRB) in dB."""
    _choice("bus", bus, BUSES)
    return Command("UMIX", _channel(mixer, channel), {f"FDR{bus}": db})


def umix_input_increment(mixer: int, channel: int, delta: Number, bus: str = "A") -> Command:
    """Nudge the input fader for bus A (INCA) or B (INCB) by ``delta`` dB."""
    _choice("bus", bus, BUSES)
    return Command("UMIX", _channel(mixer, channel), {f"INC{bus}": delta})


def umix_input_duck(mixer: int, channel: int, on: bool = True, output: str = "DUCKA") -> Command:
    _choice("duck output", output, DUCK_OUTPUTS)
    return Command("UMIX", _channel(mixer, channel), {output: _flag(on)})


def umix_input_balance(mixer: int, channel: int, percent: int, output: str = "BALA") -> Command:
    _choice("balance output", output, BALANCE_OUTPUTS)
    _in_range("balance", percent, BALANCE_RANGE)
    return Command("UMIX", _channel(mixer, channel), {output: percent})


def umix_input_ramp(mixer: int, channel: int, ramp: str = "URAMPA", speed: int = 1) -> Command:
    _choice("ramp type", ramp, RAMP_TYPES)
    _choice("ramp speed", speed, RAMP_SPEEDS)
    return Command("UMIX", _channel(mixer, channel), {ramp: speed})


# ========== UMIX output bus ==========

def umix_output_on(mixer: int, bus: str, on: bool = True) -> Command:
    _choice("bus", bus, BUSES)
    return Command("UMIX", _channel(mixer, bus), {"ON": _flag(on)})


def umix_output_master_fader(mixer: int, bus: str, db: Number) -> Command:
    _choice("bus", bus, BUSES)
    return Command("UMIX", _channel(mixer, bus), {"MFDR": db})


def umix_output_master_increment(mixer: int, bus: str, delta: Number) -> Command:
    _choice("bus", bus, BUSES)
    return Command("UMIX", _channel(mixer, bus), {"MINC": delta})


def umix_subscribe(subaddr: str, parameter: str, enabled: bool = True) -> Command:
    """Subscribe to (or stop) ``UMIXEVENT`` updates for one parameter.

    The device acknowledges with ``<OK>``.
    """
    return Command("UMIXSUB", subaddr, {parameter: _flag(enabled)})


# ========== DST / SALVO ==========

def dst_set_source(dst: str, src: str) -> Command:
    """Route source ``src`` to destination ``dst`` (hex ids, e.g. 00400001)."""
    return Command("DST", dst, {"SRC": src})


def dst_disconnect(dst: str) -> Command:
    return Command("DST", dst, {"SRC": DISCONNECTED_SOURCE})


def dst_lock(dst: str, locked: bool = True) -> Command:
    return Command("DST", dst, {"LOCKED": _flag(locked)})


def salvo_fire(salvo: int) -> Command:
    _in_range("salvo", salvo, SALVO_RANGE)
    return Command("SALVO", str(salvo), {"FIRE": 1})


# ========== IO / MIC ==========

def slio_set(index: str, high: bool = True) -> Command:
    """Set a software logic IO pin; ``index`` is ``N`` or ``CARD.CIRCUIT``."""
    return Command("SLIO", str(index), {"LVL": _flag(high)})


def lio_set(index: str, high: bool = True) -> Command:
    return Command("LIO", str(index), {"LVL": _flag(high)})


def mic_phantom_power(mic: str, on: bool = True) -> Command:
    """Switch phantom power; ``mic`` is a hex or dotted source id."""
    return Command("MIC", mic, {"PPWR": _flag(on)})
