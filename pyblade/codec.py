"""Frame codec for the Blade bracketed ASCII protocol.

Frames look like ``<TARGET[:SUBADDR][|KEY:VAL[,KEY:VAL...]]>`` and are
terminated by CRLF on the wire. Inside values the device escapes its
structural characters with a leading slash::

    |  ->  /|        :  ->  /:        ?  ->  /?
    <  ->  /<        >  ->  />

Examples of what the device sends back::

    <UMIXEVENT:1.2|ON:1>
    <SRC:00400002|NAME:mic/:Bob>
    <SYS|NAME:Blade03,BLID:3,MODEL:IP88a,VERSION:1.6.5>
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pyblade.exceptions import InvalidCommand, MalformedFrame

_LOGGER = logging.getLogger(__name__)

ESCAPE_MARKER = "/"
# Characters the device escapes inside values
ESCAPED_CHARACTERS = "|:?<>"
# The parameter separator may also arrive escaped (/,) inside a value
UNESCAPED_CHARACTERS = ESCAPED_CHARACTERS + ","

FRAME_START = "<"
FRAME_END = ">"
FRAME_TERMINATOR = "\r\n"
HEARTBEAT_FRAME = "<>"

# Types the parser classifies, anything else is surfaced as unrecognized
SYSTEM_TYPE = "SYS"
MIXER_TYPES = frozenset({"UMIXEVENT", "UMIX"})

_FORBIDDEN_IN_TARGET = "<>|\r\n"
_FORBIDDEN_IN_KEY = ":,|<>/\r\n"
_FORBIDDEN_IN_VALUE = ",\r\n"

ParamsLike = Union[Mapping[str, Any], Iterable[tuple[str, Any]], None]


class EventType(Enum):
    """Classification of an inbound frame."""

    MIXER_UPDATE = "mixer_update"
    SYSTEM_INFO = "system_info"
    UNRECOGNIZED = "unrecognized"


@dataclass
class Event:
    """A parsed inbound frame.

    ``target`` is the raw frame type (``UMIXEVENT``, ``SYS``, ``SRC``...)
    and ``params`` holds unescaped values.
    """

    type: EventType
    target: str
    subaddr: Optional[str] = None
    params: dict[str, str] = field(default_factory=dict)
    raw: str = ""


def _param_items(params: ParamsLike) -> tuple[tuple[str, Any], ...]:
    if params is None:
        return ()
    if isinstance(params, Mapping):
        return tuple(params.items())
    return tuple((key, value) for key, value in params)


@dataclass(frozen=True)
class Command:
    """An outbound request: target, optional sub-address and ordered parameters.

    ``params`` may be given as a mapping or a sequence of pairs; it is stored
    as a tuple so the command stays immutable.
    """

    target: str
    subaddr: Optional[str] = None
    params: tuple[tuple[str, Any], ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "params", _param_items(self.params))

    def to_frame(self) -> str:
        """Serialize to a wire frame (without the CRLF terminator)."""
        return build_frame(self.target, self.subaddr, self.params)


def escape(value: str) -> str:
    """Escape the device's structural characters in a value.

    One pass over the characters, so a slash already present in the value is
    copied as-is and never escaped twice.
    """
    return "".join(
        ESCAPE_MARKER + char if char in ESCAPED_CHARACTERS else char
        for char in value
    )


def unescape(value: str) -> str:
    """Reverse :func:`escape` in a single left-to-right pass.

    A slash that is not followed by an escapable character is a literal
    slash and is kept.
    """
    result = []
    index = 0
    length = len(value)
    while index < length:
        char = value[index]
        if (
            char == ESCAPE_MARKER
            and index + 1 < length
            and value[index + 1] in UNESCAPED_CHARACTERS
        ):
            result.append(value[index + 1])
            index += 2
        else:
            result.append(char)
            index += 1
    return "".join(result)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def build_frame(target: str, subaddr: Optional[str] = None, params: ParamsLike = None) -> str:
    """Build ``<TARGET[:SUBADDR]|KEY1:VAL1,KEY2:VAL2>`` with escaped values.

    The ``|`` section is omitted when there are no parameters, so
    ``build_frame("")`` is the heartbeat frame ``<>``.

    Raises:
        InvalidCommand: if any part would break the frame structure.
    """
    if any(char in _FORBIDDEN_IN_TARGET for char in target):
        raise InvalidCommand(f"Target contains a frame delimiter: {target!r}")

    head = target
    if subaddr is not None:
        subaddr = str(subaddr)
        if any(char in _FORBIDDEN_IN_TARGET for char in subaddr):
            raise InvalidCommand(f"Sub-address contains a frame delimiter: {subaddr!r}")
        head = f"{target}:{subaddr}"

    pairs = []
    for key, value in _param_items(params):
        if not key or any(char in _FORBIDDEN_IN_KEY for char in key):
            raise InvalidCommand(f"Invalid parameter name: {key!r}")
        text = _format_value(value)
        if any(char in _FORBIDDEN_IN_VALUE for char in text):
            raise InvalidCommand(f"Value for {key} cannot be framed: {text!r}")
        escaped = escape(text)
        trailing = len(escaped) - len(escaped.rstrip(ESCAPE_MARKER))
        if trailing % 2:
            # An odd run of slashes would escape the following separator
            raise InvalidCommand(f"Value for {key} ends in an escape marker: {text!r}")
        pairs.append(f"{key}:{escaped}")

    if pairs:
        return f"{FRAME_START}{head}|{','.join(pairs)}{FRAME_END}"
    return f"{FRAME_START}{head}{FRAME_END}"


def _split_unescaped(text: str, separator: str, maxsplit: int = -1) -> list[str]:
    """Split on ``separator`` unless it follows an odd run of escape markers."""
    parts = []
    current = []
    slashes = 0
    for char in text:
        if char == separator and slashes % 2 == 0 and maxsplit != 0:
            parts.append("".join(current))
            current = []
            maxsplit -= 1
            continue
        current.append(char)
        slashes = slashes + 1 if char == ESCAPE_MARKER else 0
    parts.append("".join(current))
    return parts


def _has_unescaped(text: str, chars: str) -> bool:
    """Whether any of ``chars`` occurs outside an escape sequence."""
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if char == ESCAPE_MARKER and index + 1 < length and text[index + 1] in UNESCAPED_CHARACTERS:
            index += 2
            continue
        if char in chars:
            return True
        index += 1
    return False


def _parse_params(param_string: str, raw: str) -> dict[str, str]:
    params: dict[str, str] = {}
    for token in _split_unescaped(param_string, ","):
        token = token.strip()
        if not token:
            continue
        pieces = _split_unescaped(token, ":", maxsplit=1)
        if len(pieces) < 2 or not pieces[0].strip():
            _LOGGER.warning(f"Dropping parameter without a key: {token!r} in {raw!r}")
            continue
        key, value = pieces
        # Later duplicates overwrite earlier ones
        params[key.strip()] = unescape(value)
    return params


def parse_frame(raw: str) -> Event:
    """Parse one received line into an :class:`Event`.

    Surrounding brackets are optional since device output is not guaranteed
    to be well bracketed.

    Raises:
        MalformedFrame: for empty input, stray brackets, or a missing type.
    """
    message = raw.strip()
    if not message:
        raise MalformedFrame("Empty frame")

    body = message
    if body.startswith(FRAME_START):
        body = body[1:]
    if body.endswith(FRAME_END):
        body = body[:-1]

    target, separator, param_string = body.partition("|")
    if FRAME_START in target or FRAME_END in target:
        raise MalformedFrame(f"Unexpected bracket in frame target: {message!r}")
    if _has_unescaped(param_string, FRAME_START + FRAME_END):
        raise MalformedFrame(f"Unescaped bracket in frame parameters: {message!r}")

    event_type, colon, subaddr = target.partition(":")
    event_type = event_type.strip()
    if not colon:
        subaddr = None
    if not event_type and (colon or separator):
        raise MalformedFrame(f"Frame has no type: {message!r}")

    params = _parse_params(param_string, message) if separator else {}

    if event_type == SYSTEM_TYPE:
        kind = EventType.SYSTEM_INFO
    elif event_type in MIXER_TYPES and subaddr:
        kind = EventType.MIXER_UPDATE
    else:
        kind = EventType.UNRECOGNIZED
    return Event(kind, event_type, subaddr, params, message)


def decode_event(raw: str) -> Event:
    """Parse a line for delivery to listeners, never raising.

    Malformed input is logged and surfaced as an unrecognized event carrying
    the raw text.
    """
    try:
        return parse_frame(raw)
    except MalformedFrame as e:
        _LOGGER.warning(f"Malformed frame received: {e}")
        return Event(EventType.UNRECOGNIZED, "", None, {}, raw.strip())
