"""
Line protocol spoken between nanotimer and the timing engine.

Host -> engine, one command per line:
    setTimeout <id> <duration>
    clearTimeout <id>
    setInterval <id> <duration>
    clearInterval <id>

Engine -> host, one notification per line:
    timeout <id> <waitTimeNs>
    clearedTimeout <id> <waitTimeNs>
    interval <id>

A duration is an integer magnitude immediately followed by one unit
character: s, m, u or n.

Everything here is pure: no state, no I/O.
"""

import logging
import re
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Dict, Any, Tuple

from nanotimer.errors import ValidationError, ProtocolNoiseError

logger = logging.getLogger(__name__)


class CommandVerb(str, Enum):
    """Commands understood by the engine"""
    SET_TIMEOUT = "setTimeout"
    CLEAR_TIMEOUT = "clearTimeout"
    SET_INTERVAL = "setInterval"
    CLEAR_INTERVAL = "clearInterval"


class NotificationKind(str, Enum):
    """Events emitted by the engine"""
    TIMEOUT = "timeout"
    CLEARED_TIMEOUT = "clearedTimeout"
    INTERVAL = "interval"


class TimerKind(str, Enum):
    """Kind of a registered timer"""
    TIMEOUT = "timeout"
    INTERVAL = "interval"


class TimeUnit(str, Enum):
    """Duration units accepted by the engine"""
    SECONDS = "s"
    MILLISECONDS = "m"
    MICROSECONDS = "u"
    NANOSECONDS = "n"


# Nanoseconds per unit
UNIT_NS = {
    TimeUnit.SECONDS: 1_000_000_000,
    TimeUnit.MILLISECONDS: 1_000_000,
    TimeUnit.MICROSECONDS: 1_000,
    TimeUnit.NANOSECONDS: 1,
}

DURATION_PATTERN = re.compile(r"([0-9]+)([smun])")

# Largest duration the engine can hold (int64 nanoseconds)
MAX_DURATION_NS = 2**63 - 1

SET_VERBS = (CommandVerb.SET_TIMEOUT, CommandVerb.SET_INTERVAL)


def parse_duration(spec: str) -> Tuple[int, TimeUnit]:
    """
    Split a durationSpec into magnitude and unit.

    Args:
        spec: Duration string such as "500m" or "2s"

    Returns:
        Tuple of (magnitude, unit)

    Raises:
        ValidationError: If spec is not a string of the form <int><s|m|u|n>
    """
    if not isinstance(spec, str):
        raise ValidationError(
            f"duration must be a string specified as an integer followed by "
            f"'s', 'm', 'u', or 'n', got {type(spec).__name__}"
        )
    match = DURATION_PATTERN.fullmatch(spec)
    if match is None:
        raise ValidationError(
            f"duration must be an integer followed by 's', 'm', 'u', or 'n', got {spec!r}"
        )
    magnitude, unit = int(match.group(1)), TimeUnit(match.group(2))
    if magnitude * UNIT_NS[unit] > MAX_DURATION_NS:
        raise ValidationError(f"duration {spec!r} exceeds the engine maximum of {MAX_DURATION_NS}ns")
    return magnitude, unit


def format_duration(magnitude: int, unit) -> str:
    """Build a durationSpec from magnitude and unit"""
    if isinstance(magnitude, bool) or not isinstance(magnitude, int) or magnitude < 0:
        raise ValidationError(f"duration magnitude must be a non-negative integer, got {magnitude!r}")
    try:
        unit = TimeUnit(unit)
    except ValueError:
        raise ValidationError(f"unknown duration unit: {unit!r}")
    return f"{magnitude}{unit.value}"


def duration_to_ns(spec: str) -> int:
    """Convert a durationSpec to nanoseconds"""
    magnitude, unit = parse_duration(spec)
    return magnitude * UNIT_NS[unit]


@dataclass
class Command:
    """One host -> engine command line"""
    verb: CommandVerb
    timer_id: str
    duration: Optional[str] = None

    def to_line(self) -> str:
        return encode_command(self.verb, self.timer_id, self.duration)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Command":
        return cls(
            verb=CommandVerb(data["verb"]),
            timer_id=str(data["timer_id"]),
            duration=data.get("duration"),
        )

    @classmethod
    def from_line(cls, line: str) -> "Command":
        """Parse a command line as the engine reads it"""
        fields = line.split()
        if len(fields) < 2:
            raise ValidationError(f"invalid command format: {line!r}")
        try:
            verb = CommandVerb(fields[0])
        except ValueError:
            raise ValidationError(f"unknown command: {fields[0]!r}")
        duration = None
        if verb in SET_VERBS:
            if len(fields) < 3:
                raise ValidationError(f"{verb.value} requires a duration")
            parse_duration(fields[2])
            duration = fields[2]
        return cls(verb=verb, timer_id=fields[1], duration=duration)


@dataclass
class Notification:
    """One engine -> host notification line"""
    kind: NotificationKind
    timer_id: str
    wait_time: Optional[int] = None  # ns; timeout and clearedTimeout only

    def to_line(self) -> str:
        if self.wait_time is None:
            return f"{self.kind.value} {self.timer_id}"
        return f"{self.kind.value} {self.timer_id} {self.wait_time}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Notification":
        return cls(
            kind=NotificationKind(data["kind"]),
            timer_id=str(data["timer_id"]),
            wait_time=data.get("wait_time"),
        )

    @classmethod
    def from_line(cls, line: str) -> "Notification":
        """
        Parse a notification line.

        Raises:
            ProtocolNoiseError: If the line is not a valid notification
        """
        fields = line.split()
        if len(fields) < 2:
            raise ProtocolNoiseError(line, "too few fields")

        try:
            kind = NotificationKind(fields[0])
        except ValueError:
            raise ProtocolNoiseError(line, f"unknown event {fields[0]!r}")

        wait_time = None
        if kind != NotificationKind.INTERVAL:
            if len(fields) < 3:
                raise ProtocolNoiseError(line, "missing wait time")
            try:
                wait_time = int(fields[2])
            except ValueError:
                raise ProtocolNoiseError(line, "wait time is not an integer")

        return cls(kind=kind, timer_id=fields[1], wait_time=wait_time)


@dataclass
class TimeoutResult:
    """
    Completion data handed to a timeout's on_complete callback.

    wait_time is the time in nanoseconds the engine measured between
    scheduling and firing (or cancellation).
    """
    timer_id: str
    wait_time: int
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def encode_command(verb, timer_id, duration: Optional[str] = None) -> str:
    """
    Encode a command as a single protocol line (no trailing newline).

    Args:
        verb: CommandVerb or its wire name
        timer_id: Timer identifier
        duration: durationSpec, required for set* verbs, ignored for clear*

    Returns:
        Command line

    Raises:
        ValidationError: If the command cannot be encoded
    """
    try:
        verb = CommandVerb(verb)
    except ValueError:
        raise ValidationError(f"unknown command verb: {verb!r}")

    timer_id = str(timer_id)
    if not timer_id or len(timer_id.split()) != 1 or timer_id != timer_id.strip():
        raise ValidationError(f"timer id must be a single non-empty token, got {timer_id!r}")

    if verb not in SET_VERBS:
        return f"{verb.value} {timer_id}"

    if duration is None:
        raise ValidationError(f"{verb.value} requires a duration")
    parse_duration(duration)
    return f"{verb.value} {timer_id} {duration}"


def decode_notification(line: str) -> Optional[Notification]:
    """
    Decode one engine output line.

    Malformed or unrecognised lines are protocol noise: they are logged at
    DEBUG and None is returned. This function never raises.
    """
    if not isinstance(line, str):
        logger.debug(f"Ignoring non-text engine output: {line!r}")
        return None
    try:
        return Notification.from_line(line)
    except ProtocolNoiseError as e:
        logger.debug(f"Ignoring engine output: {e}")
        return None
