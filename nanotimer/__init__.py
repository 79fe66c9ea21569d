"""
nanotimer - High-resolution timers backed by an external timing engine

setTimeout/setInterval style scheduling where the waiting is done by a
separate engine process that reports back over a line protocol.

Core components:
- NanoTimer: multiplexes timeouts and intervals over one engine
- Engine adapters: EngineProcess (engine binary) and PseudoEngine (in-memory)
- Protocol: command/notification line codec
- time_task: elapsed-time measurement around a unit of work
"""

__version__ = "1.0.0"

from nanotimer.errors import (
    NanoTimerError,
    ValidationError,
    SpawnError,
    ProtocolNoiseError,
    ClosedError,
)
from nanotimer.protocol import (
    CommandVerb,
    NotificationKind,
    TimerKind,
    Command,
    Notification,
    TimeoutResult,
    encode_command,
    decode_notification,
    parse_duration,
    format_duration,
)
from nanotimer.engine import EngineConfig, EngineProcess, PseudoEngine
from nanotimer.timer import NanoTimer
from nanotimer.timing import time_task, format_elapsed

__all__ = [
    "NanoTimer",
    "EngineConfig",
    "EngineProcess",
    "PseudoEngine",
    "CommandVerb",
    "NotificationKind",
    "TimerKind",
    "Command",
    "Notification",
    "TimeoutResult",
    "encode_command",
    "decode_notification",
    "parse_duration",
    "format_duration",
    "time_task",
    "format_elapsed",
    "NanoTimerError",
    "ValidationError",
    "SpawnError",
    "ProtocolNoiseError",
    "ClosedError",
]
