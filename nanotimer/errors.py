"""
Exception hierarchy for nanotimer.

All errors derive from NanoTimerError so callers can catch the whole family
with one ``except`` clause. Each also derives from the closest builtin so
existing ``except ValueError`` / ``except RuntimeError`` handlers keep working.

Hierarchy::

    NanoTimerError
      ├── ValidationError      ── bad task, durationSpec or callback argument
      ├── SpawnError           ── timing engine could not be started
      ├── ProtocolNoiseError   ── unrecognised notification line (internal)
      └── ClosedError          ── operation attempted after destroy()
"""


class NanoTimerError(Exception):
    """Base exception for all nanotimer errors."""

    pass


class ValidationError(NanoTimerError, ValueError):
    """Raised when a caller passes an invalid argument to a timer operation."""

    def __init__(self, message: str, operation: str = ""):
        self.operation = operation
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message)


class SpawnError(NanoTimerError, RuntimeError):
    """Raised when the timing engine process cannot be started."""

    def __init__(self, message: str, command=None):
        self.command = list(command) if command else []
        super().__init__(message)


class ProtocolNoiseError(NanoTimerError, ValueError):
    """Raised by the notification parser for lines it does not understand."""

    def __init__(self, line: str, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"Unrecognised engine line ({reason}): {line!r}")


class ClosedError(NanoTimerError, RuntimeError):
    """Raised when a command is issued after teardown has begun."""

    pass
