"""
Elapsed-time measurement around a unit of work.

Independent of the timing engine. Units match the engine's duration units:
    s - seconds (float)
    m - milliseconds (float)
    u - microseconds (float)
    n - nanoseconds (int)
Any other unit (or none) returns a raw (seconds, nanoseconds) tuple.
"""

import time
from typing import Optional, Callable, Sequence, Union, Tuple

from nanotimer.errors import ValidationError

Elapsed = Union[float, int, Tuple[int, int]]


def format_elapsed(elapsed_ns: int, unit: Optional[str] = None) -> Elapsed:
    """
    Convert a nanosecond count to the requested unit.

    Args:
        elapsed_ns: Elapsed time in nanoseconds
        unit: 's', 'm', 'u', 'n' or anything else for (seconds, nanos)

    Returns:
        Elapsed time in the requested representation
    """
    seconds, nanos = divmod(elapsed_ns, 1_000_000_000)
    if unit == "s":
        return seconds + nanos / 1e9
    elif unit == "m":
        return seconds * 1e3 + nanos / 1e6
    elif unit == "u":
        return seconds * 1e6 + nanos / 1e3
    elif unit == "n":
        return elapsed_ns
    else:
        return (seconds, nanos)


def time_task(
    task: Callable,
    args: Optional[Sequence] = None,
    unit: Optional[str] = None,
    callback: Optional[Callable[[Elapsed], None]] = None,
) -> Optional[Elapsed]:
    """
    Measure how long a task takes.

    Without a callback the task runs synchronously and the elapsed time is
    returned. With a callback, a continuation is appended to the task's
    arguments; the task calls it when its work is done and the elapsed time
    is then passed to callback. In that mode None is returned.

    Args:
        task: Callable to measure
        args: Positional arguments for task
        unit: Unit of the result (see format_elapsed)
        callback: Receives the elapsed time in asynchronous mode

    Returns:
        Elapsed time (synchronous mode) or None
    """
    if not callable(task):
        raise ValidationError("task must be callable", "time")
    if callback is not None and not callable(callback):
        raise ValidationError("callback must be callable", "time")
    if args is None:
        args = []
    elif not isinstance(args, (list, tuple)):
        raise ValidationError("args must be a list or tuple", "time")

    start_ns = time.perf_counter_ns()

    if callback is not None:
        def done(*_):
            callback(format_elapsed(time.perf_counter_ns() - start_ns, unit))

        task(*args, done)
        return None

    task(*args)
    return format_elapsed(time.perf_counter_ns() - start_ns, unit)
