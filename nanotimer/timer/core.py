"""
NanoTimer - core implementation

NanoTimer multiplexes timeout and interval requests over one timing engine.
It writes commands to the engine, reads its notifications on a background
thread and runs the matching task for each one.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Dict, Callable, Tuple, Any, Iterator

from nanotimer.engine.process import EngineAdapter, EngineConfig, EngineProcess
from nanotimer.errors import ValidationError, ClosedError
from nanotimer.protocol import (
    CommandVerb,
    Notification,
    NotificationKind,
    TimerKind,
    TimeoutResult,
    encode_command,
    parse_duration,
)
from nanotimer.timing import time_task

logger = logging.getLogger(__name__)


@dataclass
class TimerEntry:
    """An outstanding timeout or interval"""
    timer_id: str
    kind: TimerKind
    task: Callable
    args: Tuple[Any, ...] = ()
    on_complete: Optional[Callable] = None
    # Timeout cancellation sent, acknowledgment not yet received
    cancelled: bool = False


def validate_timer_args(task, args, duration, on_complete, operation: str) -> Tuple[Any, ...]:
    """
    Check the arguments of set_timeout / set_interval.

    Returns:
        args as a tuple

    Raises:
        ValidationError: On any invalid argument
    """
    if not callable(task):
        raise ValidationError("task must be a callable", operation)

    if args is None:
        args = ()
    elif isinstance(args, (list, tuple)):
        args = tuple(args)
    else:
        raise ValidationError(f"args must be a list or tuple, got {type(args).__name__}", operation)

    try:
        parse_duration(duration)
    except ValidationError as e:
        raise ValidationError(str(e), operation) from None

    if on_complete is not None and not callable(on_complete):
        raise ValidationError("on_complete must be a callable", operation)

    return args


class NanoTimer:
    """
    High-resolution setTimeout/setInterval backed by an external engine.

    At most one timeout and one interval are active per instance; setting a
    new one replaces (and cancels) the previous one of the same kind. Once
    no timers remain the engine is shut down and the instance is retired:
    further set_timeout/set_interval calls raise ClosedError.

    Callbacks run on the notification reader thread. Public methods and
    dispatch share one re-entrant lock, so callbacks may call back into the
    timer.
    """

    def __init__(
        self,
        log: bool = False,
        engine: Optional[EngineAdapter] = None,
        config: Optional[EngineConfig] = None,
    ):
        """
        Initialize NanoTimer and start its engine.

        Args:
            log: Log engine lifecycle events at INFO instead of DEBUG
            engine: Engine adapter to use (default: EngineProcess)
            config: Engine configuration when no adapter is given

        Raises:
            SpawnError: If the engine cannot be started
        """
        self.logging = log
        self.engine = engine if engine is not None else EngineProcess(config)

        # Map timer ids to tasks
        self.tasks: Dict[str, TimerEntry] = {}
        self.next_id: int = 1

        # Active timeout and interval ids
        self.timeout_id: Optional[str] = None
        self.interval_id: Optional[str] = None

        self._destroyed: bool = False
        self._lock = threading.RLock()
        self.reader: Optional[threading.Thread] = None

        pid = self.engine.start()
        self._log(f"Timing engine started with PID: {pid}")

        self.reader = threading.Thread(
            target=self._read_notifications,
            args=(self.engine.notifications(),),
            name=f"nanotimer-reader-{pid}",
            daemon=True,
        )
        self.reader.start()

    def __enter__(self) -> "NanoTimer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.destroy()

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def _log(self, message: str) -> None:
        if self.logging:
            logger.info(message)
        else:
            logger.debug(message)

    def _write(self, line: str) -> None:
        logger.debug(f"-> {line}")
        self.engine.write_line(line + "\n")

    def _send(self, verb: CommandVerb, timer_id: str, duration: Optional[str] = None) -> None:
        self._write(encode_command(verb, timer_id, duration))

    def _ensure_open(self) -> None:
        if self._destroyed:
            raise ClosedError("NanoTimer has been destroyed; create a new instance")

    def set_timeout(self, task: Callable, args=None, duration: str = None, on_complete: Optional[Callable] = None) -> None:
        """
        Run task once after duration.

        Args:
            task: Callable to run
            args: Positional arguments for task (list or tuple)
            duration: durationSpec, e.g. "500m"
            on_complete: Called with a TimeoutResult after the task runs, or
                after the timeout is cancelled

        Raises:
            ValidationError: On invalid arguments (no state is changed)
            ClosedError: If the timer has been destroyed
        """
        args = validate_timer_args(task, args, duration, on_complete, "set_timeout")

        with self._lock:
            self._ensure_open()

            # Encode first so a bad command leaves the current timeout alone
            timer_id = str(self.next_id)
            line = encode_command(CommandVerb.SET_TIMEOUT, timer_id, duration)

            # Clear any existing timeout
            if self.timeout_id is not None:
                self._cancel_timeout()

            self._write(line)
            self.next_id += 1
            self.tasks[timer_id] = TimerEntry(
                timer_id=timer_id,
                kind=TimerKind.TIMEOUT,
                task=task,
                args=args,
                on_complete=on_complete,
            )
            self.timeout_id = timer_id

    def clear_timeout(self) -> None:
        """
        Cancel the active timeout, if any.

        The entry is kept until the engine acknowledges the cancellation, so
        a firing that races the cancellation is recognised and its task is
        skipped.
        """
        with self._lock:
            if self.timeout_id is not None:
                self._cancel_timeout()

    def _cancel_timeout(self) -> None:
        timer_id = self.timeout_id
        entry = self.tasks.get(timer_id)
        if entry is not None:
            # State changes only once the engine has taken the command
            self._send(CommandVerb.CLEAR_TIMEOUT, timer_id)
            entry.cancelled = True
        self.timeout_id = None

    def set_interval(self, task: Callable, args=None, duration: str = None, on_complete: Optional[Callable] = None) -> None:
        """
        Run task every duration until cleared.

        Args:
            task: Callable to run
            args: Positional arguments for task (list or tuple)
            duration: durationSpec, e.g. "1s"
            on_complete: Called with no arguments after every run of task

        Raises:
            ValidationError: On invalid arguments (no state is changed)
            ClosedError: If the timer has been destroyed
        """
        args = validate_timer_args(task, args, duration, on_complete, "set_interval")

        with self._lock:
            self._ensure_open()

            timer_id = str(self.next_id)
            line = encode_command(CommandVerb.SET_INTERVAL, timer_id, duration)

            # Clear any existing interval
            if self.interval_id is not None:
                self._cancel_interval()

            self._write(line)
            self.next_id += 1
            self.tasks[timer_id] = TimerEntry(
                timer_id=timer_id,
                kind=TimerKind.INTERVAL,
                task=task,
                args=args,
                on_complete=on_complete,
            )
            self.interval_id = timer_id

    def clear_interval(self) -> None:
        """Stop the active interval, if any"""
        with self._lock:
            if self.interval_id is not None:
                self._cancel_interval()
                self._check_and_destroy()

    def _cancel_interval(self) -> None:
        # Firings already in flight find no entry and are dropped
        timer_id = self.interval_id
        self._send(CommandVerb.CLEAR_INTERVAL, timer_id)
        self.interval_id = None
        self.tasks.pop(timer_id, None)

    def has_timeout(self) -> bool:
        return self.timeout_id is not None

    def has_interval(self) -> bool:
        return self.interval_id is not None

    def time(self, task: Callable, args=None, unit: Optional[str] = None, callback: Optional[Callable] = None):
        """Measure task duration; see nanotimer.timing.time_task"""
        return time_task(task, args, unit, callback)

    def _read_notifications(self, notifications: Iterator[Notification]) -> None:
        """Reader thread: dispatch every notification until the engine output ends"""
        try:
            for notification in notifications:
                self.dispatch(notification)
        finally:
            self._log(f"Timing engine exited with code {self.engine.returncode}")
            with self._lock:
                if self.tasks and not self._destroyed:
                    logger.warning(
                        f"Timing engine output ended with {len(self.tasks)} timer(s) outstanding"
                    )
            self.destroy()

    def dispatch(self, notification: Notification) -> None:
        """
        Handle one engine notification.

        Notifications for unknown ids (late firings after a clear, or noise)
        are dropped.
        """
        with self._lock:
            if self._destroyed:
                return

            timer_id = notification.timer_id
            entry = self.tasks.get(timer_id)
            if entry is None:
                logger.debug(f"Dropping {notification.kind.value} for unknown timer {timer_id}")
                return

            if notification.kind == NotificationKind.INTERVAL:
                if entry.kind != TimerKind.INTERVAL:
                    logger.debug(f"Dropping interval event for timeout {timer_id}")
                    return
                self._run(entry.task, *entry.args)
                # For intervals, on_complete is called after each execution
                if entry.on_complete is not None:
                    self._run(entry.on_complete)
            else:
                if entry.kind != TimerKind.TIMEOUT:
                    logger.debug(f"Dropping {notification.kind.value} event for interval {timer_id}")
                    return
                self._complete_timeout(entry, notification)

            # Check if we need to destroy the NanoTimer
            self._check_and_destroy()

    def _complete_timeout(self, entry: TimerEntry, notification: Notification) -> None:
        # The id is terminal from here on; a task that schedules a new
        # timeout must not cancel this one
        self.tasks.pop(entry.timer_id, None)
        if self.timeout_id == entry.timer_id:
            self.timeout_id = None

        fired = notification.kind == NotificationKind.TIMEOUT
        if fired and not entry.cancelled:
            self._run(entry.task, *entry.args)
        elif fired:
            logger.debug(f"Timeout {entry.timer_id} fired before its cancellation; task skipped")

        if entry.on_complete is not None:
            result = TimeoutResult(
                timer_id=entry.timer_id,
                wait_time=notification.wait_time or 0,
                cancelled=entry.cancelled or not fired,
            )
            self._run(entry.on_complete, result)

    def _run(self, callback: Callable, *args) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Timer callback {callback!r} raised")

    def _check_and_destroy(self) -> None:
        """Destroy once nothing is active or awaiting acknowledgment"""
        if self._destroyed:
            return
        if self.timeout_id is None and self.interval_id is None and not self.tasks:
            self._log("No timers outstanding, stopping timing engine")
            self.destroy()

    def destroy(self) -> None:
        """
        Stop the engine and drop all timers. Safe to call more than once.
        """
        with self._lock:
            if self._destroyed:
                return
            self._destroyed = True
            self.timeout_id = None
            self.interval_id = None
            self.tasks.clear()

        self.engine.destroy()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the notification reader to finish.

        Returns:
            True if the reader has finished
        """
        if self.reader is None:
            return True
        if self.reader is threading.current_thread():
            return False
        self.reader.join(timeout)
        return not self.reader.is_alive()
