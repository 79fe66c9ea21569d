"""
Pseudo timing engine for local testing without the engine binary.

PseudoEngine speaks the engine protocol entirely in memory. With auto=True it
keeps time itself using threading timers; with auto=False nothing fires on its
own and tests feed notification lines through emit().
"""

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from typing import Optional, Dict, List, Iterator

from nanotimer.engine.process import EngineAdapter, check_line
from nanotimer.errors import SpawnError, ClosedError, ValidationError
from nanotimer.protocol import (
    CommandVerb,
    Notification,
    NotificationKind,
    decode_notification,
    duration_to_ns,
)

logger = logging.getLogger(__name__)


@dataclass
class PseudoTimeout:
    """A pending one-shot timer"""
    timer: threading.Timer
    start_ns: int


class PseudoEngine(EngineAdapter):
    """Pseudo engine - simulates the timing engine process in memory"""

    def __init__(self, auto: bool = True):
        super().__init__()
        self.auto = auto
        # Every command line received, without trailing newline
        self.commands: List[str] = []
        self.stdin_closed: bool = False
        self.destroy_calls: int = 0
        self.started: bool = False
        self.ended: bool = False

        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._lock = threading.Lock()
        self._timeouts: Dict[str, PseudoTimeout] = {}
        self._intervals: Dict[str, threading.Event] = {}

    def start(self) -> int:
        """Start a pseudo engine"""
        if self.started:
            raise SpawnError("Pseudo engine already started")
        self.started = True
        self.pid = os.getpid()
        logger.debug("Pseudo engine started")
        return self.pid

    def write_line(self, line: str) -> None:
        check_line(line)
        if not self.started:
            raise ClosedError("Pseudo engine not started")
        if self.closing:
            raise ClosedError("Pseudo engine is shutting down")

        command = line.rstrip("\n")
        self.commands.append(command)
        if self.auto:
            self._handle(command)

    def emit(self, line: str) -> None:
        """Queue an engine output line for the notification stream"""
        if self.ended:
            return
        self._lines.put(line)

    def notifications(self) -> Iterator[Notification]:
        while True:
            line = self._lines.get()
            if line is None:
                break
            notification = decode_notification(line)
            if notification is not None:
                yield notification

    def crash(self) -> None:
        """End the notification stream as if the engine died"""
        self._stop_all()
        self._end_stream()

    def destroy(self) -> None:
        self.destroy_calls += 1
        if self.closing:
            return
        self.closing = True
        self.stdin_closed = True
        # The engine exits on EOF; nothing pending fires after that
        self._stop_all()
        self._end_stream()

    def is_alive(self) -> bool:
        return self.started and not self.ended

    def _end_stream(self) -> None:
        if not self.ended:
            self.ended = True
            self._lines.put(None)

    def _stop_all(self) -> None:
        with self._lock:
            for pending in self._timeouts.values():
                pending.timer.cancel()
            self._timeouts.clear()
            for stop in self._intervals.values():
                stop.set()
            self._intervals.clear()

    def _handle(self, command: str) -> None:
        """Process one command the way the engine does"""
        fields = command.split()
        if len(fields) < 2:
            logger.debug(f"Pseudo engine: invalid command format: {command!r}")
            return
        verb, timer_id = fields[0], fields[1]

        if verb in (CommandVerb.SET_TIMEOUT.value, CommandVerb.SET_INTERVAL.value):
            if len(fields) < 3:
                logger.debug(f"Pseudo engine: {verb} requires 3 arguments")
                return
            try:
                duration_ns = duration_to_ns(fields[2])
            except ValidationError as e:
                logger.debug(f"Pseudo engine: error parsing duration: {e}")
                return
            if verb == CommandVerb.SET_TIMEOUT.value:
                self._set_timeout(timer_id, duration_ns)
            else:
                self._set_interval(timer_id, duration_ns)
        elif verb == CommandVerb.CLEAR_TIMEOUT.value:
            self._clear_timeout(timer_id)
        elif verb == CommandVerb.CLEAR_INTERVAL.value:
            self._clear_interval(timer_id)
        else:
            logger.debug(f"Pseudo engine: unknown command: {verb}")

    def _set_timeout(self, timer_id: str, duration_ns: int) -> None:
        with self._lock:
            if timer_id in self._timeouts:
                logger.debug(f"Pseudo engine: timer with ID {timer_id} already exists")
                return
            start_ns = time.perf_counter_ns()
            timer = threading.Timer(duration_ns / 1e9, self._fire_timeout, args=(timer_id,))
            timer.daemon = True
            self._timeouts[timer_id] = PseudoTimeout(timer=timer, start_ns=start_ns)
            timer.start()

    def _fire_timeout(self, timer_id: str) -> None:
        with self._lock:
            pending = self._timeouts.pop(timer_id, None)
            if pending is None:
                return  # Cleared first
            wait_time = time.perf_counter_ns() - pending.start_ns
            self.emit(f"{NotificationKind.TIMEOUT.value} {timer_id} {wait_time}")

    def _clear_timeout(self, timer_id: str) -> None:
        with self._lock:
            pending = self._timeouts.pop(timer_id, None)
            if pending is None:
                logger.debug(f"Pseudo engine: no timeout found with ID {timer_id}")
                return
            pending.timer.cancel()
            wait_time = time.perf_counter_ns() - pending.start_ns
            self.emit(f"{NotificationKind.CLEARED_TIMEOUT.value} {timer_id} {wait_time}")

    def _set_interval(self, timer_id: str, duration_ns: int) -> None:
        with self._lock:
            if timer_id in self._intervals:
                logger.debug(f"Pseudo engine: interval with ID {timer_id} already exists")
                return
            stop = threading.Event()
            self._intervals[timer_id] = stop

        thread = threading.Thread(
            target=self._tick,
            args=(timer_id, duration_ns / 1e9, stop),
            name=f"pseudo-interval-{timer_id}",
            daemon=True,
        )
        thread.start()

    def _tick(self, timer_id: str, period_s: float, stop: threading.Event) -> None:
        while not stop.wait(period_s):
            self.emit(f"{NotificationKind.INTERVAL.value} {timer_id}")

    def _clear_interval(self, timer_id: str) -> None:
        with self._lock:
            stop = self._intervals.pop(timer_id, None)
        if stop is None:
            logger.debug(f"Pseudo engine: no interval found with ID {timer_id}")
            return
        stop.set()
