#!/usr/bin/env python3
"""
Pseudo Engine - Mock timing engine for testing

Speaks the timing engine protocol on stdin/stdout so nanotimer can be
exercised against a real child process without the engine binary.
Supports:
- setTimeout / clearTimeout / setInterval / clearInterval commands
- -d/--debug: diagnostics on stderr
- -h/--help: usage
- Exit on stdin EOF (pending timers never fire)
- crash <code>: exit immediately with the given code (tests engine death)
"""

import argparse
import os
import sys
import threading
import time

debug = False
lock = threading.Lock()
out_lock = threading.Lock()
timers = {}
intervals = {}

UNITS = {"s": 1_000_000_000, "m": 1_000_000, "u": 1_000, "n": 1}


def log(text: str) -> None:
    """Write a diagnostic line to stderr when debugging"""
    if debug:
        print(text, file=sys.stderr, flush=True)


def emit(text: str) -> None:
    """Write one notification line"""
    with out_lock:
        print(text, flush=True)


def parse_duration(text: str) -> int:
    """Parse <int><s|m|u|n> into nanoseconds"""
    if len(text) < 2 or text[-1] not in UNITS:
        raise ValueError(f"invalid duration: {text}")
    return int(text[:-1]) * UNITS[text[-1]]


def set_timeout(timer_id: str, duration_ns: int) -> None:
    with lock:
        if timer_id in timers:
            log(f"Timer with ID {timer_id} already exists")
            return
        log(f"Setting timeout with ID {timer_id} for {duration_ns}ns")
        start = time.perf_counter_ns()
        timer = threading.Timer(duration_ns / 1e9, fire_timeout, args=(timer_id,))
        timer.daemon = True
        timers[timer_id] = (timer, start)
        timer.start()


def fire_timeout(timer_id: str) -> None:
    with lock:
        entry = timers.pop(timer_id, None)
        if entry is None:
            return
        emit(f"timeout {timer_id} {time.perf_counter_ns() - entry[1]}")


def clear_timeout(timer_id: str) -> None:
    with lock:
        entry = timers.pop(timer_id, None)
        if entry is None:
            log(f"No timeout found with ID {timer_id}")
            return
        log(f"Clearing timeout with ID {timer_id}")
        entry[0].cancel()
        emit(f"clearedTimeout {timer_id} {time.perf_counter_ns() - entry[1]}")


def set_interval(timer_id: str, duration_ns: int) -> None:
    with lock:
        if timer_id in intervals:
            log(f"Interval with ID {timer_id} already exists")
            return
        log(f"Setting interval with ID {timer_id} for {duration_ns}ns")
        stop = threading.Event()
        intervals[timer_id] = stop

    def tick():
        while not stop.wait(duration_ns / 1e9):
            emit(f"interval {timer_id}")
        log(f"Interval with ID {timer_id} stopped")

    threading.Thread(target=tick, daemon=True).start()


def clear_interval(timer_id: str) -> None:
    with lock:
        stop = intervals.pop(timer_id, None)
    if stop is None:
        log(f"No interval found with ID {timer_id}")
        return
    log(f"Clearing interval with ID {timer_id}")
    stop.set()


def process_command(line: str) -> None:
    """Process one command line"""
    log(f"Received line: {line.rstrip()}")
    fields = line.split()
    if len(fields) < 2:
        log("Invalid command format")
        return
    cmd, timer_id = fields[0], fields[1]

    if cmd == "crash":
        sys.stdout.flush()
        # Skip interpreter cleanup, like a killed process
        os._exit(int(timer_id))

    if cmd in ("setTimeout", "setInterval"):
        if len(fields) < 3:
            log(f"{cmd} requires 3 arguments")
            return
        try:
            duration_ns = parse_duration(fields[2])
        except ValueError as e:
            log(f"Error parsing duration: {e}")
            return
        if cmd == "setTimeout":
            set_timeout(timer_id, duration_ns)
        else:
            set_interval(timer_id, duration_ns)
    elif cmd == "clearTimeout":
        clear_timeout(timer_id)
    elif cmd == "clearInterval":
        clear_interval(timer_id)
    else:
        log(f"Unknown command: {cmd}")


def main():
    """Main command loop"""
    global debug

    parser = argparse.ArgumentParser(description="Pseudo timing engine for nanotimer tests")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug output")
    args = parser.parse_args()
    debug = args.debug

    log("Waiting for commands...")
    for line in sys.stdin:
        process_command(line)
    log("EOF received, exiting")


if __name__ == "__main__":
    main()
