"""
nanotimer CLI - Main entry point

Provides commands for:
- timeout: Schedule one timeout and report the engine's measured wait
- interval: Run an interval for a number of firings
- time: Measure a local sleep of the given duration
- check: Verify the timing engine can be started
"""

import argparse
import logging
import sys
import threading
import time

from nanotimer.config import TimerConfig, EngineType, load_config, create_engine
from nanotimer.errors import NanoTimerError
from nanotimer.protocol import parse_duration, duration_to_ns
from nanotimer.timer import NanoTimer
from nanotimer.timing import time_task

logger = logging.getLogger('nanotimer')


def _create_timer(args) -> NanoTimer:
    config = args.timer_config
    return NanoTimer(log=config.logging.log_lifecycle, engine=create_engine(config))


def cmd_timeout(args):
    """Schedule a single timeout"""
    parse_duration(args.duration)
    timer = _create_timer(args)
    done = threading.Event()

    def report(result):
        wait_ms = result.wait_time / 1e6
        print(f"timeout {result.timer_id} fired after {wait_ms:.3f} ms ({result.wait_time} ns)")
        done.set()

    try:
        timer.set_timeout(lambda: None, [], args.duration, report)
        while not done.wait(0.1):
            if timer.destroyed:
                print("Timing engine exited before the timeout fired", file=sys.stderr)
                return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
    finally:
        timer.destroy()
        timer.join(1.0)
    return 0


def cmd_interval(args):
    """Run an interval for --count firings"""
    parse_duration(args.duration)
    timer = _create_timer(args)
    start = time.perf_counter()
    period_s = duration_to_ns(args.duration) / 1e9
    state = {"count": 0}

    def tick():
        state["count"] += 1
        drift_ms = (time.perf_counter() - start - state["count"] * period_s) * 1e3
        print(f"interval {state['count']}: drift {drift_ms:+.3f} ms")
        if args.count and state["count"] >= args.count:
            timer.clear_interval()

    try:
        timer.set_interval(tick, [], args.duration)
        timer.join()
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
    finally:
        timer.destroy()
        timer.join(1.0)
    return 0


def cmd_time(args):
    """Measure a local sleep"""
    _, unit = parse_duration(args.duration)
    seconds = duration_to_ns(args.duration) / 1e9
    elapsed = time_task(time.sleep, [seconds], unit.value)
    print(f"slept {args.duration}: measured {elapsed}{unit.value}")
    return 0


def cmd_check(args):
    """Start and stop the timing engine"""
    timer = _create_timer(args)
    print(f"Timing engine running (PID {timer.engine.pid})")
    timer.destroy()
    timer.join(1.0)
    print("Timing engine stopped")
    return 0


def main(argv=None):
    """Main entry point for nanotimer CLI"""

    parser = argparse.ArgumentParser(
        description="nanotimer - high-resolution timers backed by an external timing engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Path to configuration file (YAML)")
    parser.add_argument("--engine", help="Path to the timing engine binary (overrides config)")
    parser.add_argument("--pseudo", action="store_true", help="Use the in-memory pseudo engine")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    timeout_parser = subparsers.add_parser("timeout", help="Schedule one timeout")
    timeout_parser.add_argument("duration", help="Duration such as 500m, 2s, 100u, 1000n")
    timeout_parser.set_defaults(func=cmd_timeout)

    interval_parser = subparsers.add_parser("interval", help="Run an interval")
    interval_parser.add_argument("duration", help="Interval period such as 1s")
    interval_parser.add_argument("--count", type=int, default=5, help="Stop after this many firings (0: run until Ctrl-C)")
    interval_parser.set_defaults(func=cmd_interval)

    time_parser = subparsers.add_parser("time", help="Measure a local sleep")
    time_parser.add_argument("duration", help="Sleep duration; its unit is the unit of the result")
    time_parser.set_defaults(func=cmd_time)

    check_parser = subparsers.add_parser("check", help="Verify the timing engine starts")
    check_parser.set_defaults(func=cmd_check)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config) if args.config else TimerConfig()
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    if args.engine:
        config.command = [args.engine]
    if args.pseudo:
        config.engine_type = EngineType.PSEUDO
    args.timer_config = config

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.logging.level, logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    try:
        return args.func(args)
    except NanoTimerError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
