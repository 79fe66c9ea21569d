"""
Integration tests using the in-memory pseudo engine in auto mode
"""

import threading
import time

import pytest

from nanotimer import NanoTimer, PseudoEngine
from nanotimer.errors import SpawnError, ClosedError, ValidationError


def test_pseudo_engine_lifecycle():
    """Pseudo engine start / write / destroy"""
    engine = PseudoEngine(auto=False)
    assert not engine.is_alive()

    pid = engine.start()
    assert pid == engine.pid
    assert engine.is_alive()

    with pytest.raises(SpawnError):
        engine.start()

    engine.write_line("setTimeout 1 1s\n")
    assert engine.commands == ["setTimeout 1 1s"]

    engine.destroy()
    engine.destroy()
    assert engine.destroy_calls == 2
    assert engine.stdin_closed
    assert not engine.is_alive()
    assert list(engine.notifications()) == []

    with pytest.raises(ClosedError):
        engine.write_line("clearTimeout 1\n")


def test_pseudo_engine_rejects_partial_lines():
    engine = PseudoEngine(auto=False)
    engine.start()
    with pytest.raises(ValidationError):
        engine.write_line("setTimeout 1 1s")
    with pytest.raises(ValidationError):
        engine.write_line("setTimeout 1 1s\nclearTimeout 1\n")
    engine.destroy()


def test_pseudo_engine_emits_timeout():
    """Auto mode fires a timeout with a measured wait"""
    engine = PseudoEngine(auto=True)
    engine.start()
    engine.write_line("setTimeout 1 20m\n")

    stream = engine.notifications()
    notification = next(stream)
    assert notification.timer_id == "1"
    assert notification.wait_time >= 20_000_000
    engine.destroy()


def test_pseudo_engine_ignores_duplicate_and_bad_commands():
    engine = PseudoEngine(auto=True)
    engine.start()
    engine.write_line("setTimeout 1 10s\n")
    engine.write_line("setTimeout 1 1m\n")
    engine.write_line("setTimeout 2\n")
    engine.write_line("setTimeout 3 fast\n")
    engine.write_line("bogus 4\n")
    engine.write_line("clearTimeout 1\n")
    engine.write_line("clearTimeout 1\n")
    engine.destroy()

    lines = [n.to_line() for n in engine.notifications()]
    assert len(lines) == 1
    assert lines[0].startswith("clearedTimeout 1 ")


def test_timeout_through_nanotimer():
    """set_timeout fires once and the timer retires itself"""
    engine = PseudoEngine(auto=True)
    timer = NanoTimer(engine=engine)
    done = threading.Event()
    results = []
    calls = []

    def on_complete(result):
        results.append(result)
        done.set()

    start = time.perf_counter_ns()
    timer.set_timeout(calls.append, ["hello"], "30m", on_complete)

    assert done.wait(2.0)
    assert calls == ["hello"]
    assert results[0].timer_id == "1"
    assert results[0].wait_time >= 30_000_000
    assert not results[0].cancelled
    assert time.perf_counter_ns() - start >= 30_000_000

    assert timer.join(2.0)
    assert timer.destroyed
    assert engine.destroy_calls == 1


def test_interval_through_nanotimer():
    """set_interval fires repeatedly until cleared from its own task"""
    engine = PseudoEngine(auto=True)
    timer = NanoTimer(engine=engine)
    ticks = []

    def tick():
        ticks.append(time.perf_counter())
        if len(ticks) == 3:
            timer.clear_interval()

    timer.set_interval(tick, [], "10m")

    assert timer.join(2.0)
    assert len(ticks) == 3
    assert engine.commands == ["setInterval 1 10m", "clearInterval 1"]
    assert timer.destroyed


def test_clear_timeout_through_nanotimer():
    """A cleared timeout reports through on_complete and never runs"""
    engine = PseudoEngine(auto=True)
    timer = NanoTimer(engine=engine)
    done = threading.Event()
    results = []
    calls = []

    def on_complete(result):
        results.append(result)
        done.set()

    timer.set_timeout(calls.append, ["never"], "10s", on_complete)
    timer.clear_timeout()

    assert done.wait(2.0)
    assert calls == []
    assert results[0].cancelled
    assert results[0].wait_time >= 0
    assert timer.join(2.0)
    assert timer.destroyed


def test_timeout_and_interval_together():
    """One timeout and one interval share an engine"""
    engine = PseudoEngine(auto=True)
    timer = NanoTimer(engine=engine)
    ticks = []
    fired = threading.Event()

    timer.set_interval(ticks.append, ["tick"], "5m")
    timer.set_timeout(fired.set, [], "50m")

    assert fired.wait(2.0)
    # The interval keeps running after the timeout
    assert not timer.destroyed
    assert ticks

    timer.clear_interval()
    assert timer.join(2.0)
    assert timer.destroyed
