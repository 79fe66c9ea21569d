"""
L1: NanoTimer bookkeeping and dispatch tests (manual pseudo engine)
"""

import threading

import pytest

from nanotimer import NanoTimer, PseudoEngine
from nanotimer.errors import ValidationError, ClosedError
from nanotimer.protocol import TimeoutResult, decode_notification


def make_timer():
    """NanoTimer over a pseudo engine that only emits what the test feeds it"""
    engine = PseudoEngine(auto=False)
    timer = NanoTimer(engine=engine)
    return timer, engine


def feed(timer, line):
    timer.dispatch(decode_notification(line))


def test_timeout_fires_once_then_goes_idle():
    """L1: timeout 1 runs the task once and shuts the engine down"""
    timer, engine = make_timer()
    calls = []
    results = []

    timer.set_timeout(calls.append, ["fired"], "500m", results.append)
    assert engine.commands == ["setTimeout 1 500m"]
    assert timer.has_timeout()

    feed(timer, "timeout 1 500000000")

    assert calls == ["fired"]
    assert results == [TimeoutResult(timer_id="1", wait_time=500000000, cancelled=False)]
    assert not timer.has_timeout()
    assert timer.tasks == {}
    assert timer.destroyed
    assert engine.stdin_closed
    assert engine.destroy_calls == 1
    assert timer.join(2.0)


def test_replacing_timeout_sends_one_clear():
    """L1: a second set_timeout cancels the first before scheduling"""
    timer, engine = make_timer()
    first = []
    second = []

    timer.set_timeout(first.append, [1], "1s")
    timer.set_timeout(second.append, [2], "1s")

    assert engine.commands == ["setTimeout 1 1s", "clearTimeout 1", "setTimeout 2 1s"]
    assert timer.timeout_id == "2"
    assert timer.tasks["1"].cancelled

    # Acknowledgment of the replaced timeout does not touch the new one
    feed(timer, "clearedTimeout 1 1200")
    assert first == []
    assert timer.has_timeout()
    assert not timer.destroyed

    feed(timer, "timeout 2 1000000000")
    assert second == [2]
    assert timer.destroyed


def test_unknown_id_is_ignored():
    """L1: notifications for ids never issued change nothing"""
    timer, engine = make_timer()
    calls = []
    timer.set_timeout(calls.append, ["x"], "1s")

    feed(timer, "timeout 99 100")
    feed(timer, "interval 42")
    feed(timer, "clearedTimeout 7 100")

    assert calls == []
    assert timer.has_timeout()
    assert not timer.destroyed
    assert engine.commands == ["setTimeout 1 1s"]
    timer.destroy()


def test_interval_runs_task_then_on_complete():
    """L1: every interval firing runs task and then on_complete"""
    timer, engine = make_timer()
    order = []

    timer.set_interval(lambda tag: order.append(tag), ["tick"], "100m", lambda: order.append("done"))
    feed(timer, "interval 1")
    feed(timer, "interval 1")

    assert order == ["tick", "done", "tick", "done"]
    assert timer.has_interval()
    assert not timer.destroyed
    timer.destroy()


def test_late_interval_after_clear_is_dropped():
    """L1: an interval already in flight when cleared does not run"""
    timer, engine = make_timer()
    ticks = []

    timer.set_timeout(lambda: None, [], "10s")
    timer.set_interval(ticks.append, ["tick"], "1s")
    feed(timer, "interval 2")
    timer.clear_interval()
    feed(timer, "interval 2")

    assert ticks == ["tick"]
    assert engine.commands[-1] == "clearInterval 2"
    assert not timer.has_interval()
    # The timeout keeps the engine alive
    assert not timer.destroyed
    timer.destroy()


def test_clear_interval_when_idle_destroys():
    """L1: clearing the last interval shuts the engine down"""
    timer, engine = make_timer()
    timer.set_interval(lambda: None, [], "1s")
    timer.clear_interval()

    assert engine.commands == ["setInterval 1 1s", "clearInterval 1"]
    assert timer.destroyed
    assert engine.destroy_calls == 1


def test_replacing_interval_sends_one_clear():
    timer, engine = make_timer()
    timer.set_interval(lambda: None, [], "1s")
    timer.set_interval(lambda: None, [], "2s")

    assert engine.commands == ["setInterval 1 1s", "clearInterval 1", "setInterval 2 2s"]
    assert timer.interval_id == "2"
    assert "1" not in timer.tasks
    assert not timer.destroyed
    timer.destroy()


def test_clear_timeout_waits_for_acknowledgment():
    """L1: clearedTimeout reports to on_complete but never runs the task"""
    timer, engine = make_timer()
    calls = []
    results = []

    timer.set_timeout(calls.append, ["x"], "5s", results.append)
    timer.clear_timeout()

    assert engine.commands == ["setTimeout 1 5s", "clearTimeout 1"]
    assert not timer.has_timeout()
    assert not timer.destroyed

    feed(timer, "clearedTimeout 1 12345")

    assert calls == []
    assert results == [TimeoutResult(timer_id="1", wait_time=12345, cancelled=True)]
    assert timer.destroyed
    assert engine.destroy_calls == 1


def test_clear_timeout_without_timeout_is_noop():
    timer, engine = make_timer()
    timer.clear_timeout()
    timer.clear_interval()
    assert engine.commands == []
    assert not timer.destroyed
    timer.destroy()


def test_timeout_racing_cancellation_skips_task():
    """L1: a firing that crosses a clear skips the task but still completes"""
    timer, engine = make_timer()
    calls = []
    results = []

    timer.set_timeout(calls.append, ["x"], "1m", results.append)
    timer.clear_timeout()
    feed(timer, "timeout 1 1000000")

    assert calls == []
    assert len(results) == 1
    assert results[0].cancelled
    assert results[0].wait_time == 1000000
    assert timer.destroyed


def test_task_can_reschedule_timeout():
    """L1: scheduling from inside a firing task sends no clear for the fired id"""
    timer, engine = make_timer()
    fired = []

    def task(n):
        fired.append(n)
        if n < 3:
            timer.set_timeout(task, [n + 1], "1m")

    timer.set_timeout(task, [1], "1m")
    feed(timer, "timeout 1 1000000")
    feed(timer, "timeout 2 1000000")
    feed(timer, "timeout 3 1000000")

    assert fired == [1, 2, 3]
    assert engine.commands == ["setTimeout 1 1m", "setTimeout 2 1m", "setTimeout 3 1m"]
    assert timer.destroyed


def test_ids_are_never_reused():
    timer, engine = make_timer()
    timer.set_timeout(lambda: None, [], "1s")
    timer.set_interval(lambda: None, [], "1s")
    timer.set_timeout(lambda: None, [], "1s")

    assert timer.timeout_id == "3"
    assert timer.interval_id == "2"
    assert timer.next_id == 4
    timer.destroy()


@pytest.mark.parametrize("task,args,duration,on_complete", [
    ("not callable", [], "1s", None),
    (print, "abc", "1s", None),
    (print, [], "1x", None),
    (print, [], "", None),
    (print, [], None, None),
    (print, [], "1s", "not callable"),
])
def test_invalid_arguments_change_nothing(task, args, duration, on_complete):
    """L1: validation errors leave the timer untouched"""
    timer, engine = make_timer()
    with pytest.raises(ValidationError):
        timer.set_timeout(task, args, duration, on_complete)
    with pytest.raises(ValidationError):
        timer.set_interval(task, args, duration, on_complete)

    assert engine.commands == []
    assert timer.tasks == {}
    assert timer.next_id == 1
    assert not timer.has_timeout()
    assert not timer.has_interval()
    timer.destroy()


def test_invalid_replacement_keeps_existing_timeout():
    timer, engine = make_timer()
    timer.set_timeout(lambda: None, [], "1s")
    with pytest.raises(ValidationError):
        timer.set_timeout(lambda: None, [], "soon")

    assert engine.commands == ["setTimeout 1 1s"]
    assert timer.timeout_id == "1"
    timer.destroy()


@pytest.mark.parametrize("duration", ["2s\n", "٥m", "99999999999s"])
def test_unsendable_replacement_keeps_existing_timers(duration):
    """L1: durations the engine cannot read never cancel the current timers"""
    timer, engine = make_timer()
    timer.set_timeout(lambda: None, [], "1s")
    timer.set_interval(lambda: None, [], "1s")

    with pytest.raises(ValidationError):
        timer.set_timeout(lambda: None, [], duration)
    with pytest.raises(ValidationError):
        timer.set_interval(lambda: None, [], duration)

    assert engine.commands == ["setTimeout 1 1s", "setInterval 2 1s"]
    assert timer.timeout_id == "1"
    assert timer.interval_id == "2"
    assert not timer.tasks["1"].cancelled
    assert timer.next_id == 3
    timer.destroy()


def test_failed_write_during_replacement_changes_nothing():
    """L4: an engine that refuses input leaves registry and slots as they were"""
    timer, engine = make_timer()
    timer.set_timeout(lambda: None, [], "1s")
    timer.set_interval(lambda: None, [], "1s")
    engine.closing = True

    with pytest.raises(ClosedError):
        timer.set_timeout(lambda: None, [], "2s")
    with pytest.raises(ClosedError):
        timer.set_interval(lambda: None, [], "2s")
    with pytest.raises(ClosedError):
        timer.clear_timeout()
    with pytest.raises(ClosedError):
        timer.clear_interval()

    assert engine.commands == ["setTimeout 1 1s", "setInterval 2 1s"]
    assert timer.timeout_id == "1"
    assert timer.interval_id == "2"
    assert not timer.tasks["1"].cancelled
    assert set(timer.tasks) == {"1", "2"}
    assert timer.next_id == 3
    assert not timer.destroyed

    engine.closing = False
    timer.destroy()


def test_destroyed_timer_rejects_new_timers():
    """L1: a retired instance raises ClosedError"""
    timer, engine = make_timer()
    timer.destroy()
    timer.destroy()

    assert engine.destroy_calls == 1
    with pytest.raises(ClosedError):
        timer.set_timeout(lambda: None, [], "1s")
    with pytest.raises(ClosedError):
        timer.set_interval(lambda: None, [], "1s")
    assert engine.commands == []


def test_notifications_after_destroy_are_ignored():
    timer, engine = make_timer()
    calls = []
    timer.set_timeout(calls.append, ["x"], "1s")
    timer.destroy()

    feed(timer, "timeout 1 1000")
    assert calls == []


def test_context_manager_destroys():
    engine = PseudoEngine(auto=False)
    with NanoTimer(engine=engine) as timer:
        timer.set_interval(lambda: None, [], "1s")
    assert timer.destroyed
    assert engine.stdin_closed


def test_engine_crash_destroys_timer():
    """L4: the engine output ending retires the instance"""
    timer, engine = make_timer()
    calls = []
    timer.set_timeout(calls.append, ["x"], "1s")

    engine.crash()

    assert timer.join(2.0)
    assert timer.destroyed
    assert calls == []
    assert not timer.has_timeout()
    assert engine.destroy_calls == 1


def test_raising_task_does_not_stop_reader():
    """L4: callback exceptions are logged and later firings still dispatch"""
    timer, engine = make_timer()
    completed = []
    both = threading.Event()

    def task():
        raise RuntimeError("task failure")

    def on_complete():
        completed.append(True)
        if len(completed) == 2:
            both.set()

    timer.set_interval(task, [], "1s", on_complete)
    engine.emit("interval 1")
    engine.emit("noise from the engine")
    engine.emit("interval 1")

    assert both.wait(2.0)
    assert not timer.destroyed
    timer.destroy()
    assert timer.join(2.0)


def test_reader_dispatches_emitted_lines():
    timer, engine = make_timer()
    done = threading.Event()
    results = []

    def on_complete(result):
        results.append(result)
        done.set()

    timer.set_timeout(lambda: None, [], "1m", on_complete)
    engine.emit("timeout 1 1000042")

    assert done.wait(2.0)
    assert results[0].wait_time == 1000042
    assert timer.join(2.0)
    assert timer.destroyed
