import threading

import pytest

from heartwatch.heartbeat import PeriodicTask, format_duration
from heartwatch.heartbeat.tasks import join_all


@pytest.mark.parametrize("seconds, expected", [
    (5, "5s"),
    (125, "2m5s"),
    (3725, "1h2m5s"),
    (3600, "1h0m0s"),
    (-3, "0s"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_periodic_task_survives_failing_action():
    calls = []
    done = threading.Event()

    def action():
        calls.append(1)
        if len(calls) >= 3:
            done.set()
        raise RuntimeError("boom")

    task = PeriodicTask("TestTask", 0.01, action)
    task.start()
    assert done.wait(5)
    task.stop()

    assert join_all([task], timeout=5)
    assert task.stopped
    assert task.runs >= 3


def test_initial_delay_allows_stop_before_first_run():
    calls = []
    task = PeriodicTask("DelayedTask", 0.01, lambda: calls.append(1), initial_delay=60)
    task.start()
    task.stop()

    assert join_all([task], timeout=5)
    assert calls == []
