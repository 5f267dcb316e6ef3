import time
import logging
import threading
from typing import Callable, Optional

log = logging.getLogger(__name__)


class PeriodicTask(threading.Thread):
    """
    Runs `action` every `interval` seconds on a daemon thread until stopped.

    With `fixed_rate` the schedule is anchored to the start time, so a slow
    run shortens the following wait. Otherwise the full interval is waited
    after each run finishes. An exception raised by `action` is logged and
    the schedule continues.
    """

    def __init__(self, name: str, interval: float, action: Callable[[], None],
                 fixed_rate: bool = False, initial_delay: float = 0) -> None:
        super().__init__(name=name, daemon=True)
        self.interval = interval
        self.action = action
        self.fixed_rate = fixed_rate
        self.initial_delay = initial_delay
        self.runs = 0
        self._stop_event = threading.Event()

    def run(self) -> None:
        log.debug(f"{self.name} started (interval={self.interval}s, fixed_rate={self.fixed_rate})")
        if self.initial_delay and self._stop_event.wait(self.initial_delay):
            return

        next_run = time.monotonic()
        while not self._stop_event.is_set():
            try:
                self.action()
            except Exception as e:
                log.error(f"Unhandled error in {self.name}: {e}", exc_info=True)
            self.runs += 1

            if self.fixed_rate:
                next_run += self.interval
                delay = max(0.0, next_run - time.monotonic())
            else:
                delay = self.interval
            if self._stop_event.wait(delay):
                break
        log.debug(f"{self.name} stopped after {self.runs} runs")

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()


def join_all(tasks, timeout: float) -> bool:
    """
    Waits for every task to finish, sharing one overall deadline.

    :return: True if all tasks finished in time.
    """
    deadline = time.monotonic() + timeout
    for task in tasks:
        remaining = max(0.0, deadline - time.monotonic())
        task.join(remaining)
    return not any(task.is_alive() for task in tasks)
