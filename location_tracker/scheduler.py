"""One-shot timers used to build the repeating tracking schedule."""

from __future__ import annotations

import threading
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_seconds: float, fn: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    """Runs each callback on its own daemon ``threading.Timer``."""

    def __init__(self, name: str = "tracking-tick") -> None:
        self._name = name

    def call_later(self, delay_seconds: float, fn: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(max(0.0, delay_seconds), fn)
        timer.name = self._name
        timer.daemon = True
        timer.start()
        return timer
