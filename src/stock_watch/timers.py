from __future__ import annotations

import threading
from typing import Callable, Protocol


class Timer(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]
Spawn = Callable[[Callable[[], None]], None]


class RepeatingTimer:
    """Calls ``callback`` every ``interval_seconds`` on a dedicated daemon thread.

    The next wait starts after the callback returns, so one timer never runs
    overlapping callbacks. After ``cancel()`` the thread exits at its next
    wake-up; a callback that already got past the check runs to completion.
    """

    def __init__(self, interval_seconds: float, callback: Callable[[], None], *, name: str | None = None) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = float(interval_seconds)
        self._callback = callback
        self._lock = threading.Lock()
        self._cancelled = False
        self._wake = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name or "stock-watch-timer", daemon=True)

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def start(self) -> RepeatingTimer:
        self._thread.start()
        return self

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            self._wake.set()

    def _run(self) -> None:
        while True:
            self._wake.wait(self.interval_seconds)
            with self._lock:
                if self._cancelled:
                    return
            self._callback()


def thread_timer_factory(interval_seconds: float, callback: Callable[[], None]) -> RepeatingTimer:
    return RepeatingTimer(interval_seconds, callback).start()


def spawn_daemon(fn: Callable[[], None]) -> None:
    threading.Thread(target=fn, name="stock-watch-task", daemon=True).start()
