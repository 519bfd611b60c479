from __future__ import annotations

import sys
from typing import Callable, Protocol

from .models import AvailabilityEvent


class Notifier(Protocol):
    def notify(self, event: AvailabilityEvent) -> None: ...


class NullNotifier:
    def notify(self, event: AvailabilityEvent) -> None:
        return None


class RecordingNotifier:
    """Keeps every event in memory; handy for tests and dry runs."""

    def __init__(self) -> None:
        self.events: list[AvailabilityEvent] = []

    def notify(self, event: AvailabilityEvent) -> None:
        self.events.append(event)


class CompositeNotifier:
    def __init__(self, notifiers: list[Notifier]) -> None:
        self._notifiers = list(notifiers)

    def notify(self, event: AvailabilityEvent) -> None:
        for n in self._notifiers:
            deliver(n, event)


def deliver(notifier: Notifier, event: AvailabilityEvent) -> None:
    # Delivery failures are reported but never reach the check that raised the event.
    try:
        notifier.notify(event)
    except Exception as e:
        print(f"[notify] delivery failed: {type(e).__name__}: {e}", file=sys.stderr, flush=True)


def dispatch(notifier: Notifier, event: AvailabilityEvent, *, spawn: Callable[[Callable[[], None]], None]) -> None:
    spawn(lambda: deliver(notifier, event))
