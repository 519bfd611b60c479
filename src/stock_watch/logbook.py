from __future__ import annotations

import threading
from collections import deque
from typing import Callable

from .models import LogStatus, MonitorLogEntry
from .state import load_logs, save_logs
from .store import BlobStore
from .timeutil import utc_now_iso


DEFAULT_CAPACITY = 500


class Logbook:
    """Operator-visible check history: newest first, oldest entries dropped past ``capacity``."""

    def __init__(
        self,
        store: BlobStore | None = None,
        *,
        capacity: int = DEFAULT_CAPACITY,
        echo: bool = True,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self._store = store
        self._capacity = max(1, int(capacity))
        self._echo = echo
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: deque[MonitorLogEntry] = deque(maxlen=self._capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def load(self) -> None:
        if self._store is None:
            return
        entries = load_logs(self._store)
        with self._lock:
            self._entries = deque(entries[: self._capacity], maxlen=self._capacity)

    def _persist(self) -> None:
        if self._store is not None:
            save_logs(self._store, list(self._entries))

    def record(self, entry: MonitorLogEntry) -> MonitorLogEntry:
        with self._lock:
            self._entries.appendleft(entry)
            self._persist()
        if self._echo:
            parts = [f"[monitor] status={entry.status.value}", f"product={entry.product_name!r}"]
            if entry.http_status is not None:
                parts.append(f"http={entry.http_status}")
            if entry.response_time is not None:
                parts.append(f"{int(entry.response_time * 1000)}ms")
            print(" ".join(parts) + f" :: {entry.message}", flush=True)
        return entry

    def add(
        self,
        *,
        product_id: str,
        product_name: str,
        status: LogStatus,
        message: str,
        variant_id: str | None = None,
        response_time: float | None = None,
        http_status: int | None = None,
    ) -> MonitorLogEntry:
        return self.record(
            MonitorLogEntry(
                product_id=product_id,
                product_name=product_name,
                status=status,
                message=message,
                timestamp=self._clock(),
                variant_id=variant_id,
                response_time=response_time,
                http_status=http_status,
            )
        )

    def entries(self, *, product_id: str | None = None, limit: int | None = None) -> list[MonitorLogEntry]:
        with self._lock:
            out = [e for e in self._entries if product_id is None or e.product_id == product_id]
        return out[:limit] if limit is not None else out

    def clear(self, product_id: str | None = None) -> int:
        with self._lock:
            before = len(self._entries)
            if product_id is None:
                self._entries.clear()
            else:
                kept = [e for e in self._entries if e.product_id != product_id]
                self._entries = deque(kept, maxlen=self._capacity)
            removed = before - len(self._entries)
            self._persist()
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
