from __future__ import annotations

import fcntl
import os
import re
import threading
from pathlib import Path
from typing import IO, Protocol

from .errors import StoreBusy


class BlobStore(Protocol):
    def save(self, key: str, data: bytes) -> None: ...

    def load(self, key: str) -> bytes | None: ...


_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def _check_key(key: str) -> str:
    if not _KEY_RE.match(key or "") or key.startswith("."):
        raise ValueError(f"invalid store key: {key!r}")
    return key


class FileBlobStore:
    """One ``<key>.json`` file per key under ``root``; writes replace the file atomically."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._lock = threading.Lock()

    def path_for(self, key: str) -> Path:
        return self.root / f"{_check_key(key)}.json"

    def save(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        with self._lock:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(f".{path.name}.tmp")
            tmp.write_bytes(data)
            os.replace(tmp, path)

    def load(self, key: str) -> bytes | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        return path.read_bytes()


LOCK_FILE_NAME = ".lock"


class DataDirLock:
    """Exclusive advisory lock on a data directory.

    Every writer loads the catalog once and saves the whole blob, so two
    writers on one directory would overwrite each other's changes. The lock
    file holds the owner's pid; the OS drops the lock when the owner exits.
    """

    def __init__(self, root: Path | str) -> None:
        self.path = Path(root) / LOCK_FILE_NAME
        self._handle: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self._handle is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = self.path.open("a+", encoding="utf-8")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.seek(0)
            owner = handle.read().strip() or "unknown"
            handle.close()
            raise StoreBusy(f"data directory {self.path.parent} is in use by pid {owner}") from None
        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.seek(0)
            handle.truncate()
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

    def __enter__(self) -> DataDirLock:
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


class MemoryBlobStore:
    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self.save_count = 0

    def save(self, key: str, data: bytes) -> None:
        with self._lock:
            self._data[_check_key(key)] = bytes(data)
            self.save_count += 1

    def load(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)
