"""
Shared key/value medium for cross-instance coordination.

Every board runtime pointed at the same store sees the same keys. Values are
plain strings; writes are last-write-wins with no transactional guarantee.

Two implementations:

- FileSharedStore   : one file per key in a directory shared by all runtimes
                      on a host (or a shared mount). Writes are atomic
                      replaces so readers never observe partial values.
- MemorySharedStore : a per-instance view over an in-process SharedMedium.
                      Mutations notify every *other* view, the way browser
                      storage events reach other tabs but not the writer.

Any failure to reach the medium surfaces as StoreUnavailable.
"""

from __future__ import annotations

import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

from shared.logging.logger import get_logger

log = get_logger("shared.shared_store")

ChangeCallback = Callable[[str], None]

_SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]+$")


class StoreUnavailable(Exception):
    """The shared medium cannot be read or written."""

    pass


class SharedStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """
        Register for change notifications caused by *other* writers.

        Returns an unsubscribe callable. Media without native notifications
        accept the registration and never call back; consumers are expected
        to poll as a fallback.
        """
        return lambda: None


# ======================================================================
# FILE-BACKED STORE
# ======================================================================

class FileSharedStore(SharedStore):
    def __init__(self, directory: Path | str):
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid shared store key: {key!r}")
        return self._dir / f"{key}.value"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreUnavailable(f"Cannot read {path}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self._dir, delete=False, encoding="utf-8"
            ) as tmp:
                tmp.write(value)
                tmp.flush()
                os.fsync(tmp.fileno())
                temp_path = Path(tmp.name)

            temp_path.replace(path)
        except OSError as e:
            raise StoreUnavailable(f"Cannot write {path}: {e}") from e

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StoreUnavailable(f"Cannot delete {path}: {e}") from e


# ======================================================================
# IN-PROCESS STORE
# ======================================================================

class SharedMedium:
    """Backing dictionary shared by several MemorySharedStore views."""

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._listeners: List[tuple] = []
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailable("Shared medium is not available")

    def read(self, key: str) -> Optional[str]:
        self._check()
        with self._lock:
            return self._values.get(key)

    def write(self, origin: object, key: str, value: Optional[str]) -> None:
        self._check()
        with self._lock:
            if value is None:
                if key not in self._values:
                    return
                del self._values[key]
            else:
                self._values[key] = value
            listeners = list(self._listeners)

        for owner, callback in listeners:
            if owner is origin:
                continue
            try:
                callback(key)
            except Exception as e:
                log.error(f"Shared medium listener failed for {key!r}: {e}")

    def add_listener(self, owner: object, callback: ChangeCallback) -> Callable[[], None]:
        entry = (owner, callback)
        with self._lock:
            self._listeners.append(entry)

        def _remove() -> None:
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)

        return _remove


class MemorySharedStore(SharedStore):
    def __init__(self, medium: Optional[SharedMedium] = None):
        self.medium = medium or SharedMedium()

    def get(self, key: str) -> Optional[str]:
        return self.medium.read(key)

    def set(self, key: str, value: str) -> None:
        self.medium.write(self, key, value)

    def delete(self, key: str) -> None:
        self.medium.write(self, key, None)

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        return self.medium.add_listener(self, callback)


__all__ = [
    "FileSharedStore",
    "MemorySharedStore",
    "SharedMedium",
    "SharedStore",
    "StoreUnavailable",
]
