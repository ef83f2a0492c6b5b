# meerkat/fsmonitor/watchset.py

"""
Bookkeeping of directories registered with the OS change-notification facility
"""
import logging
import threading
from typing import Dict, Optional, Protocol, Tuple

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

logger = logging.getLogger(__name__)


class WatchRegistrar(Protocol):
    """OS-level registration of a single, non-recursive directory watch"""

    def add(self, path: str) -> None:
        ...

    def remove(self, path: str) -> None:
        ...


class ObserverRegistrar:
    """
    WatchRegistrar on top of a watchdog observer.

    Every directory gets its own non-recursive schedule; recursion is handled
    by the walker, so a directory created mid-walk is never covered twice by
    overlapping recursive watches.
    """

    def __init__(self, handler: FileSystemEventHandler,
                 observer: Optional[BaseObserver] = None):
        self.handler = handler
        self.observer = observer or Observer()
        self._watches: Dict[str, ObservedWatch] = {}
        self._lock = threading.Lock()

    def start(self):
        self.observer.start()

    def stop(self, timeout: float = 10.0):
        if self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=timeout)
        with self._lock:
            self._watches.clear()

    def add(self, path: str) -> None:
        # schedule() starts the emitter right away on a running observer, so
        # a missing or unreadable directory raises OSError here
        watch = self.observer.schedule(self.handler, path, recursive=False)
        with self._lock:
            self._watches[path] = watch

    def remove(self, path: str) -> None:
        with self._lock:
            watch = self._watches.pop(path, None)
        if watch is None:
            raise KeyError(f"no watch registered for {path}")
        self.observer.unschedule(watch)

    def __len__(self):
        return len(self._watches)


class WatchSet:
    """
    Tracks which paths are registered with the watch facility.

    try_add() is an atomic check-then-add: concurrent callers for the same
    path result in exactly one registration, every other caller sees
    already_present=True. A failed registration leaves the path untracked so
    a later attempt can retry it.
    """

    def __init__(self, registrar: WatchRegistrar, dedupe: bool = True):
        """
        Args:
            registrar: OS watch facility
            dedupe: when False every try_add() attempts a registration and
                reports the path as not present
        """
        self.registrar = registrar
        self.dedupe = dedupe
        self._paths: Dict[str, None] = {}
        self._pending: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()

        self.stats = {
            'registered': 0,
            'duplicates': 0,
            'failures': 0,
            'removed': 0,
        }

    def try_add(self, path: str) -> Tuple[bool, Optional[Exception]]:
        """
        Register path unless it is already tracked

        Returns:
            (already_present, error) - error is set only when the OS
            registration failed, in which case already_present is False
        """
        if not self.dedupe:
            try:
                self.registrar.add(path)
            except Exception as e:
                with self._lock:
                    self.stats['failures'] += 1
                return False, e
            with self._lock:
                self.stats['registered'] += 1
            return False, None

        while True:
            with self._lock:
                if path in self._paths:
                    self.stats['duplicates'] += 1
                    return True, None
                in_flight = self._pending.get(path)
                if in_flight is None:
                    in_flight = threading.Event()
                    self._pending[path] = in_flight
                    break
            # another thread is registering the same path, wait for its outcome
            in_flight.wait()

        try:
            self.registrar.add(path)
        except Exception as e:
            with self._lock:
                self.stats['failures'] += 1
                del self._pending[path]
            in_flight.set()
            return False, e

        with self._lock:
            self._paths[path] = None
            self.stats['registered'] += 1
            del self._pending[path]
        in_flight.set()
        return False, None

    def discard(self, path: str) -> bool:
        """
        Forget path and drop its OS watch. Absent paths are a no-op.

        Returns:
            True if the path was tracked
        """
        with self._lock:
            if path not in self._paths:
                return False
            del self._paths[path]
            self.stats['removed'] += 1

        try:
            self.registrar.remove(path)
        except Exception as e:
            # the emitter usually goes away with the directory itself
            logger.debug(f"Removing watch for {path} failed: {e}")
        return True

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._paths

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)

    def paths(self):
        with self._lock:
            return sorted(self._paths)
