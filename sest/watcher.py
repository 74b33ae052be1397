"""Watch sources: turn filesystem change events into notification signals.

A source exposes one queue carrying three kinds of signal: ``Notification``
objects, ``WatchError`` instances (fatal), and the ``CLOSED`` marker that is
enqueued once when the source stops.
"""

import os
import re
import queue
import logging
import threading

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from sest.models import Notification, Operation

logger = logging.getLogger(__name__)


class WatchError(Exception):
    """Raised or signalled when the watch subsystem fails."""


class _Closed:
    def __repr__(self):
        return "CLOSED"


CLOSED = _Closed()

_OPERATIONS = {
    "modified": Operation.WRITE,
    "created": Operation.CREATE,
    "deleted": Operation.REMOVE,
    "moved": Operation.RENAME,
}


class WatchSource:
    """Base watch capability: a signal queue, an optional path pre-filter, and lifecycle hooks."""

    def __init__(self, path_filter: re.Pattern | None = None):
        self.signals: queue.Queue = queue.Queue()
        self._path_filter = path_filter
        self._closed = False
        self._lock = threading.RLock()

    def accepts(self, path: str) -> bool:
        return self._path_filter is None or bool(self._path_filter.search(path))

    def notify(self, path: str, operation: Operation):
        if not self.accepts(path):
            return
        self.signals.put(Notification(path=os.path.abspath(path), operation=operation))

    def fail(self, error: WatchError):
        self.signals.put(error)

    def close(self):
        """Enqueue CLOSED, once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.signals.put(CLOSED)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def watch(self, path: str):
        raise NotImplementedError

    def start(self):
        pass

    def stop(self):
        self.close()

    def health_check(self):
        pass


class NotificationHandler(FileSystemEventHandler):
    """watchdog handler forwarding every event to a WatchSource as a Notification."""

    def __init__(self, source: WatchSource):
        super().__init__()
        self._source = source

    def on_any_event(self, event):
        path = os.fsdecode(event.src_path)
        if event.is_directory:
            operation = Operation.OTHER
        else:
            operation = _OPERATIONS.get(event.event_type, Operation.OTHER)
        self._source.notify(path, operation)


class WatchdogSource(WatchSource):
    """Watch source backed by a watchdog native or polling observer."""

    def __init__(self, path_filter: re.Pattern | None = None, polling: bool = False,
                 poll_interval: float = 0.1):
        super().__init__(path_filter)
        observer_cls = PollingObserver if polling else Observer
        self._observer = observer_cls(timeout=poll_interval)
        self._handler = NotificationHandler(self)
        self._watched: set[str] = set()
        self._started = False
        self._stopping = False

    def watch(self, path: str):
        """Watch a directory (non-recursively), or a file through its parent directory."""
        abs_path = os.path.abspath(path)
        dir_path = abs_path if os.path.isdir(abs_path) else os.path.dirname(abs_path)
        if not os.path.isdir(dir_path):
            raise WatchError(f"Cannot watch {abs_path}: {dir_path} is not a directory")
        if dir_path in self._watched:
            return
        self._observer.schedule(self._handler, dir_path, recursive=False)
        self._watched.add(dir_path)
        logger.info("Watching directory: %s", dir_path)

    @property
    def watched(self) -> set[str]:
        return set(self._watched)

    def start(self):
        try:
            self._observer.start()
        except OSError as e:
            raise WatchError(f"Could not start file watcher: {e}") from e
        self._started = True

    def stop(self):
        self._stopping = True
        if self._started:
            self._observer.stop()
            self._observer.join(timeout=5)
        self.close()

    def health_check(self):
        """Signal a WatchError if the observer or one of its emitters died while running."""
        if not self._started or self._stopping:
            return
        if not self._observer.is_alive():
            self._stopping = True
            self.fail(WatchError("File watcher thread stopped unexpectedly"))
            return
        dead = sorted(e.watch.path for e in self._observer.emitters if not e.is_alive())
        if dead:
            self._stopping = True
            self.fail(WatchError(f"Stopped watching {', '.join(dead)}"))
