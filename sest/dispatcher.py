"""Dispatcher: consumes watch signals and routes write notifications to the pipeline."""

import queue
import logging

from sest.models import Notification, Operation
from sest.pipeline import Pipeline
from sest.watcher import CLOSED, WatchError, WatchSource

logger = logging.getLogger(__name__)


class Dispatcher:
    """Processes signals one at a time, in arrival order, on the calling thread."""

    def __init__(self, source: WatchSource, pipeline: Pipeline, poll_interval: float = 0.1):
        self._source = source
        self._pipeline = pipeline
        self._poll_interval = poll_interval

    def dispatch(self, notification: Notification) -> int:
        """Handle one notification. Non-write operations are ignored."""
        if notification.operation is not Operation.WRITE:
            logger.debug("Ignoring %s event for %s", notification.operation.value, notification.path)
            return 0
        return self._pipeline.handle_write(notification.path)

    def run(self):
        """Loop until CLOSED. A WatchError signal is raised to the caller."""
        while True:
            try:
                item = self._source.signals.get(timeout=self._poll_interval)
            except queue.Empty:
                self._source.health_check()
                continue

            if item is CLOSED:
                logger.info("Watch source closed, stopping dispatch")
                return
            if isinstance(item, WatchError):
                raise item
            if isinstance(item, Notification):
                self.dispatch(item)
            else:
                logger.warning("Unknown watch signal: %r", item)
