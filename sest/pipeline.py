"""Pipeline: owns the cursors and rules, and runs one extraction step per write."""

import logging
from dataclasses import dataclass
from typing import Callable

from sest.cursor import FileCursor, ReadError
from sest.extractor import ExtractionRule
from sest.models import Payload

logger = logging.getLogger(__name__)


@dataclass
class PipelineStats:
    notifications: int = 0
    unregistered: int = 0
    reads: int = 0
    bytes_read: int = 0
    read_errors: int = 0
    payloads: int = 0
    render_errors: int = 0


class Pipeline:
    def __init__(self, registry: dict[str, FileCursor], rules: list[ExtractionRule],
                 sink: Callable[[Payload], None]):
        self._registry = registry
        self._rules = list(rules)
        self._sink = sink
        self._stats = PipelineStats()

    @property
    def registry(self) -> dict[str, FileCursor]:
        return self._registry

    @property
    def rules(self) -> list[ExtractionRule]:
        return list(self._rules)

    @property
    def stats(self) -> PipelineStats:
        self._stats.render_errors = sum(r.render_errors for r in self._rules)
        return self._stats

    def handle_write(self, path: str) -> int:
        """Run one extraction step for a write on path. Returns payloads delivered."""
        self._stats.notifications += 1
        cursor = self._registry.get(path)
        if cursor is None:
            self._stats.unregistered += 1
            logger.debug("Got write event for untracked file: %s", path)
            return 0
        return self.run_extraction_step(cursor)

    def run_extraction_step(self, cursor: FileCursor) -> int:
        """Read new bytes from cursor and pass them through every rule, in order."""
        old_offset = cursor.current_offset()
        try:
            data = cursor.read_new()
        except ReadError as e:
            self._stats.read_errors += 1
            logger.warning("Read failed for %s: %s", cursor.path, e)
            return 0

        self._stats.reads += 1
        self._stats.bytes_read += len(data)
        logger.debug("%s: offset %d -> %d", cursor.path, old_offset, cursor.current_offset())

        delivered = 0
        for rule in self._rules:
            for payload in rule.extract(data, source=cursor.path):
                self._sink(payload)
                delivered += 1
        self._stats.payloads += delivered
        return delivered

    def close(self):
        """Close every cursor. Safe to call more than once."""
        for cursor in self._registry.values():
            cursor.close()
