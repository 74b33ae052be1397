"""Delivery boundary: where rendered payloads leave the pipeline."""

import sys
import json
import logging

from sest.config import OutputConfig
from sest.models import Payload

logger = logging.getLogger(__name__)


class LogSink:
    """Logs each payload. Used when no output path is configured."""

    def __call__(self, payload: Payload):
        logger.info("Event %s [type=%s channel=%s]: %s",
                    payload.rule, payload.event_type, payload.channel_name, payload.text)

    def close(self):
        pass


class JsonLinesSink:
    """Appends one JSON object per payload to a file, or to stdout for '-'."""

    def __init__(self, path: str):
        self._path = path
        if path == "-":
            self._stream = sys.stdout
            self._owned = False
        else:
            self._stream = open(path, "a", encoding="utf-8")
            self._owned = True
        self.written = 0

    def __call__(self, payload: Payload):
        record = {
            "event_type": payload.event_type,
            "channel_name": payload.channel_name,
            "rule": payload.rule,
            "source": payload.source,
            "payload": payload.text,
        }
        try:
            self._stream.write(json.dumps(record) + "\n")
            self._stream.flush()
        except (OSError, ValueError) as e:
            logger.warning("Failed to write event %s to %s: %s", payload.rule, self._path, e)
            return
        self.written += 1

    def close(self):
        if self._owned and not self._stream.closed:
            self._stream.close()


def build_sink(output: OutputConfig):
    if output.path is None:
        return LogSink()
    logger.info("Writing events to %s", "stdout" if output.path == "-" else output.path)
    return JsonLinesSink(output.path)
