"""Notification and payload types shared by the tail-and-extract pipeline."""

from dataclasses import dataclass
from enum import Enum


class Operation(Enum):
    WRITE = "write"
    CREATE = "create"
    REMOVE = "remove"
    RENAME = "rename"
    OTHER = "other"


@dataclass(frozen=True)
class Notification:
    path: str            # absolute path reported by the watch layer
    operation: Operation


@dataclass(frozen=True)
class Payload:
    text: str            # rendered template output
    event_type: str
    channel_name: str    # passed through to the delivery side untouched
    rule: str = ""       # name of the rule that produced it
    source: str = ""     # file the matched bytes came from
