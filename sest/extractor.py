"""ExtractionRule: byte-level regex matching rendered through a Jinja2 template.

Templates are compiled once, when the rule is built, against a fixed set of
helpers:

    timestamp()   current local time, e.g. 2024-05-14T10:23:45+0200
    group(ref)    captured group by index or name, "" when it did not take part

and a per-match context of ``match`` (the whole match), ``groups`` (all
captured groups) and every named group by its name.

Bodies may also use the older template forms:

    $1 ${1} $user ${user}  regex expansion references; a bare $ takes the
                           longest run of letters, digits and underscores
                           after it, and $$ is a literal dollar sign
    {{.}} or {{ . }}       the captured group when the pattern has exactly
                           one group, otherwise the whole match
    {{timestamp}}          same as {{ timestamp() }}
"""

import re
import logging
from datetime import datetime
from typing import Iterator

from jinja2 import StrictUndefined, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment

from sest.config import EventConfig
from sest.models import Payload

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_REFERENCE = re.compile(r"\$(?:(\$)|\{([A-Za-z0-9_]+)\}|([A-Za-z0-9_]+))")
_DOT = re.compile(r"\{\{(-?)\s*\.\s*(-?)\}\}")


class RuleError(Exception):
    """Raised when a rule's pattern or template cannot be loaded."""


def current_timestamp() -> str:
    return datetime.now().astimezone().strftime(TIMESTAMP_FORMAT)


def _decode(value: bytes | None) -> str:
    if value is None:
        return ""
    return value.decode("utf-8", errors="replace")


def translate_references(body: str) -> str:
    """Rewrite $-style group references into group(...) template calls."""
    def _replace(m: re.Match) -> str:
        if m.group(1):
            return "$"
        name = m.group(2) or m.group(3)
        if name.isdigit():
            return "{{ group(%d) }}" % int(name)
        return "{{ group('%s') }}" % name

    return _REFERENCE.sub(_replace, body)


def translate_dot(body: str, group_count: int) -> str:
    """Rewrite {{.}} into the single captured group, or the whole match."""
    target = "group(1)" if group_count == 1 else "match"
    return _DOT.sub(lambda m: "{{%s %s %s}}" % (m.group(1), target, m.group(2)), body)


class _Timestamp:
    """Renders the current time whether used as {{ timestamp }} or {{ timestamp() }}."""

    def __call__(self) -> str:
        return current_timestamp()

    def __str__(self) -> str:
        return current_timestamp()


def _make_environment() -> SandboxedEnvironment:
    env = SandboxedEnvironment(
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    env.globals["timestamp"] = _Timestamp()
    return env


_environment = _make_environment()


class ExtractionRule:
    def __init__(self, name: str, pattern: str | bytes, template_body: str,
                 event_type: str = "", channel_name: str = ""):
        self.name = name
        self.event_type = event_type
        self.channel_name = channel_name
        self.render_errors = 0

        if isinstance(pattern, str):
            pattern = pattern.encode("utf-8")
        try:
            self._regex = re.compile(pattern)
        except re.error as e:
            raise RuleError(f"Could not compile regex {pattern!r} for event {name}: {e}") from e

        try:
            self._template = _environment.from_string(
                translate_dot(translate_references(template_body), self._regex.groups))
        except TemplateSyntaxError as e:
            raise RuleError(f"Could not parse template for event {name}: {e}") from e

    @classmethod
    def from_config(cls, event: EventConfig) -> "ExtractionRule":
        """Build a rule from its config entry, reading the template file once."""
        try:
            with open(event.dest, "r", encoding="utf-8") as f:
                body = f.read()
        except OSError as e:
            raise RuleError(f"Could not load template {event.dest} for event {event.name}: {e}") from e
        return cls(event.name, event.src, body, event.event_type, event.channel_name)

    @property
    def pattern(self) -> re.Pattern:
        return self._regex

    def _context(self, m: re.Match) -> dict:
        def group(ref):
            if isinstance(ref, str) and ref.isdigit():
                ref = int(ref)
            if isinstance(ref, int):
                if 0 <= ref <= self._regex.groups:
                    return _decode(m.group(ref))
                return ""
            if ref in self._regex.groupindex:
                return _decode(m.group(ref))
            return ""

        context = {name: _decode(value) for name, value in m.groupdict().items()}
        context.update(
            match=_decode(m.group(0)),
            groups=tuple(_decode(g) for g in m.groups()),
            group=group,
        )
        return context

    def render(self, m: re.Match) -> str:
        return self._template.render(self._context(m))

    def extract(self, buffer: bytes, source: str = "") -> Iterator[Payload]:
        """Yield one payload per non-overlapping match in buffer, left to right.

        A match whose render fails is logged and skipped.
        """
        for m in self._regex.finditer(buffer):
            try:
                text = self.render(m)
            except Exception as e:
                self.render_errors += 1
                logger.warning("Template render failed for event %s at byte %d of %s: %s",
                               self.name, m.start(), source or "<buffer>", e)
                continue
            yield Payload(
                text=text,
                event_type=self.event_type,
                channel_name=self.channel_name,
                rule=self.name,
                source=source,
            )

    def __repr__(self):
        return f"ExtractionRule({self.name!r}, {self._regex.pattern!r})"


def build_rules(events: list[EventConfig]) -> list[ExtractionRule]:
    """Build rules in config order, dropping (and logging) any that fail to load."""
    rules = []
    for event in events:
        try:
            rules.append(ExtractionRule.from_config(event))
        except RuleError as e:
            logger.warning("%s", e)
            continue
        logger.info("Loaded event %s (type=%s, channel=%s)",
                    event.name, event.event_type or "-", event.channel_name or "-")
    return rules
