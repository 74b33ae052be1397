"""Configuration loading from the SEST_CONFIG_PATH YAML file and env vars."""

import os
import logging
from dataclasses import dataclass, field

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/sest/config.yml"
START_POSITIONS = ("beginning", "end")


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or understood."""


@dataclass(frozen=True)
class InputConfig:
    files: list[str] = field(default_factory=list)
    directories: list[str] = field(default_factory=list)
    filter: str = ""                 # regex, empty = keep every file
    start_position: str = "beginning"


@dataclass(frozen=True)
class EventConfig:
    name: str
    src: str                         # regex over the new bytes
    dest: str                        # template file path
    event_type: str = ""
    channel_name: str = ""


@dataclass(frozen=True)
class WatcherConfig:
    polling: bool = False
    poll_interval: float = 0.1


@dataclass(frozen=True)
class OutputConfig:
    path: str | None = None          # None = log payloads, "-" = stdout


@dataclass(frozen=True)
class Config:
    input: InputConfig = field(default_factory=InputConfig)
    events: list[EventConfig] = field(default_factory=list)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    config_path: str = ""
    log_level: str = "INFO"


def get_config_path() -> str:
    return os.environ.get("SEST_CONFIG_PATH", DEFAULT_CONFIG_PATH)


def _resolve(path: str, base_dir: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.normpath(os.path.join(base_dir, path))


def _section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _string_list(section: dict, key: str) -> list[str]:
    value = section.get(key) or []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"'input.{key}' must be a list of paths")
    return [str(v) for v in value]


def _parse_input(data: dict, base_dir: str) -> InputConfig:
    section = _section(data, "input")
    start = str(section.get("start_position", "beginning")).lower()
    if start not in START_POSITIONS:
        raise ConfigError(f"'input.start_position' must be one of {START_POSITIONS}, got {start!r}")
    return InputConfig(
        files=[_resolve(p, base_dir) for p in _string_list(section, "files")],
        directories=[_resolve(p, base_dir) for p in _string_list(section, "directories")],
        filter=str(section.get("filter") or ""),
        start_position=start,
    )


def _parse_events(data: dict, base_dir: str) -> list[EventConfig]:
    events = []
    for name, raw in _section(data, "events").items():
        if not isinstance(raw, dict):
            raise ConfigError(f"Event '{name}' must be a mapping")
        try:
            src, dest = raw["src"], raw["dest"]
        except KeyError as e:
            raise ConfigError(f"Event '{name}' is missing required key {e}") from e
        events.append(EventConfig(
            name=str(name),
            src=str(src),
            dest=_resolve(str(dest), base_dir),
            event_type=str(raw.get("event_type") or ""),
            channel_name=str(raw.get("channel_name") or ""),
        ))
    return events


def _parse_watcher(data: dict) -> WatcherConfig:
    section = _section(data, "watcher")
    try:
        interval = float(section.get("poll_interval", WatcherConfig.poll_interval))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'watcher.poll_interval' must be a number: {e}") from e
    if interval <= 0:
        raise ConfigError("'watcher.poll_interval' must be positive")
    return WatcherConfig(polling=bool(section.get("polling", False)), poll_interval=interval)


def _parse_output(data: dict, base_dir: str) -> OutputConfig:
    path = _section(data, "output").get("path")
    if path is None or path == "-":
        return OutputConfig(path=path)
    return OutputConfig(path=_resolve(str(path), base_dir))


def parse_config(data: dict, config_path: str) -> Config:
    """Build Config from parsed YAML data, resolving paths against the file's directory."""
    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {config_path} must be a mapping")
    base_dir = os.path.dirname(os.path.abspath(config_path))
    return Config(
        input=_parse_input(data, base_dir),
        events=_parse_events(data, base_dir),
        watcher=_parse_watcher(data),
        output=_parse_output(data, base_dir),
        config_path=os.path.abspath(config_path),
        log_level=os.environ.get("SEST_LOG_LEVEL", "INFO").upper(),
    )


def load_config(path: str | None = None) -> Config:
    """Read and parse the YAML configuration. Raises ConfigError on any failure."""
    path = path or get_config_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    config = parse_config(data, path)
    logger.info("Loaded config from %s: %d file(s), %d dir(s), %d event(s)",
                path, len(config.input.files), len(config.input.directories), len(config.events))
    return config
