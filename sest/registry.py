"""Builds the path -> FileCursor registry from explicit files and directory listings."""

import os
import re
import logging

from sest.config import InputConfig
from sest.cursor import FileCursor, OpenError, SeekError

logger = logging.getLogger(__name__)


def compile_filter(pattern: str) -> re.Pattern | None:
    """Compile the global path filter. Returns None when empty or invalid."""
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.warning("Could not compile input filter: %s with error: %s", pattern, e)
        return None


def list_directory_files(dir_path: str) -> list[str]:
    """Return the regular files directly inside dir_path (non-recursive), sorted."""
    files = []
    with os.scandir(dir_path) as entries:
        for entry in entries:
            if entry.is_file():
                files.append(os.path.join(dir_path, entry.name))
    return sorted(files)


def candidate_paths(input_cfg: InputConfig) -> list[str]:
    """Explicit files then enumerated directory files, filtered and de-duplicated."""
    paths = list(input_cfg.files)
    for dir_path in input_cfg.directories:
        try:
            paths.extend(list_directory_files(dir_path))
        except OSError as e:
            logger.warning("Could not list directory %s: %s", dir_path, e)

    path_filter = compile_filter(input_cfg.filter)
    if path_filter is not None:
        paths = [p for p in paths if path_filter.search(p)]

    unique = []
    seen = set()
    for path in paths:
        abs_path = os.path.abspath(path)
        if abs_path not in seen:
            seen.add(abs_path)
            unique.append(abs_path)
    return unique


def build_registry(input_cfg: InputConfig) -> dict[str, FileCursor]:
    """Open one cursor per candidate path. Files that cannot be opened are skipped."""
    registry: dict[str, FileCursor] = {}
    for path in candidate_paths(input_cfg):
        try:
            if input_cfg.start_position == "end":
                cursor = FileCursor.at_end(path)
            else:
                cursor = FileCursor(path, 0)
        except (OpenError, SeekError) as e:
            logger.warning("Could not watch file %s with error: %s", path, e)
            continue
        registry[path] = cursor
        logger.info("Tracking %s from offset %d", path, cursor.current_offset())
    return registry


def watched_directories(input_cfg: InputConfig, registry: dict[str, FileCursor]) -> list[str]:
    """Directories to hand to the watch layer: configured ones plus parents of tracked files."""
    dirs = [os.path.abspath(d) for d in input_cfg.directories]
    dirs.extend(os.path.dirname(p) for p in registry)
    return sorted(set(dirs))
