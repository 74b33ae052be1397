#!/usr/bin/env python3
"""sest: tail log files and render an event for every pattern match."""

import sys
import signal
import logging

from sest.config import ConfigError, load_config
from sest.delivery import build_sink
from sest.dispatcher import Dispatcher
from sest.extractor import build_rules
from sest.pipeline import Pipeline
from sest.registry import build_registry, compile_filter, watched_directories
from sest.watcher import WatchError, WatchdogSource

logger = logging.getLogger("sest")


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [SEST] %(levelname)s %(message)s",
        stream=sys.stderr,
    )


def main() -> int:
    setup_logging()

    try:
        config = load_config()
    except ConfigError as e:
        logger.critical("%s", e)
        return 1
    logging.getLogger().setLevel(getattr(logging, config.log_level, logging.INFO))

    rules = build_rules(config.events)
    registry = build_registry(config.input)
    if not rules:
        logger.warning("No usable events configured, nothing will be extracted")
    if not registry:
        logger.warning("No files to watch")

    sink = build_sink(config.output)
    pipeline = Pipeline(registry, rules, sink)
    source = WatchdogSource(
        path_filter=compile_filter(config.input.filter),
        polling=config.watcher.polling,
        poll_interval=config.watcher.poll_interval,
    )
    for dir_path in watched_directories(config.input, registry):
        try:
            source.watch(dir_path)
        except WatchError as e:
            logger.warning("%s", e)

    def _signal_handler(sig, frame):
        logger.info("Shutdown signal received, stopping...")
        source.close()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    dispatcher = Dispatcher(source, pipeline, config.watcher.poll_interval)
    status = 0
    try:
        source.start()
        logger.info("sest running: %d file(s), %d event(s)", len(registry), len(rules))
        dispatcher.run()
    except WatchError as e:
        logger.critical("File watcher failed: %s", e)
        status = 1
    finally:
        source.stop()
        pipeline.close()
        sink.close()

    stats = pipeline.stats
    logger.info("Stats: %d write events (%d untracked), %d reads, %d bytes, %d events, "
                "%d render errors, %d read errors",
                stats.notifications, stats.unregistered, stats.reads, stats.bytes_read,
                stats.payloads, stats.render_errors, stats.read_errors)
    return status


if __name__ == "__main__":
    sys.exit(main())
