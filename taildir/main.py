#!/usr/bin/env python3
"""taildir: follow file groups and print their records as JSON lines."""

import sys
import signal
import logging
import argparse
import dataclasses

from taildir.annotator import DirectoryAnnotator, NullAnnotator
from taildir.config import ConfigError, load_config, load_yaml_config
from taildir.engine import TailEngine
from taildir.runner import JsonLinesSink, TailRunner

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reliable multi-file tail reader")
    parser.add_argument(
        "--config", default=None,
        help="Path to YAML config file with file groups and framing settings",
    )
    parser.add_argument(
        "--checkpoint-file", default=None,
        help="Override the checkpoint (position) file path",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--once", action="store_true",
        help="Run a single poll pass, save the checkpoint and exit",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_cli_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [TAILDIR] %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(load_yaml_config(args.config))
        if args.checkpoint_file:
            config = dataclasses.replace(config, checkpoint_file=args.checkpoint_file)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    if not config.groups:
        logger.error("No file groups configured")
        return 2

    logger.info("Config: %d group(s), batch_size=%d, checkpoint=%s",
                len(config.groups), config.batch_size, config.checkpoint_file)

    annotator = DirectoryAnnotator(config.routing_keys) if config.routing_keys else NullAnnotator()
    engine = TailEngine(config, annotator=annotator)
    runner = TailRunner(engine, JsonLinesSink(), config)

    if args.once:
        runner.poll_once()
        engine.save_checkpoint()
        engine.close()
        return 0

    def _signal_handler(sig, frame):
        logger.info("Shutdown signal received, stopping...")
        runner.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    runner.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
