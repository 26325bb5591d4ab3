"""Argument parsing, configuration loading, and daemon bootstrap."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys

from . import __version__
from .config import AppConfig, load_config
from .discovery.group_builder import GroupBuilder
from .discovery.label_mapper import LabelMapper
from .discovery.scaleway_client import ScalewayClient
from .exceptions import ConfigError, DiscoveryError
from .logging_config import configure_logging
from .metrics import DiscoveryMetrics
from .output.file_sd import FileSDSink
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prometheus-scaleway-sd",
        description="Generate Prometheus file_sd target files for Scaleway servers",
    )
    parser.add_argument(
        "-c", "--config",
        required=True,
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "--output-file",
        help="Override output.file from the configuration",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single discovery cycle, write the file and exit",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate the configuration file and exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def build_scheduler(
    config: AppConfig, client: ScalewayClient, sink: FileSDSink, metrics: DiscoveryMetrics,
) -> Scheduler:
    """Wire the collaborators described by the configuration into a Scheduler."""
    mapper = LabelMapper(
        port=config.targets.port,
        address_source=config.targets.address_source,
        separator=config.targets.tag_separator,
    )
    builder = GroupBuilder(
        policy=config.grouping.policy,
        group_name=config.grouping.name,
        instance_labels=config.grouping.instance_labels,
    )
    return Scheduler(
        client=client,
        mapper=mapper,
        builder=builder,
        sink=sink,
        interval_seconds=config.polling.interval_seconds,
        metrics=metrics,
        malformed_records=config.grouping.malformed_records,
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load config (minimal logging until config is loaded)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    if args.output_file:
        config = dataclasses.replace(config, output=dataclasses.replace(config.output, file=args.output_file))

    configure_logging(config.logging)

    if args.validate:
        logger.info("Configuration is valid")
        return 0

    client = ScalewayClient(config.scaleway)
    try:
        client.check_credentials()
    except DiscoveryError as exc:
        logger.error("Failed to check Scaleway credentials: %s", exc)
        return 1

    metrics = DiscoveryMetrics(process_collectors=not args.once)
    sink = FileSDSink(config.output.file)
    scheduler = build_scheduler(config, client, sink, metrics)
    sink.start()

    try:
        if args.once:
            logger.info("Running single discovery cycle (--once)")
            if scheduler.run_once() is None:
                return 1
        else:
            metrics.serve(config.web.listen_address)
            scheduler.install_signal_handlers()
            scheduler.run()
    except (DiscoveryError, OSError) as exc:
        logger.error("Fatal error: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
    finally:
        sink.stop()

    return 0
