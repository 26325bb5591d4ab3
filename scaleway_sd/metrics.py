"""Process-scoped Prometheus metrics for the discovery loop."""

from __future__ import annotations

import logging

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    PlatformCollector,
    ProcessCollector,
    start_http_server,
)

from . import __version__
from .config import parse_listen_address

logger = logging.getLogger(__name__)

NAMESPACE = "prometheus_scaleway_sd"
REQUEST_BUCKETS = (0.001, 0.01, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0)


class DiscoveryMetrics:
    """Owns one CollectorRegistry and the metrics the scheduler updates.

    Created once at startup and injected into the Scheduler. Nothing is reset
    while the process runs.
    """

    def __init__(self, registry: CollectorRegistry | None = None, process_collectors: bool = False):
        self.registry = registry if registry is not None else CollectorRegistry()
        if process_collectors:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)

        Info(NAMESPACE + "_build", "Build information.", registry=self.registry).info(
            {"version": __version__},
        )
        self.request_duration = Histogram(
            NAMESPACE + "_request_duration_seconds",
            "Histogram of latencies for requests to the Scaleway API.",
            buckets=REQUEST_BUCKETS,
            registry=self.registry,
        )
        self.request_failures = Counter(
            NAMESPACE + "_request_failures_total",
            "Total number of failed requests to the Scaleway API.",
            registry=self.registry,
        )
        self.malformed_records = Counter(
            NAMESPACE + "_malformed_records_total",
            "Total number of inventory records skipped because they could not be mapped.",
            registry=self.registry,
        )
        self.retractions = Counter(
            NAMESPACE + "_retractions_total",
            "Total number of target groups retracted.",
            registry=self.registry,
        )
        self.targets = Gauge(
            NAMESPACE + "_targets",
            "Number of targets produced by the last successful cycle.",
            registry=self.registry,
        )
        self.target_groups = Gauge(
            NAMESPACE + "_target_groups",
            "Number of target groups produced by the last successful cycle.",
            registry=self.registry,
        )

    def record_cycle(self, targets: int, groups: int, retracted: int) -> None:
        self.targets.set(targets)
        self.target_groups.set(groups)
        if retracted:
            self.retractions.inc(retracted)

    def serve(self, listen_address: str) -> None:
        """Expose /metrics on a background HTTP server."""
        host, port = parse_listen_address(listen_address)
        start_http_server(port, addr=host or "0.0.0.0", registry=self.registry)
        logger.info("Serving metrics on %s", listen_address)
