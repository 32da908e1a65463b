"""Prometheus metrics for the stream worker."""

import logging
from typing import Dict, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)


class WorkerMetrics:
    """Prometheus metrics for stream dispatch and relay supervision.

    Provides counters for starts, exits, scheduler ticks and control
    commands, and a gauge for live relay sessions.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize Prometheus metrics.

        Args:
            registry: Registry to register with (defaults to the global one)
        """
        self.registry = registry if registry is not None else REGISTRY

        self.stream_starts_total = Counter(
            "multistream_starts_total",
            "Relay start attempts",
            ["result"],  # started, failed, already_running, rejected
            registry=self.registry,
        )

        self.stream_exits_total = Counter(
            "multistream_exits_total",
            "Relay sessions that ended",
            ["status"],  # completed, failed, stopped
            registry=self.registry,
        )

        self.scheduler_ticks_total = Counter(
            "multistream_scheduler_ticks_total",
            "Scheduler ticks processed",
            registry=self.registry,
        )

        self.commands_received_total = Counter(
            "multistream_commands_received_total",
            "Control channel messages received",
            ["channel"],
            registry=self.registry,
        )

        self.active_sessions = Gauge(
            "multistream_active_sessions",
            "Relay processes currently supervised",
            registry=self.registry,
        )

    def record_start(self, result: str) -> None:
        """Record a start attempt outcome."""
        self.stream_starts_total.labels(result=result).inc()

    def record_exit(self, status: str) -> None:
        """Record a session reaching a terminal status."""
        self.stream_exits_total.labels(status=status).inc()

    def record_tick(self) -> None:
        self.scheduler_ticks_total.inc()

    def record_command(self, channel: str) -> None:
        self.commands_received_total.labels(channel=channel).inc()

    def set_active_sessions(self, count: int) -> None:
        self.active_sessions.set(count)

    def serve(self, port: int) -> None:
        """Expose metrics over HTTP on ``port``."""
        start_http_server(port, registry=self.registry)
        logger.info(f"Prometheus metrics exporter listening on :{port}")

    def get_metrics_summary(self) -> Dict:
        """Get current metrics summary as dictionary."""
        return {
            "starts": {
                result: self.stream_starts_total.labels(result=result)._value.get()
                for result in ("started", "failed", "already_running", "rejected")
            },
            "exits": {
                status: self.stream_exits_total.labels(status=status)._value.get()
                for status in ("completed", "failed", "stopped")
            },
            "scheduler_ticks": self.scheduler_ticks_total._value.get(),
            "active_sessions": self.active_sessions._value.get(),
        }
