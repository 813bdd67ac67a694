"""Prometheus metrics for monitoring reconciliation runs."""

import time
from datetime import datetime, timezone
from typing import Optional

import structlog
from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from utils.logging import get_logger


class ReconcilerMetrics:
    """Prometheus metrics for the reconciler."""

    def __init__(
        self,
        logger: Optional[structlog.BoundLogger] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        """Initialize metrics.

        Args:
            logger: Optional logger instance
            registry: Optional Prometheus registry (defaults to global REGISTRY)
        """
        self.logger = logger or get_logger("metrics")
        self.registry = registry or REGISTRY

        self.records_archived_total = Counter(
            "reconciler_records_archived_total",
            "Total number of rows copied to archive tables",
            ["table"],
            registry=self.registry,
        )

        self.records_deleted_total = Counter(
            "reconciler_records_deleted_total",
            "Total number of rows deleted from source tables",
            ["table"],
            registry=self.registry,
        )

        self.runs_total = Counter(
            "reconciler_runs_total",
            "Total number of reconciliation runs",
            ["status"],  # success, failure
            registry=self.registry,
        )

        self.step_failures_total = Counter(
            "reconciler_step_failures_total",
            "Total number of failed sub-steps",
            ["step"],
            registry=self.registry,
        )

        self.step_duration_seconds = Histogram(
            "reconciler_step_duration_seconds",
            "Duration of sub-steps in seconds",
            ["step"],
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0],
            registry=self.registry,
        )

        self.horizon_lag_seconds = Gauge(
            "reconciler_horizon_lag_seconds",
            "Age of the horizon used by the last run",
            registry=self.registry,
        )

        self.last_success_timestamp = Gauge(
            "reconciler_last_success_timestamp",
            "Unix timestamp of last successful run",
            registry=self.registry,
        )

        self._step_start_times: dict[str, float] = {}

    def record_archived(self, table: str, count: int) -> None:
        if count > 0:
            self.records_archived_total.labels(table=table).inc(count)

    def record_deleted(self, table: str, count: int) -> None:
        if count > 0:
            self.records_deleted_total.labels(table=table).inc(count)

    def record_step_failure(self, step: str) -> None:
        self.step_failures_total.labels(step=step).inc()

    def record_horizon(self, horizon: datetime) -> None:
        lag = (datetime.now(timezone.utc) - horizon).total_seconds()
        self.horizon_lag_seconds.set(max(lag, 0.0))

    def record_run_status(self, status: str) -> None:
        """Record run completion status.

        Args:
            status: Run status (success, failure)
        """
        self.runs_total.labels(status=status).inc()
        if status == "success":
            self.last_success_timestamp.set(time.time())

    def start_step_timer(self, step: str) -> None:
        self._step_start_times[step] = time.time()

    def stop_step_timer(self, step: str) -> None:
        start = self._step_start_times.pop(step, None)
        if start is not None:
            self.step_duration_seconds.labels(step=step).observe(time.time() - start)

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus exposition format."""
        return generate_latest(self.registry)

    def start_metrics_server(self, port: int = 8000) -> None:
        """Start HTTP server for the Prometheus metrics endpoint.

        Args:
            port: Port to listen on
        """
        start_http_server(port, registry=self.registry)
        self.logger.info("Metrics server started", port=port)
