"""Main entry point for the reconciler CLI."""

import asyncio
import sys
from pathlib import Path
from typing import Any, Optional

import click
import structlog
from prometheus_client import CollectorRegistry

from reconciler.config import ReconcilerConfig, load_config
from reconciler.database import DatabaseManager
from reconciler.exceptions import ConfigurationError
from reconciler.metrics import ReconcilerMetrics
from reconciler.schema import ensure_schema
from reconciler.workflow import WorkflowOrchestrator
from utils.logging import configure_logging


def _logging_options(func: Any) -> Any:
    func = click.option(
        "--log-format",
        default="console",
        type=click.Choice(["console", "json"], case_sensitive=False),
        help="Log format: 'console' for human-readable output, 'json' for structured logs",
    )(func)
    func = click.option(
        "--log-level",
        default="INFO",
        type=click.Choice(["DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"]),
        help="Log level",
    )(func)
    func = click.option(
        "--config",
        "-c",
        required=True,
        type=click.Path(exists=True, path_type=Path),
        help="Path to configuration file (YAML)",
    )(func)
    return func


def _load(config: Path, logger: structlog.BoundLogger) -> ReconcilerConfig:
    try:
        return load_config(config)
    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)


@click.group()
def cli() -> None:
    """Reconcile expired pending signatures and orphaned validations."""


@cli.command()
@_logging_options
@click.option("--job-id", required=True, help="Job identifier for diagnostics")
@click.option("--server-name", default="localhost", show_default=True, help="Server name for diagnostics")
@click.option("--worker-name", default="default", show_default=True, help="Worker name for diagnostics")
@click.option(
    "--no-archive",
    is_flag=True,
    default=False,
    help="Delete invalid and orphaned rows without archiving them (overrides config)",
)
def run(
    config: Path,
    log_level: str,
    log_format: str,
    job_id: str,
    server_name: str,
    worker_name: str,
    no_archive: bool,
) -> None:
    """Archive and delete stale signature records once.

    Exits with status 1 when any step fails.
    """
    logger = configure_logging(
        log_level=log_level,
        log_format=log_format,
        correlation_id=job_id,
        server_name=server_name,
        worker_name=worker_name,
    )
    logger = logger.bind(component="main")

    reconciler_config = _load(config, logger)
    if no_archive:
        reconciler_config.archiving_enabled = False

    try:
        succeeded = asyncio.run(
            _run_workflow(reconciler_config, job_id, server_name, worker_name, logger)
        )
    except Exception as e:
        logger.exception("Unexpected error", error=str(e))
        sys.exit(1)

    if not succeeded:
        sys.exit(1)


async def _run_workflow(
    config: ReconcilerConfig,
    job_id: str,
    server_name: str,
    worker_name: str,
    logger: structlog.BoundLogger,
) -> bool:
    metrics: Optional[ReconcilerMetrics] = None
    if config.monitoring.metrics_enabled:
        metrics = ReconcilerMetrics(logger=logger, registry=CollectorRegistry())
        if config.monitoring.metrics_port:
            try:
                metrics.start_metrics_server(port=config.monitoring.metrics_port)
            except OSError as e:
                logger.warning(
                    "Failed to start metrics server (non-critical)",
                    port=config.monitoring.metrics_port,
                    error=str(e),
                )

    db_manager = DatabaseManager(config.database, logger=logger)
    await db_manager.connect()
    try:
        orchestrator = WorkflowOrchestrator.from_config(
            config, db_manager, metrics=metrics, logger=logger
        )
        return await orchestrator.run(job_id, server_name, worker_name)
    finally:
        await db_manager.disconnect()


@cli.command()
@_logging_options
def horizon(config: Path, log_level: str, log_format: str) -> None:
    """Print the horizon the next run would use."""
    logger = configure_logging(log_level=log_level, log_format=log_format)
    reconciler_config = _load(config, logger)

    async def compute() -> str:
        db_manager = DatabaseManager(reconciler_config.database, logger=logger)
        orchestrator = WorkflowOrchestrator.from_config(
            reconciler_config, db_manager, logger=logger
        )
        if reconciler_config.watermarks.source != "database":
            value = await orchestrator.horizon_calculator.compute_horizon()
            return value.isoformat()

        await db_manager.connect()
        try:
            value = await orchestrator.horizon_calculator.compute_horizon()
            return value.isoformat()
        finally:
            await db_manager.disconnect()

    try:
        click.echo(asyncio.run(compute()))
    except Exception as e:
        logger.exception("Horizon computation failed", error=str(e))
        sys.exit(1)


@cli.command("init-schema")
@_logging_options
def init_schema(config: Path, log_level: str, log_format: str) -> None:
    """Create any missing signature, validation, archive and watermark tables."""
    logger = configure_logging(log_level=log_level, log_format=log_format)
    reconciler_config = _load(config, logger)

    async def create() -> None:
        db_manager = DatabaseManager(reconciler_config.database, logger=logger)
        await db_manager.connect()
        try:
            async with db_manager.transaction() as conn:
                await ensure_schema(conn, reconciler_config.tables)
        finally:
            await db_manager.disconnect()

    try:
        asyncio.run(create())
    except Exception as e:
        logger.exception("Schema creation failed", error=str(e))
        sys.exit(1)
    logger.info("Schema ready", database=reconciler_config.database.name)


if __name__ == "__main__":
    cli()
