"""Workflow orchestrator that sequences one reconciliation run."""

from collections.abc import Awaitable
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from reconciler.archive_mover import ArchiveMover
from reconciler.classifier import RecordClassifier
from reconciler.config import ReconcilerConfig, TablesConfig
from reconciler.database import DatabaseManager
from reconciler.horizon import (
    DatabaseWatermarkReporter,
    DefaultWatermarkReporter,
    HorizonCalculator,
    WatermarkReporter,
)
from reconciler.metrics import ReconcilerMetrics
from reconciler.models import RunContext, RunReport, StepResult
from reconciler.purger import Purger
from utils.logging import get_logger

INVALID_SIGNATURES_STEP = "invalid_signatures"
ORPHANED_VALIDATIONS_STEP = "orphaned_validations"


class WorkflowOrchestrator:
    """Runs horizon, classification, archive and delete in strict order.

    The horizon is computed once per run. Each sub-step (invalid signatures,
    then orphaned validations) classifies, archives and deletes inside a single
    transaction. A failing sub-step does not stop the next one, but any failure
    makes the run fail.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        horizon_calculator: HorizonCalculator,
        tables: Optional[TablesConfig] = None,
        archiving_enabled: bool = True,
        classifier: Optional[RecordClassifier] = None,
        archive_mover: Optional[ArchiveMover] = None,
        purger: Optional[Purger] = None,
        metrics: Optional[ReconcilerMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            db_manager: Connected database manager
            horizon_calculator: Computes the run horizon
            tables: Table names (defaults apply when omitted)
            archiving_enabled: Copy rows to archive tables before deleting them
            classifier: Optional classifier override
            archive_mover: Optional archive mover override
            purger: Optional purger override
            metrics: Optional metrics sink
            logger: Optional logger instance
        """
        self.db_manager = db_manager
        self.horizon_calculator = horizon_calculator
        self.tables = tables or TablesConfig()
        self.archiving_enabled = archiving_enabled
        self.logger = logger or get_logger("workflow")
        self.classifier = classifier or RecordClassifier(self.tables, logger=self.logger)
        self.archive_mover = archive_mover or ArchiveMover(logger=self.logger)
        self.purger = purger or Purger(self.tables, logger=self.logger)
        self.metrics = metrics
        self.last_report: Optional[RunReport] = None

    @classmethod
    def from_config(
        cls,
        config: ReconcilerConfig,
        db_manager: DatabaseManager,
        metrics: Optional[ReconcilerMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> "WorkflowOrchestrator":
        """Build an orchestrator and its collaborators from configuration."""
        logger = logger or get_logger("workflow")
        reporter: WatermarkReporter
        if config.watermarks.source == "database":
            reporter = DatabaseWatermarkReporter(
                db_manager, table_name=config.tables.queue_watermarks, logger=logger
            )
        else:
            reporter = DefaultWatermarkReporter()

        calculator = HorizonCalculator(
            queues=config.watermarks.queues,
            reporter=reporter,
            fallback=timedelta(days=config.watermarks.fallback_days),
            logger=logger,
        )
        return cls(
            db_manager,
            calculator,
            tables=config.tables,
            archiving_enabled=config.archiving_enabled,
            metrics=metrics,
            logger=logger,
        )

    async def run(self, job_id: str, server_name: str, worker_name: str) -> bool:
        """Run one reconciliation.

        Args:
            job_id: Job identifier (diagnostic only)
            server_name: Server name (diagnostic only)
            worker_name: Worker name (diagnostic only)

        Returns:
            True when every sub-step completed, False otherwise
        """
        context = RunContext(job_id=str(job_id), server_name=server_name, worker_name=worker_name)
        logger = self.logger.bind(**context.as_log_context())
        report = RunReport(context=context, archiving_enabled=self.archiving_enabled)
        self.last_report = report

        logger.info("Starting reconciliation", archiving_enabled=self.archiving_enabled)

        try:
            horizon = await self.horizon_calculator.compute_horizon()
        except Exception as e:
            report.error = f"Horizon computation failed: {e}"
            logger.error("Horizon computation failed", error=str(e), exc_info=True)
            self._finish(report, logger)
            return False

        report.horizon = horizon
        if self.metrics:
            self.metrics.record_horizon(horizon)
        logger.info("Horizon computed", horizon=horizon.isoformat())

        report.steps.append(
            await self._run_step(
                INVALID_SIGNATURES_STEP,
                lambda result: self._reconcile_invalid_signatures(horizon, context, result),
                logger,
            )
        )
        report.steps.append(
            await self._run_step(
                ORPHANED_VALIDATIONS_STEP,
                lambda result: self._reconcile_orphaned_validations(horizon, context, result),
                logger,
            )
        )

        self._finish(report, logger)
        return report.succeeded

    async def _run_step(
        self,
        name: str,
        step: Callable[[StepResult], Awaitable[None]],
        logger: structlog.BoundLogger,
    ) -> StepResult:
        result = StepResult(name=name)
        if self.metrics:
            self.metrics.start_step_timer(name)
        try:
            await step(result)
        except Exception as e:
            result.error = str(e)
            logger.error("Reconciliation step failed", step=name, error=str(e), exc_info=True)
            if self.metrics:
                self.metrics.record_step_failure(name)
        finally:
            if self.metrics:
                self.metrics.stop_step_timer(name)
        return result

    async def _reconcile_invalid_signatures(
        self, horizon: datetime, context: RunContext, result: StepResult
    ) -> None:
        async with self.db_manager.transaction() as conn:
            selection = await self.classifier.select_invalid_signatures(conn, horizon)
            result.selected = len(selection)
            if self.archiving_enabled:
                result.archived = await self.archive_mover.archive(
                    conn, selection.rows, self.tables.not_validated_archive, context
                )
            result.deleted = await self.purger.delete_invalid_signatures(conn, selection, context)

        if self.metrics:
            self.metrics.record_archived(self.tables.not_validated_archive, result.archived)
            self.metrics.record_deleted(self.tables.pending_signatures, result.deleted)

    async def _reconcile_orphaned_validations(
        self, horizon: datetime, context: RunContext, result: StepResult
    ) -> None:
        async with self.db_manager.transaction() as conn:
            selection = await self.classifier.select_orphaned_validations(conn, horizon)
            result.selected = len(selection)
            if self.archiving_enabled:
                result.archived = await self.archive_mover.archive(
                    conn, selection.rows, self.tables.orphaned_validations_archive, context
                )
            result.deleted = await self.purger.delete_orphaned_validations(conn, selection, context)

        if self.metrics:
            self.metrics.record_archived(self.tables.orphaned_validations_archive, result.archived)
            self.metrics.record_deleted(self.tables.validations, result.deleted)

    def _finish(self, report: RunReport, logger: structlog.BoundLogger) -> None:
        status = "success" if report.succeeded else "failure"
        if self.metrics:
            self.metrics.record_run_status(status)
        if report.succeeded:
            logger.info("Reconciliation completed", **report.to_dict())
        else:
            logger.error("Reconciliation failed", **report.to_dict())
