"""Safe archival horizon computed from per-queue drain watermarks."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from reconciler.database import DatabaseManager
from utils import safe_identifier
from utils.logging import get_logger


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class WatermarkReporter(ABC):
    """Reports when a queue was last completely drained."""

    @abstractmethod
    async def last_emptied(self, queue_name: str) -> Optional[datetime]:
        """Return the last time the queue was empty, or None when unknown."""


class DefaultWatermarkReporter(WatermarkReporter):
    """Reporter for queue backends that expose no drain information."""

    async def last_emptied(self, queue_name: str) -> Optional[datetime]:
        return None


class DatabaseWatermarkReporter(WatermarkReporter):
    """Reads watermarks maintained by the queue subsystem in a database table.

    The table is read-only from the reconciler's side. A queue without a row
    reports None so the horizon falls back to the conservative default.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        table_name: str = "queue_watermarks",
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.db_manager = db_manager
        self.table_name = table_name
        self.logger = logger or get_logger("watermark_reporter")

    async def last_emptied(self, queue_name: str) -> Optional[datetime]:
        table = safe_identifier(self.table_name)
        query = f"""
            SELECT last_emptied_at
            FROM {table}
            WHERE queue_name = $1
        """
        value = await self.db_manager.fetchval(query, queue_name)
        if value is None:
            self.logger.debug("No watermark recorded for queue", queue=queue_name)
            return None
        # TIMESTAMP columns hold UTC wall-clock values
        return as_utc(value)


class HorizonCalculator:
    """Computes the cutoff before which no record can still be in flight.

    The horizon is the oldest watermark across all known queues: a record is
    only considered stale once the slowest queue has drained past it.
    """

    def __init__(
        self,
        queues: Sequence[str],
        reporter: Optional[WatermarkReporter] = None,
        fallback: timedelta = timedelta(days=14),
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize horizon calculator.

        Args:
            queues: Names of every queue feeding the signature tables
            reporter: Watermark source (defaults to one that reports nothing)
            fallback: Age assumed for queues without a reported watermark
            clock: Returns the current UTC time
            logger: Optional logger instance
        """
        if not queues:
            raise ValueError("At least one queue is required to compute a horizon")
        self.queues = list(queues)
        self.reporter = reporter or DefaultWatermarkReporter()
        self.fallback = fallback
        self.clock = clock
        self.logger = logger or get_logger("horizon")

    async def watermarks(self) -> dict[str, datetime]:
        """Return the effective watermark for each queue, defaults applied."""
        now = self.clock()
        default = as_utc(now - self.fallback)
        result: dict[str, datetime] = {}
        for queue in self.queues:
            reported = await self.reporter.last_emptied(queue)
            result[queue] = as_utc(reported) if reported is not None else default
        return result

    async def compute_horizon(self) -> datetime:
        """Return the minimum of all queue watermarks."""
        watermarks = await self.watermarks()
        horizon = min(watermarks.values())
        self.logger.debug(
            "Horizon computed",
            horizon=horizon.isoformat(),
            watermarks={queue: ts.isoformat() for queue, ts in watermarks.items()},
        )
        return horizon
