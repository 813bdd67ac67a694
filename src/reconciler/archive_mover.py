"""Copies classified rows into their archive tables."""

from collections.abc import Sequence
from typing import Optional, Union

import asyncpg
import structlog

from reconciler.database import parse_command_count
from reconciler.exceptions import DatabaseError, VerificationError
from reconciler.models import (
    PENDING_SIGNATURE_COLUMNS,
    VALIDATION_COLUMNS,
    PendingSignature,
    RunContext,
    Validation,
)
from utils import safe_identifier
from utils.logging import get_logger

ArchivableRow = Union[PendingSignature, Validation]


class ArchiveMover:
    """Copies captured rows verbatim into an append-only archive table."""

    def __init__(self, logger: Optional[structlog.BoundLogger] = None) -> None:
        self.logger = logger or get_logger("archive_mover")

    async def archive(
        self,
        conn: asyncpg.Connection,
        rows: Sequence[ArchivableRow],
        destination: str,
        context: RunContext,
    ) -> int:
        """Copy rows into the destination archive table.

        Args:
            conn: Connection inside the sub-step's transaction
            rows: Captured rows, all of the same type
            destination: Archive table name, optionally schema-qualified
            context: Run identifiers for the log record

        Returns:
            Number of rows archived

        Raises:
            DatabaseError: If the copy fails
            VerificationError: If the copied count differs from the captured count
        """
        count = 0
        if rows:
            columns = self._columns_for(rows[0])
            # Validates the name; copy_records_to_table does its own quoting.
            safe_identifier(destination)
            schema_name, table_name = _split_table(destination)

            try:
                status = await conn.copy_records_to_table(
                    table_name,
                    records=[row.as_tuple() for row in rows],
                    columns=list(columns),
                    schema_name=schema_name,
                )
            except asyncpg.PostgresError as e:
                raise DatabaseError(
                    f"Failed to archive rows: {e}",
                    correlation_id=context.job_id,
                    context={"table": destination, "count": len(rows)},
                ) from e

            count = parse_command_count(status)
            if count != len(rows):
                raise VerificationError(
                    f"Archive count mismatch: expected {len(rows)}, got {count}",
                    correlation_id=context.job_id,
                    context={"table": destination},
                )

        self.logger.info(
            "Rows archived",
            count=count,
            table=destination,
            run=context.suffix,
        )
        return count

    @staticmethod
    def _columns_for(row: ArchivableRow) -> tuple[str, ...]:
        if isinstance(row, PendingSignature):
            return PENDING_SIGNATURE_COLUMNS
        if isinstance(row, Validation):
            return VALIDATION_COLUMNS
        raise VerificationError(
            f"Cannot archive row of type {type(row).__name__}",
            context={"type": type(row).__name__},
        )


def _split_table(name: str) -> tuple[Optional[str], str]:
    if "." in name:
        schema, table = name.split(".", 1)
        return schema, table
    return None, name
