"""Classification of expired pending signatures and orphaned validations."""

from datetime import datetime
from typing import Optional

import asyncpg
import structlog

from reconciler.config import TablesConfig
from reconciler.exceptions import DatabaseError, VerificationError
from reconciler.horizon import as_utc
from reconciler.models import (
    PENDING_SIGNATURE_COLUMNS,
    VALIDATION_COLUMNS,
    InvalidSignatureSelection,
    OrphanedValidationSelection,
    PendingSignature,
    Validation,
    validation_window_closed,
)
from utils import safe_identifier
from utils.logging import get_logger


class RecordClassifier:
    """Selects rows whose validation window closed before the horizon.

    Every selection locks the rows it returns (FOR UPDATE) and is meant to be
    run on the same transaction-scoped connection that later archives and
    deletes them.
    """

    def __init__(
        self,
        tables: TablesConfig,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.tables = tables
        self.logger = logger or get_logger("classifier")

    async def _is_column_timezone_aware(
        self, conn: asyncpg.Connection, table_name: str, column: str
    ) -> bool:
        """Check whether a deadline column is TIMESTAMPTZ rather than TIMESTAMP.

        Unqualified table names are resolved through the connection's
        search_path, the same way the selection queries resolve them.

        Raises:
            DatabaseError: If the lookup fails or the column cannot be found
        """
        query = """
            SELECT a.atttypid = 'timestamptz'::regtype
            FROM pg_attribute a
            WHERE a.attrelid = to_regclass($1)
              AND a.attname = $2
              AND NOT a.attisdropped
        """
        try:
            is_aware = await conn.fetchval(query, safe_identifier(table_name), column)
        except asyncpg.PostgresError as e:
            raise DatabaseError(
                f"Failed to inspect column type: {e}",
                context={"table": table_name, "column": column},
            ) from e
        if is_aware is None:
            raise DatabaseError(
                f"Column {column} not found on table {table_name}",
                context={"table": table_name, "column": column},
            )
        return bool(is_aware)

    async def horizon_for_query(
        self, conn: asyncpg.Connection, table_name: str, horizon: datetime
    ) -> datetime:
        """Match the horizon's timezone awareness to the deadline column.

        Naive TIMESTAMP columns are assumed to hold UTC wall-clock values.
        """
        horizon = as_utc(horizon)
        if await self._is_column_timezone_aware(conn, table_name, "timestamp_validation_close"):
            return horizon
        return horizon.replace(tzinfo=None)

    async def select_invalid_signatures(
        self, conn: asyncpg.Connection, horizon: datetime
    ) -> InvalidSignatureSelection:
        """Select pending signatures with timestamp_validation_close < horizon.

        Args:
            conn: Connection inside the sub-step's transaction
            horizon: Run horizon

        Returns:
            The captured rows, reused for both archive and delete

        Raises:
            DatabaseError: If the query fails
            VerificationError: If a returned row does not satisfy the predicate
        """
        table = safe_identifier(self.tables.pending_signatures)
        columns = ", ".join(safe_identifier(c) for c in PENDING_SIGNATURE_COLUMNS)
        query_horizon = await self.horizon_for_query(conn, self.tables.pending_signatures, horizon)

        query = f"""
            SELECT {columns}
            FROM {table}
            WHERE "timestamp_validation_close" < $1
            ORDER BY "sid"
            FOR UPDATE
        """

        try:
            records = await conn.fetch(query, query_horizon)
        except asyncpg.PostgresError as e:
            raise DatabaseError(
                f"Failed to select invalid signatures: {e}",
                context={"table": self.tables.pending_signatures},
            ) from e

        rows = tuple(PendingSignature.from_record(record) for record in records)
        self._verify_closed(rows, query_horizon, self.tables.pending_signatures)

        self.logger.debug(
            "Invalid signatures selected",
            table=self.tables.pending_signatures,
            count=len(rows),
            horizon=query_horizon.isoformat(),
        )
        return InvalidSignatureSelection(horizon=query_horizon, rows=rows)

    async def select_orphaned_validations(
        self, conn: asyncpg.Connection, horizon: datetime
    ) -> OrphanedValidationSelection:
        """Select validations with no matching pending signature that closed before the horizon.

        Before the horizon a validation can legitimately arrive ahead of its
        pending signature, so a missing match alone does not make it orphaned.

        Args:
            conn: Connection inside the sub-step's transaction
            horizon: Run horizon

        Returns:
            The captured rows and their secret validation keys

        Raises:
            DatabaseError: If the query fails
            VerificationError: If a returned row does not satisfy the predicate
        """
        validations = safe_identifier(self.tables.validations)
        pending = safe_identifier(self.tables.pending_signatures)
        columns = ", ".join(f"v.{safe_identifier(c)}" for c in VALIDATION_COLUMNS)
        query_horizon = await self.horizon_for_query(conn, self.tables.validations, horizon)

        query = f"""
            SELECT {columns}
            FROM {validations} AS v
            LEFT OUTER JOIN {pending} AS p
              ON p."secret_validation_key" = v."secret_validation_key"
            WHERE p."secret_validation_key" IS NULL
              AND v."timestamp_validation_close" < $1
            ORDER BY v."vid"
            FOR UPDATE OF v
        """

        try:
            records = await conn.fetch(query, query_horizon)
        except asyncpg.PostgresError as e:
            raise DatabaseError(
                f"Failed to select orphaned validations: {e}",
                context={"table": self.tables.validations},
            ) from e

        rows = tuple(Validation.from_record(record) for record in records)
        self._verify_closed(rows, query_horizon, self.tables.validations)

        selection = OrphanedValidationSelection(horizon=query_horizon, rows=rows)
        self.logger.debug(
            "Orphaned validations selected",
            table=self.tables.validations,
            count=len(rows),
            keys=len(selection.secret_keys),
            horizon=query_horizon.isoformat(),
        )
        return selection

    def _verify_closed(self, rows: tuple, horizon: datetime, table_name: str) -> None:
        late = [row for row in rows if not validation_window_closed(row, horizon)]
        if late:
            raise VerificationError(
                f"{len(late)} selected rows close at or after the horizon",
                context={"table": table_name, "horizon": horizon.isoformat()},
            )
