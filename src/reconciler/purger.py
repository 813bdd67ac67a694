"""Deletion of classified rows from their source tables."""

from typing import Optional

import asyncpg
import structlog

from reconciler.config import TablesConfig
from reconciler.database import parse_command_count
from reconciler.exceptions import DatabaseError
from reconciler.models import InvalidSignatureSelection, OrphanedValidationSelection, RunContext
from utils import safe_identifier
from utils.logging import get_logger


class Purger:
    """Deletes rows captured by the classifier.

    Runs whether or not archiving is enabled. With archiving disabled the
    rows are discarded without a copy.
    """

    def __init__(
        self,
        tables: TablesConfig,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.tables = tables
        self.logger = logger or get_logger("purger")

    async def delete_invalid_signatures(
        self,
        conn: asyncpg.Connection,
        selection: InvalidSignatureSelection,
        context: RunContext,
    ) -> int:
        """Delete the captured pending signatures.

        The classification predicate is repeated alongside the captured sids,
        so rows that appeared after classification are never touched.

        Returns:
            Number of rows deleted

        Raises:
            DatabaseError: If the delete fails
        """
        table = safe_identifier(self.tables.pending_signatures)
        query = f"""
            DELETE FROM {table}
            WHERE "sid" = ANY($1)
              AND "timestamp_validation_close" < $2
        """
        return await self._delete(
            conn,
            query,
            (selection.sids, selection.horizon),
            empty=not selection.rows,
            table_name=self.tables.pending_signatures,
            context=context,
        )

    async def delete_orphaned_validations(
        self,
        conn: asyncpg.Connection,
        selection: OrphanedValidationSelection,
        context: RunContext,
    ) -> int:
        """Delete validations whose secret key is in the captured orphan key set.

        An empty key set is a no-op that reports zero.

        Returns:
            Number of rows deleted

        Raises:
            DatabaseError: If the delete fails
        """
        table = safe_identifier(self.tables.validations)
        query = f"""
            DELETE FROM {table}
            WHERE "secret_validation_key" = ANY($1)
        """
        keys = selection.secret_keys
        return await self._delete(
            conn,
            query,
            (keys,),
            empty=not keys,
            table_name=self.tables.validations,
            context=context,
        )

    async def _delete(
        self,
        conn: asyncpg.Connection,
        query: str,
        params: tuple,
        *,
        empty: bool,
        table_name: str,
        context: RunContext,
    ) -> int:
        deleted_count = 0
        if not empty:
            try:
                status = await conn.execute(query, *params)
            except asyncpg.PostgresError as e:
                raise DatabaseError(
                    f"Failed to delete rows: {e}",
                    correlation_id=context.job_id,
                    context={"table": table_name},
                ) from e
            deleted_count = parse_command_count(status)

        self.logger.info(
            "Rows deleted",
            count=deleted_count,
            table=table_name,
            run=context.suffix,
        )
        return deleted_count
