"""DDL for the tables the reconciler reads and writes."""

import asyncpg

from reconciler.config import TablesConfig
from utils import safe_identifier

_PENDING_SIGNATURE_COLUMNS_DDL = """
    "sid" BIGINT PRIMARY KEY,
    "secret_validation_key" TEXT NOT NULL,
    "signature_source_api_key" TEXT,
    "timestamp_petition_close" TIMESTAMPTZ,
    "timestamp_validation_close" TIMESTAMPTZ NOT NULL,
    "petition_id" TEXT,
    "first_name" TEXT,
    "last_name" TEXT,
    "zip" TEXT,
    "email" TEXT,
    "signup" BOOLEAN NOT NULL DEFAULT FALSE,
    "timestamp_validation_email_sent" TIMESTAMPTZ,
    "timestamp_submitted" TIMESTAMPTZ
"""

_VALIDATION_COLUMNS_DDL = """
    "vid" BIGINT PRIMARY KEY,
    "secret_validation_key" TEXT NOT NULL,
    "timestamp_validated" TIMESTAMPTZ,
    "timestamp_validation_close" TIMESTAMPTZ NOT NULL,
    "client_ip" TEXT,
    "petition_id" TEXT
"""


def schema_statements(tables: TablesConfig) -> list[str]:
    """Return CREATE TABLE IF NOT EXISTS statements for all five tables."""
    pending = safe_identifier(tables.pending_signatures)
    validations = safe_identifier(tables.validations)
    return [
        f"CREATE TABLE IF NOT EXISTS {pending} ({_PENDING_SIGNATURE_COLUMNS_DDL}, "
        f'UNIQUE ("secret_validation_key"))',
        f"CREATE INDEX IF NOT EXISTS {safe_identifier(_index_name(tables.pending_signatures))} "
        f'ON {pending} ("timestamp_validation_close")',
        f"CREATE TABLE IF NOT EXISTS {validations} ({_VALIDATION_COLUMNS_DDL})",
        f"CREATE INDEX IF NOT EXISTS {safe_identifier(_index_name(tables.validations))} "
        f'ON {validations} ("timestamp_validation_close")',
        # Archives keep the source's columns but drop its constraints so re-archived
        # rows are never rejected.
        f"CREATE TABLE IF NOT EXISTS {safe_identifier(tables.not_validated_archive)} "
        f"({_strip_constraints(_PENDING_SIGNATURE_COLUMNS_DDL)})",
        f"CREATE TABLE IF NOT EXISTS {safe_identifier(tables.orphaned_validations_archive)} "
        f"({_strip_constraints(_VALIDATION_COLUMNS_DDL)})",
        f"CREATE TABLE IF NOT EXISTS {safe_identifier(tables.queue_watermarks)} ("
        '"queue_name" TEXT PRIMARY KEY, "last_emptied_at" TIMESTAMPTZ NOT NULL)',
    ]


async def ensure_schema(conn: asyncpg.Connection, tables: TablesConfig) -> None:
    """Create any missing reconciler tables on the given connection."""
    for statement in schema_statements(tables):
        await conn.execute(statement)


def _index_name(table_name: str) -> str:
    return f"{table_name.split('.')[-1]}_validation_close_idx"


def _strip_constraints(ddl: str) -> str:
    return ddl.replace(" PRIMARY KEY", "").replace(" NOT NULL DEFAULT FALSE", "")
