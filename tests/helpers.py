"""Row builders and mocks shared by the test suites."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from unittest.mock import MagicMock

from reconciler.database import DatabaseManager
from reconciler.models import PendingSignature, Validation

HORIZON = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_signature(
    sid: int,
    close: datetime,
    key: Optional[str] = None,
    **overrides: Any,
) -> PendingSignature:
    """Build a pending signature with sensible defaults."""
    values: dict[str, Any] = {
        "sid": sid,
        "secret_validation_key": key or f"key-{sid}",
        "signature_source_api_key": "api-key",
        "timestamp_petition_close": close,
        "timestamp_validation_close": close,
        "petition_id": "petition-1",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "zip": "12345",
        "email": f"signer{sid}@example.com",
        "signup": False,
        "timestamp_validation_email_sent": close - timedelta(days=7),
        "timestamp_submitted": close - timedelta(days=8),
    }
    values.update(overrides)
    return PendingSignature(**values)


def make_validation(vid: int, key: str, close: datetime, **overrides: Any) -> Validation:
    """Build a validation row with sensible defaults."""
    values: dict[str, Any] = {
        "vid": vid,
        "secret_validation_key": key,
        "timestamp_validated": close - timedelta(days=1),
        "timestamp_validation_close": close,
        "client_ip": "203.0.113.7",
        "petition_id": "petition-1",
    }
    values.update(overrides)
    return Validation(**values)


def as_record(row: Any) -> dict[str, Any]:
    """Mimic an asyncpg record (mapping access by column name)."""
    return dict(vars(row))


def mock_db_manager(conn: Any) -> MagicMock:
    """Create a DatabaseManager mock whose transaction() yields conn."""
    manager = MagicMock(spec=DatabaseManager)

    @asynccontextmanager
    async def transaction() -> AsyncGenerator[Any, None]:
        yield conn

    manager.transaction = MagicMock(side_effect=transaction)
    return manager


