"""Unit tests for record classification."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import asyncpg
import pytest

from helpers import as_record, make_signature, make_validation
from reconciler.classifier import RecordClassifier
from reconciler.config import TablesConfig
from reconciler.exceptions import DatabaseError, VerificationError


@pytest.fixture
def classifier(tables: TablesConfig) -> RecordClassifier:
    return RecordClassifier(tables)


@pytest.mark.asyncio
async def test_select_invalid_signatures(classifier, mock_conn, horizon) -> None:
    """Test invalid signatures are captured with their sids."""
    rows = [make_signature(1, horizon - timedelta(seconds=1))]
    mock_conn.fetch = AsyncMock(return_value=[as_record(r) for r in rows])

    selection = await classifier.select_invalid_signatures(mock_conn, horizon)

    assert selection.rows == tuple(rows)
    assert selection.sids == [1]
    assert selection.horizon == horizon

    query, param = mock_conn.fetch.call_args.args
    assert '"signatures_pending_validation"' in query
    assert '"timestamp_validation_close" < $1' in query
    assert "FOR UPDATE" in query
    assert param == horizon


@pytest.mark.asyncio
async def test_select_invalid_signatures_rejects_boundary_row(
    classifier, mock_conn, horizon
) -> None:
    """Test a row closing exactly at the horizon fails verification."""
    mock_conn.fetch = AsyncMock(return_value=[as_record(make_signature(2, horizon))])

    with pytest.raises(VerificationError, match="at or after the horizon"):
        await classifier.select_invalid_signatures(mock_conn, horizon)


@pytest.mark.asyncio
async def test_select_invalid_signatures_empty(classifier, mock_conn, horizon) -> None:
    """Test an empty result is a valid outcome."""
    selection = await classifier.select_invalid_signatures(mock_conn, horizon)
    assert len(selection) == 0
    assert selection.sids == []


@pytest.mark.asyncio
async def test_select_invalid_signatures_wraps_postgres_errors(
    classifier, mock_conn, horizon
) -> None:
    """Test PostgreSQL errors surface as DatabaseError."""
    mock_conn.fetch = AsyncMock(side_effect=asyncpg.PostgresError("relation does not exist"))

    with pytest.raises(DatabaseError, match="Failed to select invalid signatures"):
        await classifier.select_invalid_signatures(mock_conn, horizon)


@pytest.mark.asyncio
async def test_naive_column_gets_naive_horizon(classifier, mock_conn, horizon) -> None:
    """Test TIMESTAMP columns are queried with a naive horizon."""
    mock_conn.fetchval = AsyncMock(return_value=False)

    selection = await classifier.select_invalid_signatures(mock_conn, horizon)

    _, param = mock_conn.fetch.call_args.args
    assert param.tzinfo is None
    assert param == horizon.replace(tzinfo=None)
    assert selection.horizon.tzinfo is None


@pytest.mark.asyncio
async def test_naive_column_horizon_is_converted_to_utc(classifier, mock_conn, horizon) -> None:
    """Test an offset horizon is shifted to UTC before its tzinfo is dropped."""
    mock_conn.fetchval = AsyncMock(return_value=False)
    plus_two = timezone(timedelta(hours=2))

    await classifier.select_invalid_signatures(mock_conn, horizon.astimezone(plus_two))

    _, param = mock_conn.fetch.call_args.args
    assert param == datetime(2024, 3, 1, 12, 0)


@pytest.mark.asyncio
async def test_column_lookup_uses_schema_qualified_name(mock_conn, horizon) -> None:
    """Test the type lookup resolves the same relation the selection queries."""
    classifier = RecordClassifier(TablesConfig(pending_signatures="petitions.pending"))

    await classifier.select_invalid_signatures(mock_conn, horizon)

    lookup, relation, column = mock_conn.fetchval.call_args.args
    assert "to_regclass($1)" in lookup
    assert (relation, column) == ('"petitions"."pending"', "timestamp_validation_close")
    query, _ = mock_conn.fetch.call_args.args
    assert '"petitions"."pending"' in query


@pytest.mark.asyncio
async def test_column_lookup_follows_search_path(classifier, mock_conn, horizon) -> None:
    """Test unqualified table names are not pinned to the public schema."""
    await classifier.select_invalid_signatures(mock_conn, horizon)

    lookup, relation, _ = mock_conn.fetchval.call_args.args
    assert relation == '"signatures_pending_validation"'
    assert "public" not in lookup


@pytest.mark.asyncio
async def test_missing_deadline_column_raises(classifier, mock_conn, horizon) -> None:
    """Test an unknown column type fails the step instead of guessing."""
    mock_conn.fetchval = AsyncMock(return_value=None)
    row = make_signature(1, horizon - timedelta(days=1))
    mock_conn.fetch = AsyncMock(return_value=[as_record(row)])

    with pytest.raises(DatabaseError, match="not found"):
        await classifier.select_invalid_signatures(mock_conn, horizon)
    mock_conn.fetch.assert_not_called()


@pytest.mark.asyncio
async def test_select_orphaned_validations(classifier, mock_conn, horizon) -> None:
    """Test orphans are selected through a left outer join and keys captured."""
    rows = [
        make_validation(1, "K1", horizon - timedelta(days=5)),
        make_validation(2, "K9", horizon - timedelta(days=1)),
    ]
    mock_conn.fetch = AsyncMock(return_value=[as_record(r) for r in rows])

    selection = await classifier.select_orphaned_validations(mock_conn, horizon)

    assert selection.secret_keys == ["K1", "K9"]
    query, param = mock_conn.fetch.call_args.args
    assert "LEFT OUTER JOIN" in query
    assert 'p."secret_validation_key" IS NULL' in query
    assert 'v."timestamp_validation_close" < $1' in query
    assert "FOR UPDATE OF v" in query
    assert param == horizon


@pytest.mark.asyncio
async def test_select_orphaned_validations_rejects_open_window(
    classifier, mock_conn, horizon
) -> None:
    """Test a validation still inside its window is never treated as orphaned."""
    row = make_validation(2, "K2", horizon + timedelta(days=5))
    mock_conn.fetch = AsyncMock(return_value=[as_record(row)])

    with pytest.raises(VerificationError):
        await classifier.select_orphaned_validations(mock_conn, horizon)


@pytest.mark.asyncio
async def test_select_orphaned_validations_wraps_postgres_errors(
    classifier, mock_conn, horizon
) -> None:
    """Test join failures surface as DatabaseError."""
    mock_conn.fetch = AsyncMock(side_effect=asyncpg.PostgresError("timeout"))

    with pytest.raises(DatabaseError, match="Failed to select orphaned validations"):
        await classifier.select_orphaned_validations(mock_conn, horizon)


@pytest.mark.asyncio
async def test_column_type_lookup_failure(classifier, mock_conn, horizon) -> None:
    """Test type lookup failures surface as DatabaseError."""
    mock_conn.fetchval = AsyncMock(side_effect=asyncpg.PostgresError("permission denied"))

    with pytest.raises(DatabaseError, match="inspect column type"):
        await classifier.select_orphaned_validations(mock_conn, horizon)
