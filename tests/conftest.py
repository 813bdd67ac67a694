"""Pytest configuration and shared fixtures."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from helpers import HORIZON
from reconciler.config import TablesConfig
from reconciler.models import RunContext


@pytest.fixture
def horizon() -> datetime:
    return HORIZON


@pytest.fixture
def tables() -> TablesConfig:
    return TablesConfig()


@pytest.fixture
def run_context() -> RunContext:
    return RunContext(job_id="42", server_name="web-1", worker_name="cron")


@pytest.fixture
def mock_conn() -> AsyncMock:
    """Create a mock asyncpg connection."""
    conn = AsyncMock()
    conn.fetchval = AsyncMock(return_value=True)
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock(return_value="DELETE 0")
    conn.copy_records_to_table = AsyncMock(return_value="COPY 0")
    return conn
