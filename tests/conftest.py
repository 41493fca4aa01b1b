"""
Shared pytest fixtures for fleet_backup_sync tests.

This module provides reusable fixtures for common test scenarios across
all test modules. Fixtures are automatically discovered by pytest.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import httpx
import pytest
from pydantic import SecretStr

from fleet_backup_sync.common import AppendOnlyCsvWriter
from fleet_backup_sync.config import (
    ApiConfig,
    BackupConfig,
    LoggingConfig,
    StorageConfig,
    SyncConfig,
)
from fleet_backup_sync.memory_source import InMemoryTelemetrySource

# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def api_config() -> ApiConfig:
    """Provide ApiConfig for a test database on the default server."""
    return ApiConfig(
        server='my.geotab.com',
        database='demo_db',
        username='backup@example.com',
        password=SecretStr('hunter2'),
        request_timeout=(5, 10),
    )


@pytest.fixture
def sync_config() -> SyncConfig:
    """Provide SyncConfig with zero waits so loops never really sleep."""
    return SyncConfig(
        poll_interval_seconds=0.0,
        transient_backoff_seconds=0.0,
        rate_limit_backoff_seconds=0.0,
    )


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    """Provide a backup directory path (not created)."""
    return tmp_path / 'VehicleBackups'


@pytest.fixture
def storage_config(backup_dir: Path) -> StorageConfig:
    """Provide StorageConfig writing into the temp backup directory."""
    return StorageConfig(backup_dir=backup_dir, write_workers=4)


@pytest.fixture
def backup_config(
    api_config: ApiConfig,
    sync_config: SyncConfig,
    storage_config: StorageConfig,
) -> BackupConfig:
    """Provide a complete BackupConfig."""
    return BackupConfig(
        api=api_config,
        sync=sync_config,
        storage=storage_config,
        logging=LoggingConfig(console_level='DEBUG'),
    )


# =============================================================================
# Time Fixtures
# =============================================================================


@pytest.fixture
def t1() -> datetime:
    """First status time used across scenarios."""
    return datetime(2024, 1, 15, 10, 30, 0, tzinfo=UTC)


@pytest.fixture
def t2(t1: datetime) -> datetime:
    """A status time one minute after t1."""
    return t1 + timedelta(minutes=1)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def memory_source() -> InMemoryTelemetrySource:
    """Provide an empty in-memory telemetry source."""
    return InMemoryTelemetrySource()


@pytest.fixture
def writer(storage_config: StorageConfig) -> AppendOnlyCsvWriter:
    """Provide a CSV writer on the temp backup directory."""
    return AppendOnlyCsvWriter(storage_config)


# =============================================================================
# HTTP Fixtures
# =============================================================================


@pytest.fixture
def make_response() -> Callable[..., Mock]:
    """
    Factory for mocked httpx responses.

    Usage:
        make_response({'result': [...]})
        make_response(status_code=503, text='Service Unavailable')
    """

    def _make(
        json_body: Any = None,
        status_code: int = 200,
        text: str = '',
    ) -> Mock:
        response = Mock(spec=httpx.Response)
        response.status_code = status_code
        response.is_success = 200 <= status_code < 300  # noqa: PLR2004
        response.text = text
        response.headers = {}
        response.json.return_value = json_body
        return response

    return _make


@pytest.fixture
def auth_result() -> dict[str, Any]:
    """Authenticate result that keeps the caller on the same server."""
    return {
        'result': {
            'credentials': {
                'database': 'demo_db',
                'userName': 'backup@example.com',
                'sessionId': 'session-123',
            },
            'path': 'ThisServer',
        }
    }
