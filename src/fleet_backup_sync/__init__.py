# fleet_backup_sync/__init__.py
"""
Fleet Backup Sync - Incremental per-vehicle CSV backups from MyGeotab.

The agent polls a MyGeotab database on a fixed period, fetches the latest
status and odometer reading of every device in batched JSON-RPC calls, and
appends one row to '<backup_dir>/<device id>.csv' for each device whose
status timestamp moved since the previous cycle.

Quick Start - Command Line:
    $ fleet-backup-sync my.geotab.com demo_db me@example.com secret

Quick Start - Library:
    >>> from fleet_backup_sync import (
    ...     AppendOnlyCsvWriter, CycleScheduler, GeotabClient,
    ...     GeotabTelemetrySource, SyncCycle, load_config,
    ... )
    >>> config = load_config('backup.yaml')
    >>> with GeotabClient(config.api) as client:
    ...     source = GeotabTelemetrySource(client, config.sync)
    ...     cycle = SyncCycle(source, AppendOnlyCsvWriter(config.storage))
    ...     CycleScheduler(source, cycle, config.sync).run(max_cycles=1)

Features:
    - Batched ExecuteMultiCall fetching (up to 100 calls per request)
    - Per-device watermarks so unchanged vehicles are never re-written
    - Append-only CSV files with a locale-independent format
    - Fixed backoff for rate limits and transient API failures
    - Graceful stop on SIGINT/SIGTERM
"""

__version__ = '0.1.0'

from fleet_backup_sync.cancellation import CancellationToken, CycleCancelledError
from fleet_backup_sync.client import (
    APIError,
    AuthenticationError,
    GeotabClient,
    InvalidApiOperationError,
    RateLimitError,
    TransientAPIError,
)
from fleet_backup_sync.common import AppendOnlyCsvWriter, setup_logger
from fleet_backup_sync.config import BackupConfig, load_config
from fleet_backup_sync.data_source import (
    BatchedTelemetrySource,
    GeotabTelemetrySource,
    SnapshotBatch,
    TelemetrySource,
)
from fleet_backup_sync.memory_source import InMemoryTelemetrySource
from fleet_backup_sync.models import BackupRecord
from fleet_backup_sync.scheduler import CycleScheduler, SchedulerState
from fleet_backup_sync.sync import CycleResult, SyncCycle
from fleet_backup_sync.watermark import WatermarkTracker

__all__: list[str] = [
    'APIError',
    'AppendOnlyCsvWriter',
    'AuthenticationError',
    'BackupConfig',
    'BackupRecord',
    'BatchedTelemetrySource',
    'CancellationToken',
    'CycleCancelledError',
    'CycleResult',
    'CycleScheduler',
    'GeotabClient',
    'GeotabTelemetrySource',
    'InMemoryTelemetrySource',
    'InvalidApiOperationError',
    'RateLimitError',
    'SchedulerState',
    'SnapshotBatch',
    'SyncCycle',
    'TelemetrySource',
    'TransientAPIError',
    'WatermarkTracker',
    'load_config',
    'setup_logger',
]
