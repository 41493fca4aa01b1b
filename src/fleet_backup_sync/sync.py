# fleet_backup_sync/sync.py
"""
One fetch-diff-write pass over the fleet.

A cycle lists the devices, fetches their latest status and odometer in
batches, keeps only devices whose status timestamp moved past their
watermark, and appends one backup row for each of those.

Design Decisions:
-----------------
- The watermark tracker is injected and owned by the SyncCycle instance.
  There is no module-level state, so a cycle is reproducible from its inputs.

- Errors from listing devices or fetching snapshots propagate unchanged.
  Retry and backoff belong to the scheduler.

- A device whose status is missing or undated is skipped, not an error. A
  missing odometer leaves the odometer column empty.

Usage:
------
    cycle = SyncCycle(source, writer, WatermarkTracker(), unit_system='metric')
    result = cycle.run_once()
    print(result.devices_written)
"""

import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from fleet_backup_sync.cancellation import CancellationToken
from fleet_backup_sync.common import AppendOnlyCsvWriter
from fleet_backup_sync.config import UnitSystem
from fleet_backup_sync.data_source import SnapshotBatch, TelemetrySource
from fleet_backup_sync.models import (
    BackupRecord,
    Device,
    DeviceStatusInfo,
)
from fleet_backup_sync.watermark import WatermarkTracker

__all__: list[str] = ['CycleResult', 'SyncCycle']

logger: logging.Logger = logging.getLogger(__name__)


class CycleResult(BaseModel):
    """
    Summary of one sync cycle.

    Attributes:
        devices_seen: Devices returned by the device listing.
        devices_written: Devices that got a new backup row.
        batches_issued: Batched requests sent for snapshots.
        written_paths: Files appended to, in write order.
        duration: Wall-clock time of the cycle.
    """

    model_config = ConfigDict(extra='forbid')

    devices_seen: int = 0
    devices_written: int = 0
    batches_issued: int = 0
    written_paths: list[Path] = Field(default_factory=list)
    duration: timedelta = timedelta(0)


class SyncCycle:
    """
    Orchestrates one incremental backup pass.

    Attributes:
        watermarks: The tracker deciding which statuses are new (read-only).
    """

    def __init__(
        self,
        source: TelemetrySource,
        writer: AppendOnlyCsvWriter,
        watermarks: WatermarkTracker | None = None,
        unit_system: UnitSystem = 'metric',
    ) -> None:
        """
        Args:
            source: Where devices and snapshots come from.
            writer: Where accepted records go.
            watermarks: Tracker to use; a fresh one if None.
            unit_system: Odometer units for new records.
        """
        self._source: TelemetrySource = source
        self._writer: AppendOnlyCsvWriter = writer
        self._watermarks: WatermarkTracker = (
            watermarks if watermarks is not None else WatermarkTracker()
        )
        self._unit_system: UnitSystem = unit_system

    @property
    def watermarks(self) -> WatermarkTracker:
        """The tracker deciding which statuses are new."""
        return self._watermarks

    def run_once(self, cancellation: CancellationToken | None = None) -> CycleResult:
        """
        Run one cycle.

        Steps:
        1. List devices; an empty fleet ends the cycle early.
        2. Batch-fetch status and odometer snapshots.
        3. Keep devices whose status timestamp advances their watermark.
        4. Build one BackupRecord per kept device.
        5. Append the records (parallel per device) and wait for all writes.

        Args:
            cancellation: Optional token, checked between batches and before
                writes are dispatched.

        Returns:
            CycleResult with counts for logging and tests.

        Raises:
            CycleCancelledError: If cancellation was requested.
            APIError: Any listing or fetch failure, unchanged.
            OSError: If a backup file cannot be written.
        """
        cycle_start: datetime = datetime.now(UTC)
        logger.info('Starting sync backup cycle')

        logger.info('Fetching devices...')
        devices: list[Device] = self._source.list_devices()

        if not devices:
            logger.info('No devices found')
            return CycleResult(duration=datetime.now(UTC) - cycle_start)

        logger.info('Retrieved %d devices', len(devices))

        snapshots: SnapshotBatch = self._source.fetch_snapshots(devices, cancellation)
        records: list[BackupRecord] = self.select_new_records(devices, snapshots)

        if cancellation is not None:
            cancellation.raise_if_cancelled()

        logger.info('Writing CSV files for %d devices...', len(records))
        written_paths: list[Path] = self._writer.append_all(records)

        result = CycleResult(
            devices_seen=len(devices),
            devices_written=len(written_paths),
            batches_issued=snapshots.batches_issued,
            written_paths=written_paths,
            duration=datetime.now(UTC) - cycle_start,
        )

        logger.info(
            'Sync backup cycle complete: %d devices seen, %d written, '
            '%d batch(es). Duration: %s',
            result.devices_seen,
            result.devices_written,
            result.batches_issued,
            result.duration,
        )
        return result

    def select_new_records(
        self,
        devices: list[Device],
        snapshots: SnapshotBatch,
    ) -> list[BackupRecord]:
        """
        Build records for the devices whose status advanced their watermark.

        Advancing the watermark is part of the selection, so calling this
        twice with the same snapshots yields records only the first time.
        """
        records: list[BackupRecord] = []

        for device in devices:
            status: DeviceStatusInfo | None = snapshots.statuses.get(device.device_id)
            if status is None or status.timestamp is None:
                logger.debug('No dated status for device %s, skipping', device.device_id)
                continue

            if not self._watermarks.should_accept(device.device_id, status.timestamp):
                continue

            logger.info(
                'New activity detected for device id %s, marking for backup',
                device.device_id,
            )
            records.append(
                BackupRecord.from_snapshots(
                    device=device,
                    status=status,
                    odometer=snapshots.odometers.get(device.device_id),
                    unit_system=self._unit_system,
                )
            )

        return records
