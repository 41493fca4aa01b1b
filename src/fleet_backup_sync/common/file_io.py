# fleet_backup_sync/common/file_io.py
"""
Append-only CSV backups, one file per device.

Design Philosophy:
------------------
- Files are only ever appended to. A new file gets the fixed header line
  first, then every append adds exactly one newline-terminated row.
- Rows are serialized through pandas with an enforced schema, so number and
  timestamp formatting never depends on the host locale.
- load() returns None for a missing file; append() raises on errors
  (filesystem issues require explicit handling).

Thread Safety:
--------------
Appends to different devices may run in parallel. Appends to the same device
are serialized with a per-device lock, so a slow write from one cycle cannot
interleave with a write from the next.

Usage:
------
    from fleet_backup_sync.config import StorageConfig
    from fleet_backup_sync.common.file_io import AppendOnlyCsvWriter

    writer = AppendOnlyCsvWriter(StorageConfig(backup_dir='VehicleBackups'))
    writer.append(record)             # one row
    writer.append_all(records)        # one task per device, bounded pool
    frame = writer.load('b1A')        # read a backup back
"""

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pandas as pd

from fleet_backup_sync.config import StorageConfig
from fleet_backup_sync.models import BackupRecord
from fleet_backup_sync.schema import (
    BACKUP_COLUMNS,
    CSV_TIMESTAMP_FORMAT,
    enforce_backup_schema,
)

__all__: list[str] = ['AppendOnlyCsvWriter']

logger: logging.Logger = logging.getLogger(__name__)

CSV_SUFFIX: str = '.csv'


class AppendOnlyCsvWriter:
    """
    Writes backup records to '<backup_dir>/<device id>.csv'.

    Attributes:
        backup_dir: Directory holding the per-device files (read-only property).
        max_workers: Parallelism used by append_all() (read-only property).
    """

    def __init__(self, storage_config: StorageConfig) -> None:
        """
        Initialize the writer. The backup directory is created on first write.

        Args:
            storage_config: Backup directory and write parallelism.
        """
        self._storage_config: StorageConfig = storage_config
        self._device_locks: dict[str, threading.Lock] = {}
        self._locks_guard: threading.Lock = threading.Lock()

        logger.info(
            'Initialized AppendOnlyCsvWriter: backup_dir=%r, write_workers=%d',
            str(storage_config.backup_dir),
            storage_config.write_workers,
        )

    @property
    def backup_dir(self) -> Path:
        """Directory holding the per-device files."""
        return self._storage_config.backup_dir

    @property
    def max_workers(self) -> int:
        """Maximum concurrent appends in append_all()."""
        return self._storage_config.write_workers

    def path_for(self, device_id: str) -> Path:
        """
        Resolve the backup file for a device.

        Raises:
            ValueError: If the id is empty or would escape the backup directory.
        """
        if not device_id or device_id in {'.', '..'} or any(
            separator in device_id for separator in ('/', '\\', '\x00')
        ):
            raise ValueError(f'Device id cannot be used as a file name: {device_id!r}')
        return self._storage_config.backup_dir / f'{device_id}{CSV_SUFFIX}'

    def _lock_for(self, device_id: str) -> threading.Lock:
        with self._locks_guard:
            lock: threading.Lock | None = self._device_locks.get(device_id)
            if lock is None:
                lock = threading.Lock()
                self._device_locks[device_id] = lock
            return lock

    def append(self, record: BackupRecord) -> Path:
        """
        Append one record to its device's file.

        Creates the backup directory if needed and writes the header line when
        the file does not exist yet.

        Args:
            record: Row to append.

        Returns:
            Path of the file written.

        Raises:
            OSError: File system errors (permissions, disk full, etc).
            ValueError: If the device id is not usable as a file name.
        """
        file_path: Path = self.path_for(record.device_id)
        row_frame: pd.DataFrame = enforce_backup_schema(pd.DataFrame([record.to_row()]))

        with self._lock_for(record.device_id):
            file_path.parent.mkdir(parents=True, exist_ok=True)
            write_header: bool = not file_path.exists()

            with file_path.open('a', encoding='utf-8', newline='') as backup_file:
                row_frame.to_csv(
                    backup_file,
                    header=write_header,
                    index=False,
                    na_rep='',
                    date_format=CSV_TIMESTAMP_FORMAT,
                    lineterminator='\n',
                )

        logger.debug(
            'Appended %s row for device %s to %s',
            'first' if write_header else 'a',
            record.device_id,
            file_path,
        )
        return file_path

    def append_all(self, records: Sequence[BackupRecord]) -> list[Path]:
        """
        Append many records, one task per record, on a bounded thread pool.

        Waits for every task to finish before returning. If any append fails,
        the remaining ones still complete and the first error is re-raised.

        Args:
            records: Rows to append, normally one per device.

        Returns:
            Paths written, in the order of records.
        """
        if not records:
            return []

        workers: int = min(self.max_workers, len(records))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix='backup-writer'
        ) as pool:
            futures = [pool.submit(self.append, record) for record in records]

        # Leaving the with-block waited for every task
        return [future.result() for future in futures]

    def load(self, device_id: str) -> pd.DataFrame | None:
        """
        Read a device's backup file with the enforced schema.

        Returns:
            DataFrame with BACKUP_COLUMNS, or None if the file does not exist.
        """
        file_path: Path = self.path_for(device_id)
        if not file_path.exists():
            return None

        dataframe: pd.DataFrame = pd.read_csv(
            file_path,
            dtype={'Id': str, 'VIN': str},
            keep_default_na=False,
            na_values={column: [''] for column in BACKUP_COLUMNS},
        )
        logger.debug('Loaded %d rows from %s', len(dataframe), file_path)
        return enforce_backup_schema(dataframe)
