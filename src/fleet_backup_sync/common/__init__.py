# fleet_backup_sync/common/__init__.py

from fleet_backup_sync.common.file_io import AppendOnlyCsvWriter
from fleet_backup_sync.common.logger import setup_logger
from fleet_backup_sync.common.truststore_context import build_truststore_ssl_context

__all__: list[str] = [
    'AppendOnlyCsvWriter',
    'build_truststore_ssl_context',
    'setup_logger',
]
