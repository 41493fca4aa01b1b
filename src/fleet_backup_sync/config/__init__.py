"""
Configuration Package for the fleet backup agent.

Exposes the main configuration models and the loader function.
"""

from fleet_backup_sync.config.config_models import (
    ApiConfig,
    BackupConfig,
    LoggingConfig,
    StorageConfig,
    SyncConfig,
    UnitSystem,
)
from fleet_backup_sync.config.loader import load_config

__all__: list[str] = [
    'ApiConfig',
    'BackupConfig',
    'LoggingConfig',
    'StorageConfig',
    'SyncConfig',
    'UnitSystem',
    'load_config',
]
