# fleet_backup_sync/models/__init__.py

from fleet_backup_sync.models.backup_record import BackupRecord, convert_odometer
from fleet_backup_sync.models.geotab_requests import (
    ODOMETER_DIAGNOSTIC_ID,
    LoginCredentials,
    QueryKind,
    SubQuery,
    format_api_datetime,
)
from fleet_backup_sync.models.geotab_responses import (
    Device,
    DeviceStatusInfo,
    EntityReference,
    JsonRpcError,
    JsonRpcErrorDetail,
    StatusData,
    latest_by_timestamp,
)

__all__: list[str] = [
    'ODOMETER_DIAGNOSTIC_ID',
    'BackupRecord',
    'Device',
    'DeviceStatusInfo',
    'EntityReference',
    'JsonRpcError',
    'JsonRpcErrorDetail',
    'LoginCredentials',
    'QueryKind',
    'StatusData',
    'SubQuery',
    'convert_odometer',
    'format_api_datetime',
    'latest_by_timestamp',
]
