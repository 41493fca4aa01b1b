# fleet_backup_sync/models/geotab_requests.py
"""
Request-side models for the MyGeotab JSON-RPC API.

This module defines the session credentials returned by Authenticate and the
per-device sub-queries that get packed into ExecuteMultiCall batches. A
SubQuery knows how to render itself as a JSON-RPC call; the data sources
decide how many go into each batch.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, SecretStr

__all__: list[str] = [
    'ODOMETER_DIAGNOSTIC_ID',
    'LoginCredentials',
    'QueryKind',
    'SubQuery',
    'format_api_datetime',
]

# Known diagnostic id for the odometer (adjusted) reading.
ODOMETER_DIAGNOSTIC_ID: Final[str] = 'DiagnosticOdometerAdjustmentId'

STATUS_FIELDS: Final[tuple[str, ...]] = ('latitude', 'longitude', 'dateTime', 'device')
ODOMETER_FIELDS: Final[tuple[str, ...]] = ('data', 'dateTime', 'device')


def format_api_datetime(value: datetime) -> str:
    """
    Render a datetime the way MyGeotab expects it: UTC, millisecond precision,
    'Z' suffix (e.g. '2024-01-15T10:30:00.000Z').

    Naive datetimes are taken as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    try:
        utc_value: datetime = value.astimezone(UTC)
    except OverflowError as error:
        raise ValueError(f'Datetime is out of range in UTC: {value.isoformat()}') from error
    return utc_value.replace(tzinfo=None).isoformat(timespec='milliseconds') + 'Z'


class LoginCredentials(BaseModel):
    """
    Session credentials returned by Authenticate and sent with every call.

    Attributes:
        database: Database (account) name.
        user_name: Authenticated user.
        session_id: Server-issued session token (masked in logs and repr).
    """

    model_config = ConfigDict(extra='ignore', populate_by_name=True, frozen=True)

    database: str
    user_name: str = Field(alias='userName')
    session_id: SecretStr = Field(alias='sessionId')

    def to_params(self) -> dict[str, str]:
        """Serialize for the "credentials" parameter of a JSON-RPC call."""
        return {
            'database': self.database,
            'userName': self.user_name,
            'sessionId': self.session_id.get_secret_value(),
        }


class QueryKind(str, Enum):
    """The two per-device lookups made each cycle, keyed by entity type name."""

    STATUS = 'DeviceStatusInfo'
    ODOMETER = 'StatusData'


class SubQuery(BaseModel):
    """
    One per-device lookup inside a batched request.

    Attributes:
        kind: Which entity type to fetch.
        device_id: Device the lookup is scoped to.
        from_date: Lower time bound (odometer lookups only).
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    kind: QueryKind
    device_id: str
    from_date: datetime | None = None

    @classmethod
    def status(cls, device_id: str) -> 'SubQuery':
        """Factory for a latest-position lookup."""
        return cls(kind=QueryKind.STATUS, device_id=device_id)

    @classmethod
    def odometer(cls, device_id: str, from_date: datetime) -> 'SubQuery':
        """Factory for an odometer diagnostic lookup."""
        return cls(kind=QueryKind.ODOMETER, device_id=device_id, from_date=from_date)

    def to_api_call(self) -> dict[str, Any]:
        """
        Render as a {"method": "Get", "params": {...}} call for ExecuteMultiCall.

        Returns:
            JSON-serializable call description.
        """
        search: dict[str, Any] = {'deviceSearch': {'id': self.device_id}}
        fields: tuple[str, ...] = STATUS_FIELDS

        if self.kind is QueryKind.ODOMETER:
            search['diagnosticSearch'] = {'id': ODOMETER_DIAGNOSTIC_ID}
            if self.from_date is not None:
                search['fromDate'] = format_api_datetime(self.from_date)
            fields = ODOMETER_FIELDS

        return {
            'method': 'Get',
            'params': {
                'typeName': self.kind.value,
                'search': search,
                'propertySelector': {'fields': list(fields), 'isIncluded': True},
            },
        }
