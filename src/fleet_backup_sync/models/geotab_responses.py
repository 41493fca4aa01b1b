# fleet_backup_sync/models/geotab_responses.py
"""
Pydantic response models for MyGeotab API entities.

MyGeotab returns JSON-RPC envelopes of the form {"result": ...} or
{"error": {...}}. Entities use camelCase field names, mapped to snake_case
via aliases. Only the fields the backup agent reads are modelled; everything
else is ignored.

Timestamps are normalized to timezone-aware UTC on the way in so that
watermark comparisons never mix naive and aware datetimes.
"""

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__: list[str] = [
    'Device',
    'DeviceStatusInfo',
    'EntityReference',
    'JsonRpcError',
    'JsonRpcErrorDetail',
    'StatusData',
    'latest_by_timestamp',
]

logger: logging.Logger = logging.getLogger(__name__)


# =============================================================================
# Base Configuration
# =============================================================================


class GeotabModelBase(BaseModel):
    """
    Base class for all MyGeotab response models.

    Configuration:
        - extra='ignore': Silently ignore unknown fields from API.
        - populate_by_name=True: Allow both alias (camelCase) and field name.
        - str_strip_whitespace=True: Trim whitespace from strings.
    """

    model_config = ConfigDict(
        extra='ignore',
        populate_by_name=True,
        str_strip_whitespace=True,
    )


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# =============================================================================
# Entities
# =============================================================================


class EntityReference(GeotabModelBase):
    """Reference to another entity, e.g. {"id": "b1A"}."""

    entity_id: str = Field(alias='id')


class Device(GeotabModelBase):
    """
    A telematics device installed in a vehicle.

    Attributes:
        device_id: Opaque MyGeotab identifier (e.g., 'b1A'). Unique per database.
        name: Display name assigned in MyGeotab.
        vin: Vehicle Identification Number reported by GO devices, if any.
    """

    device_id: str = Field(alias='id')
    name: str | None = None
    vin: str | None = Field(default=None, alias='vehicleIdentificationNumber')

    @field_validator('vin')
    @classmethod
    def blank_vin_is_none(cls, vin: str | None) -> str | None:
        """Treat blank VINs as missing."""
        return vin or None


class DeviceStatusInfo(GeotabModelBase):
    """
    Latest known position and time for a device (the status snapshot).

    Attributes:
        device: Reference to the reporting device.
        timestamp: Time of the last status (UTC). May be missing for devices
            that have never communicated.
        latitude: Decimal degrees, WGS84.
        longitude: Decimal degrees, WGS84.
    """

    device: EntityReference
    timestamp: datetime | None = Field(default=None, alias='dateTime')
    latitude: float | None = None
    longitude: float | None = None

    @field_validator('timestamp')
    @classmethod
    def normalize_timestamp(cls, timestamp: datetime | None) -> datetime | None:
        """Convert to timezone-aware UTC; naive values are taken as UTC."""
        return _as_utc(timestamp)

    @property
    def device_id(self) -> str:
        """Identifier of the reporting device."""
        return self.device.entity_id


class StatusData(GeotabModelBase):
    """
    A diagnostic reading for a device (the odometer snapshot).

    Attributes:
        device: Reference to the reporting device.
        value: Raw reading; for the odometer diagnostic this is metres.
        timestamp: Time of the reading (UTC).
    """

    device: EntityReference
    value: float | None = Field(default=None, alias='data')
    timestamp: datetime | None = Field(default=None, alias='dateTime')

    @field_validator('timestamp')
    @classmethod
    def normalize_timestamp(cls, timestamp: datetime | None) -> datetime | None:
        """Convert to timezone-aware UTC; naive values are taken as UTC."""
        return _as_utc(timestamp)

    @property
    def device_id(self) -> str:
        """Identifier of the reporting device."""
        return self.device.entity_id


def latest_by_timestamp[SnapshotT: (DeviceStatusInfo, StatusData)](
    snapshots: Iterable[SnapshotT],
) -> SnapshotT | None:
    """
    Pick the most recent snapshot by timestamp.

    The API makes no ordering promise for list results, so the newest entry is
    chosen explicitly. Undated entries lose to any dated one; if every entry is
    undated, the first one is returned.

    Args:
        snapshots: Candidate snapshots for a single device.

    Returns:
        The newest snapshot, or None if there are no candidates.
    """
    latest: SnapshotT | None = None
    for snapshot in snapshots:
        if latest is None:
            latest = snapshot
            continue
        if snapshot.timestamp is None:
            continue
        if latest.timestamp is None or snapshot.timestamp > latest.timestamp:
            latest = snapshot
    return latest


# =============================================================================
# JSON-RPC Errors
# =============================================================================


class JsonRpcErrorDetail(GeotabModelBase):
    """One entry of the "errors" array in a JSON-RPC error."""

    name: str = ''
    message: str = ''


class JsonRpcError(GeotabModelBase):
    """
    JSON-RPC error object returned in place of a result.

    MyGeotab wraps the server-side exception in an outer "JSONRPCError"; the
    interesting exception type (e.g. "OverLimitException") is the name of the
    first inner error.
    """

    name: str = ''
    message: str = ''
    errors: list[JsonRpcErrorDetail] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> Self:
        """Build from the raw "error" value, tolerating non-object payloads."""
        if isinstance(payload, dict):
            return cls.model_validate(payload)
        return cls(message=str(payload))

    @property
    def exception_name(self) -> str:
        """Server-side exception type name, innermost first."""
        for detail in self.errors:
            if detail.name:
                return detail.name
        return self.name

    @property
    def detail_message(self) -> str:
        """Most specific human-readable message available."""
        for detail in self.errors:
            if detail.message:
                return detail.message
        return self.message
