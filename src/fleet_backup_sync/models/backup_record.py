# fleet_backup_sync/models/backup_record.py
"""
The per-device output row written to the CSV backups.

A BackupRecord merges three sources for one device in one cycle: the device
itself (id, VIN), its accepted status snapshot (time and position) and its
odometer snapshot. Records are built, serialized and dropped within a cycle;
nothing here is kept between cycles.
"""

import math
from datetime import datetime
from typing import Any, Final, Self

from pydantic import BaseModel, ConfigDict

from fleet_backup_sync.config import UnitSystem
from fleet_backup_sync.models.geotab_responses import (
    Device,
    DeviceStatusInfo,
    StatusData,
)
from fleet_backup_sync.schema import BACKUP_COLUMNS

__all__: list[str] = ['BackupRecord', 'convert_odometer']

METERS_PER_KILOMETER: Final[float] = 1000.0
MILES_PER_KILOMETER: Final[float] = 0.621371192


def convert_odometer(raw_meters: float | None, unit_system: UnitSystem) -> int | None:
    """
    Convert a raw odometer reading to whole kilometres or miles.

    The raw value is metres. It is divided by 1000, converted to miles for the
    imperial unit system, then rounded half-to-even to zero decimals.

    Args:
        raw_meters: Raw diagnostic value, or None if there was no reading.
        unit_system: 'metric' or 'imperial'.

    Returns:
        Whole distance units, or None when there is no usable reading.

    Example:
        >>> convert_odometer(12345, 'metric')
        12
        >>> convert_odometer(12345, 'imperial')
        8
    """
    if raw_meters is None or math.isnan(raw_meters):
        return None

    kilometers: float = raw_meters / METERS_PER_KILOMETER
    if unit_system == 'imperial':
        return round(kilometers * MILES_PER_KILOMETER)
    return round(kilometers)


class BackupRecord(BaseModel):
    """
    One row of a device backup file.

    Attributes:
        device_id: MyGeotab device identifier.
        timestamp: Accepted status timestamp (UTC).
        vin: Vehicle Identification Number, if the device reports one.
        latitude: Decimal degrees from the status snapshot.
        longitude: Decimal degrees from the status snapshot.
        odometer: Whole km or miles, None when no odometer reading exists.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    device_id: str
    timestamp: datetime
    vin: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    odometer: int | None = None

    @classmethod
    def from_snapshots(
        cls,
        device: Device,
        status: DeviceStatusInfo,
        odometer: StatusData | None,
        unit_system: UnitSystem = 'metric',
    ) -> Self:
        """
        Merge a device with its accepted status and (optional) odometer.

        Raises:
            ValueError: If the status snapshot has no timestamp.
        """
        if status.timestamp is None:
            raise ValueError(
                f'Status for device {device.device_id!r} has no timestamp'
            )

        return cls(
            device_id=device.device_id,
            timestamp=status.timestamp,
            vin=device.vin,
            latitude=status.latitude,
            longitude=status.longitude,
            odometer=convert_odometer(
                odometer.value if odometer is not None else None,
                unit_system,
            ),
        )

    def to_row(self) -> dict[str, Any]:
        """Map the record onto BACKUP_COLUMNS, in column order."""
        values: tuple[Any, ...] = (
            self.device_id,
            self.timestamp,
            self.vin,
            self.latitude,
            self.longitude,
            self.odometer,
        )
        return dict(zip(BACKUP_COLUMNS, values, strict=True))
