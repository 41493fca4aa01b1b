# fleet_backup_sync/memory_source.py
"""
In-memory telemetry source.

Holds devices, statuses and odometer readings in wire format (camelCase
dictionaries, as MyGeotab would return them) and answers batched sub-queries
from memory. It runs through the same batching and parsing code as the live
source, which makes it suitable for tests, dry runs and demos.

Failures can be queued per operation to exercise the scheduler's error
handling:

    source.fail_next('list_devices', RateLimitError('slow down'))
"""

import logging
from collections import deque
from datetime import UTC, datetime
from typing import Any, Literal

from fleet_backup_sync.config.config_models import (
    EARLIEST_SEARCH_DATE,
    MAX_CALLS_PER_MULTICALL,
)
from fleet_backup_sync.data_source import BatchedTelemetrySource
from fleet_backup_sync.models import (
    Device,
    QueryKind,
    SubQuery,
    format_api_datetime,
)

__all__: list[str] = ['InMemoryTelemetrySource', 'SourceOperation']

logger: logging.Logger = logging.getLogger(__name__)

SourceOperation = Literal['authenticate', 'list_devices', 'execute_batch']


def _wire_datetime(value: datetime | None) -> str | None:
    return format_api_datetime(value) if value is not None else None


class InMemoryTelemetrySource(BatchedTelemetrySource):
    """
    Fully in-memory telemetry source.

    Attributes:
        batch_sizes: Size of every batch executed so far, in order.
        list_devices_calls: Number of list_devices() calls so far.
        authenticated: Whether authenticate() has succeeded.
    """

    def __init__(
        self,
        max_calls_per_batch: int = MAX_CALLS_PER_MULTICALL,
        odometer_from_date: datetime = EARLIEST_SEARCH_DATE,
    ) -> None:
        super().__init__(
            max_calls_per_batch=max_calls_per_batch,
            odometer_from_date=odometer_from_date,
        )
        self._devices: dict[str, dict[str, Any]] = {}
        self._statuses: dict[str, list[dict[str, Any]]] = {}
        self._odometers: dict[str, list[dict[str, Any]]] = {}
        self._failures: dict[SourceOperation, deque[BaseException]] = {
            'authenticate': deque(),
            'list_devices': deque(),
            'execute_batch': deque(),
        }
        self.batch_sizes: list[int] = []
        self.list_devices_calls: int = 0
        self.authenticated: bool = False

    # -------------------------------------------------------------------------
    # Data Setup
    # -------------------------------------------------------------------------

    def add_device(self, device_id: str, vin: str | None = None, name: str | None = None) -> None:
        """Register a device (replaces an existing one with the same id)."""
        self._devices[device_id] = {
            'id': device_id,
            'name': name or device_id,
            'vehicleIdentificationNumber': vin,
        }

    def remove_device(self, device_id: str) -> None:
        """Forget a device and its readings."""
        self._devices.pop(device_id, None)
        self._statuses.pop(device_id, None)
        self._odometers.pop(device_id, None)

    def set_status(
        self,
        device_id: str,
        timestamp: datetime | None,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> None:
        """Replace the device's status with a single snapshot."""
        self._statuses[device_id] = [
            {
                'device': {'id': device_id},
                'dateTime': _wire_datetime(timestamp),
                'latitude': latitude,
                'longitude': longitude,
            }
        ]

    def add_status(
        self,
        device_id: str,
        timestamp: datetime | None,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> None:
        """Append another status snapshot for the device."""
        self._statuses.setdefault(device_id, []).append(
            {
                'device': {'id': device_id},
                'dateTime': _wire_datetime(timestamp),
                'latitude': latitude,
                'longitude': longitude,
            }
        )

    def set_odometer(
        self,
        device_id: str,
        raw_meters: float | None,
        timestamp: datetime | None = None,
    ) -> None:
        """Replace the device's odometer readings with a single reading."""
        self._odometers[device_id] = []
        self.add_odometer(device_id, raw_meters, timestamp)

    def add_odometer(
        self,
        device_id: str,
        raw_meters: float | None,
        timestamp: datetime | None = None,
    ) -> None:
        """Append another odometer reading for the device."""
        self._odometers.setdefault(device_id, []).append(
            {
                'device': {'id': device_id},
                'data': raw_meters,
                'dateTime': _wire_datetime(timestamp or datetime.now(UTC)),
            }
        )

    def fail_next(self, operation: SourceOperation, error: BaseException) -> None:
        """Queue an exception to be raised by the next call of an operation."""
        self._failures[operation].append(error)

    def _raise_queued_failure(self, operation: SourceOperation) -> None:
        queue: deque[BaseException] = self._failures[operation]
        if queue:
            raise queue.popleft()

    # -------------------------------------------------------------------------
    # TelemetrySource
    # -------------------------------------------------------------------------

    def authenticate(self) -> None:
        self._raise_queued_failure('authenticate')
        self.authenticated = True

    def list_devices(self) -> list[Device]:
        self.list_devices_calls += 1
        self._raise_queued_failure('list_devices')
        return [Device.model_validate(raw) for raw in self._devices.values()]

    def _execute_batch(self, queries: list[SubQuery]) -> list[Any]:
        self._raise_queued_failure('execute_batch')
        self.batch_sizes.append(len(queries))

        results: list[Any] = []
        for query in queries:
            if query.kind is QueryKind.STATUS:
                results.append(list(self._statuses.get(query.device_id, [])))
            else:
                results.append(self._odometer_result(query))
        return results

    def _odometer_result(self, query: SubQuery) -> list[dict[str, Any]]:
        readings: list[dict[str, Any]] = self._odometers.get(query.device_id, [])
        if query.from_date is None:
            return list(readings)
        lower_bound: str = format_api_datetime(query.from_date)
        # Wire timestamps share one fixed-width format, so string order is time order
        return [reading for reading in readings if reading['dateTime'] >= lower_bound]
