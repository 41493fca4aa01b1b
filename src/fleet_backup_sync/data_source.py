# fleet_backup_sync/data_source.py
"""
Remote data sources for device lists and per-device snapshots.

The sync cycle needs three things from the remote side: authenticate, list
devices, and fetch each device's latest status and odometer. The last one is
the interesting part: it issues two sub-queries per device, packs them into
batches no larger than the API's composite-request limit, and sends the
batches one after another.

Design Decisions:
-----------------
- BatchedTelemetrySource owns chunking and result matching. Subclasses only
  say how to list devices and how to execute one batch, so the live source
  and the in-memory fake share exactly the same batching code.

- The kind of each result is known from its request (results come back in
  request order), but results are matched to devices by the device id in the
  returned entities, so missing or short results are tolerated.

- When a result holds several entries for one device, the newest by
  timestamp wins; list order is not trusted.

- A failing batch raises immediately. Nothing is retried here.

Usage:
------
    with GeotabClient(config.api) as client:
        source = GeotabTelemetrySource(client, config.sync)
        source.authenticate()
        devices = source.list_devices()
        snapshots = source.fetch_snapshots(devices)
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fleet_backup_sync.cancellation import CancellationToken
from fleet_backup_sync.client import GeotabClient
from fleet_backup_sync.config import SyncConfig
from fleet_backup_sync.config.config_models import (
    EARLIEST_SEARCH_DATE,
    MAX_CALLS_PER_MULTICALL,
)
from fleet_backup_sync.models import (
    Device,
    DeviceStatusInfo,
    QueryKind,
    StatusData,
    SubQuery,
    latest_by_timestamp,
)

__all__: list[str] = [
    'BatchedTelemetrySource',
    'GeotabTelemetrySource',
    'SnapshotBatch',
    'TelemetrySource',
    'chunk_queries',
]

logger: logging.Logger = logging.getLogger(__name__)


# =============================================================================
# Result Container
# =============================================================================


class SnapshotBatch(BaseModel):
    """
    Latest snapshots for a set of devices.

    Attributes:
        statuses: Device id to newest status snapshot.
        odometers: Device id to newest odometer snapshot.
        batches_issued: Number of batched requests sent to produce this.
    """

    model_config = ConfigDict(extra='forbid')

    statuses: dict[str, DeviceStatusInfo] = Field(default_factory=dict)
    odometers: dict[str, StatusData] = Field(default_factory=dict)
    batches_issued: int = 0


# =============================================================================
# Protocol Definition
# =============================================================================


@runtime_checkable
class TelemetrySource(Protocol):
    """
    Interface the sync cycle and scheduler depend on.

    Example:
        source: TelemetrySource = GeotabTelemetrySource(client, sync_config)
    """

    def authenticate(self) -> None:
        """Establish a session. Raises AuthenticationError on failure."""
        ...

    def list_devices(self) -> list[Device]:
        """Return every device visible to the session."""
        ...

    def fetch_snapshots(
        self,
        devices: Sequence[Device],
        cancellation: CancellationToken | None = None,
    ) -> SnapshotBatch:
        """Return the latest status and odometer for each device."""
        ...


# =============================================================================
# Helper Functions
# =============================================================================


def chunk_queries(queries: list[SubQuery], chunk_size: int) -> Iterator[list[SubQuery]]:
    """
    Yield successive chunks of at most chunk_size sub-queries.

    Example:
        120 sub-queries with chunk_size=100 yield chunks of 100 and 20.
    """
    if chunk_size < 1:
        raise ValueError(f'chunk_size must be positive, got: {chunk_size}')
    for start in range(0, len(queries), chunk_size):
        yield queries[start : start + chunk_size]


def _parse_entries[ModelT: BaseModel](
    model: type[ModelT],
    raw_result: Any,
    query: SubQuery,
) -> list[ModelT]:
    """Validate the entries of one sub-query result, skipping malformed ones."""
    if raw_result is None:
        return []
    if not isinstance(raw_result, list):
        logger.warning(
            'Unexpected %s result for device %s: %s',
            query.kind.value,
            query.device_id,
            type(raw_result).__name__,
        )
        return []

    entries: list[ModelT] = []
    for raw_entry in raw_result:
        try:
            entries.append(model.model_validate(raw_entry))
        except ValidationError as error:
            logger.warning(
                'Skipping malformed %s entry for device %s: %s',
                query.kind.value,
                query.device_id,
                error.errors()[0]['msg'] if error.errors() else error,
            )
    return entries


# =============================================================================
# Batched Source Base
# =============================================================================


class BatchedTelemetrySource(ABC):
    """
    Shared batching and matching logic for telemetry sources.

    Attributes:
        max_calls_per_batch: Upper bound on sub-queries per batch.
        odometer_from_date: Lower time bound for odometer sub-queries.
    """

    def __init__(
        self,
        max_calls_per_batch: int = MAX_CALLS_PER_MULTICALL,
        odometer_from_date: datetime = EARLIEST_SEARCH_DATE,
    ) -> None:
        if not 1 <= max_calls_per_batch <= MAX_CALLS_PER_MULTICALL:
            raise ValueError(
                f'max_calls_per_batch must be between 1 and '
                f'{MAX_CALLS_PER_MULTICALL}, got: {max_calls_per_batch}'
            )
        self.max_calls_per_batch: int = max_calls_per_batch
        self.odometer_from_date: datetime = odometer_from_date

    @abstractmethod
    def authenticate(self) -> None:
        """Establish a session."""

    @abstractmethod
    def list_devices(self) -> list[Device]:
        """Return every device visible to the session."""

    @abstractmethod
    def _execute_batch(self, queries: list[SubQuery]) -> list[Any]:
        """
        Execute one batch and return one raw result per query, in order.

        Each raw result is a list of wire-format entity dictionaries.
        """

    def build_queries(self, devices: Sequence[Device]) -> list[SubQuery]:
        """Two sub-queries per device: status, then odometer."""
        queries: list[SubQuery] = []
        for device in devices:
            queries.append(SubQuery.status(device.device_id))
            queries.append(SubQuery.odometer(device.device_id, self.odometer_from_date))
        return queries

    def fetch_snapshots(
        self,
        devices: Sequence[Device],
        cancellation: CancellationToken | None = None,
    ) -> SnapshotBatch:
        """
        Fetch the latest status and odometer for every device.

        Batches are sent sequentially. Cancellation is checked before each
        batch; a batch that fails raises and ends the fetch.

        Args:
            devices: Devices to look up.
            cancellation: Optional token checked between batches.

        Returns:
            SnapshotBatch keyed by device id. Devices without results are
            simply absent.

        Raises:
            CycleCancelledError: If cancellation was requested.
            APIError: Whatever the batch execution raises.
        """
        queries: list[SubQuery] = self.build_queries(devices)
        wanted_ids: set[str] = {device.device_id for device in devices}

        status_candidates: dict[str, list[DeviceStatusInfo]] = {}
        odometer_candidates: dict[str, list[StatusData]] = {}
        batches_issued: int = 0
        total_batches: int = -(-len(queries) // self.max_calls_per_batch)

        for batch in chunk_queries(queries, self.max_calls_per_batch):
            if cancellation is not None:
                cancellation.raise_if_cancelled()

            batches_issued += 1
            logger.debug(
                'Sending batch %d/%d with %d sub-queries',
                batches_issued,
                total_batches,
                len(batch),
            )
            raw_results: list[Any] = self._execute_batch(batch)

            for query, raw_result in zip(batch, raw_results, strict=False):
                if query.kind is QueryKind.STATUS:
                    for status in _parse_entries(DeviceStatusInfo, raw_result, query):
                        if status.device_id in wanted_ids:
                            status_candidates.setdefault(status.device_id, []).append(
                                status
                            )
                else:
                    for reading in _parse_entries(StatusData, raw_result, query):
                        if reading.device_id in wanted_ids:
                            odometer_candidates.setdefault(
                                reading.device_id, []
                            ).append(reading)

        statuses: dict[str, DeviceStatusInfo] = {}
        for device_id, candidates in status_candidates.items():
            latest_status: DeviceStatusInfo | None = latest_by_timestamp(candidates)
            if latest_status is not None:
                statuses[device_id] = latest_status

        odometers: dict[str, StatusData] = {}
        for device_id, readings in odometer_candidates.items():
            latest_reading: StatusData | None = latest_by_timestamp(readings)
            if latest_reading is not None:
                odometers[device_id] = latest_reading

        logger.info(
            'Fetched snapshots for %d devices in %d batch(es): %d statuses, %d odometers',
            len(devices),
            batches_issued,
            len(statuses),
            len(odometers),
        )

        return SnapshotBatch(
            statuses=statuses,
            odometers=odometers,
            batches_issued=batches_issued,
        )


# =============================================================================
# Live Source
# =============================================================================


class GeotabTelemetrySource(BatchedTelemetrySource):
    """
    Telemetry source backed by the live MyGeotab API.

    One ExecuteMultiCall request is sent per batch.
    """

    def __init__(self, client: GeotabClient, sync_config: SyncConfig) -> None:
        super().__init__(
            max_calls_per_batch=sync_config.max_calls_per_batch,
            odometer_from_date=sync_config.odometer_from_date,
        )
        self._client: GeotabClient = client

    def authenticate(self) -> None:
        self._client.authenticate()

    def list_devices(self) -> list[Device]:
        """
        Return every device in the database.

        Entries that fail validation are logged and skipped.
        """
        raw_devices: list[Any] = self._client.get('Device')
        devices: list[Device] = []
        for raw_device in raw_devices:
            try:
                devices.append(Device.model_validate(raw_device))
            except ValidationError as error:
                logger.warning('Skipping malformed device entry: %s', error)
        return devices

    def _execute_batch(self, queries: list[SubQuery]) -> list[Any]:
        return self._client.multi_call([query.to_api_call() for query in queries])
