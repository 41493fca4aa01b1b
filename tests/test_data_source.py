"""
Tests for fleet_backup_sync.data_source and memory_source.

Covers query building, batching into groups of at most 100 sub-queries,
matching results to devices, newest-entry selection, and cancellation.
"""
# pyright: reportPrivateUsage=false

from datetime import UTC, datetime, timedelta, timezone
from typing import Any
from unittest.mock import Mock

import pytest

from fleet_backup_sync.cancellation import CancellationToken, CycleCancelledError
from fleet_backup_sync.client import GeotabClient, TransientAPIError
from fleet_backup_sync.config import SyncConfig
from fleet_backup_sync.data_source import (
    GeotabTelemetrySource,
    SnapshotBatch,
    TelemetrySource,
    chunk_queries,
)
from fleet_backup_sync.memory_source import InMemoryTelemetrySource
from fleet_backup_sync.models import (
    ODOMETER_DIAGNOSTIC_ID,
    Device,
    QueryKind,
    SubQuery,
    format_api_datetime,
)


class TestChunkQueries:
    """Test chunk_queries()."""

    def test_chunks_respect_size(self) -> None:
        """Should split 120 queries into 100 and 20."""
        queries: list[SubQuery] = [SubQuery.status(f'b{index}') for index in range(120)]

        chunks: list[list[SubQuery]] = list(chunk_queries(queries, 100))

        assert [len(chunk) for chunk in chunks] == [100, 20]
        assert chunks[1][0].device_id == 'b100'

    def test_empty_input_yields_nothing(self) -> None:
        """Should yield no chunks for no queries."""
        assert list(chunk_queries([], 100)) == []

    def test_non_positive_size_rejected(self) -> None:
        """Should reject chunk sizes below one."""
        with pytest.raises(ValueError, match='positive'):
            list(chunk_queries([SubQuery.status('b1')], 0))


class TestSubQuery:
    """Test SubQuery rendering."""

    def test_status_call(self) -> None:
        """Should render a DeviceStatusInfo Get scoped to the device."""
        call: dict[str, Any] = SubQuery.status('b1').to_api_call()

        assert call['method'] == 'Get'
        assert call['params']['typeName'] == 'DeviceStatusInfo'
        assert call['params']['search'] == {'deviceSearch': {'id': 'b1'}}

    def test_odometer_call(self) -> None:
        """Should render a StatusData Get with the odometer diagnostic and fromDate."""
        call: dict[str, Any] = SubQuery.odometer(
            'b1', datetime(1, 1, 1, tzinfo=UTC)
        ).to_api_call()

        assert call['params']['typeName'] == 'StatusData'
        assert call['params']['search'] == {
            'deviceSearch': {'id': 'b1'},
            'diagnosticSearch': {'id': ODOMETER_DIAGNOSTIC_ID},
            'fromDate': '0001-01-01T00:00:00.000Z',
        }

    def test_datetime_before_year_one_in_utc_rejected(self) -> None:
        """Should raise ValueError when the UTC instant is not representable."""
        with pytest.raises(ValueError, match='out of range'):
            format_api_datetime(datetime(1, 1, 1, tzinfo=timezone(timedelta(hours=5))))


class TestBatchedFetch:
    """Test fetch_snapshots() through the in-memory source."""

    def test_in_memory_source_satisfies_protocol(
        self,
        memory_source: InMemoryTelemetrySource,
    ) -> None:
        """Should be usable wherever a TelemetrySource is expected."""
        assert isinstance(memory_source, TelemetrySource)

    def test_build_queries_pairs_status_and_odometer(
        self,
        memory_source: InMemoryTelemetrySource,
    ) -> None:
        """Should emit a status then an odometer query for each device."""
        devices: list[Device] = [Device(id='b1'), Device(id='b2')]

        queries: list[SubQuery] = memory_source.build_queries(devices)

        assert [(query.kind, query.device_id) for query in queries] == [
            (QueryKind.STATUS, 'b1'),
            (QueryKind.ODOMETER, 'b1'),
            (QueryKind.STATUS, 'b2'),
            (QueryKind.ODOMETER, 'b2'),
        ]

    def test_sixty_devices_take_two_batches(
        self,
        memory_source: InMemoryTelemetrySource,
        t1: datetime,
    ) -> None:
        """Should send 120 sub-queries as batches of 100 and 20."""
        for index in range(60):
            memory_source.add_device(f'b{index}')
            memory_source.set_status(f'b{index}', t1, 1.0, 2.0)

        snapshots: SnapshotBatch = memory_source.fetch_snapshots(
            memory_source.list_devices()
        )

        assert memory_source.batch_sizes == [100, 20]
        assert snapshots.batches_issued == 2  # noqa: PLR2004
        assert len(snapshots.statuses) == 60  # noqa: PLR2004

    def test_batch_size_is_configurable(self, t1: datetime) -> None:
        """Should honour a smaller max_calls_per_batch."""
        source = InMemoryTelemetrySource(max_calls_per_batch=4)
        for index in range(5):
            source.add_device(f'b{index}')
            source.set_status(f'b{index}', t1)

        source.fetch_snapshots(source.list_devices())

        assert source.batch_sizes == [4, 4, 2]

    def test_oversized_batch_rejected(self) -> None:
        """Should refuse batches above the API limit."""
        with pytest.raises(ValueError, match='max_calls_per_batch'):
            InMemoryTelemetrySource(max_calls_per_batch=101)

    def test_empty_device_list_sends_nothing(
        self,
        memory_source: InMemoryTelemetrySource,
    ) -> None:
        """Should not execute any batch for no devices."""
        snapshots: SnapshotBatch = memory_source.fetch_snapshots([])

        assert memory_source.batch_sizes == []
        assert snapshots.batches_issued == 0

    def test_statuses_and_odometers_matched_by_device(
        self,
        memory_source: InMemoryTelemetrySource,
        t1: datetime,
    ) -> None:
        """Should key snapshots by the device id embedded in each result."""
        memory_source.add_device('b1', vin='VIN1')
        memory_source.add_device('b2', vin='VIN2')
        memory_source.set_status('b1', t1, 43.0, -79.0)
        memory_source.set_status('b2', t1, 44.0, -80.0)
        memory_source.set_odometer('b1', 12345.0, t1)

        snapshots: SnapshotBatch = memory_source.fetch_snapshots(
            memory_source.list_devices()
        )

        assert snapshots.statuses['b1'].latitude == 43.0  # noqa: PLR2004
        assert snapshots.statuses['b2'].latitude == 44.0  # noqa: PLR2004
        assert snapshots.odometers['b1'].value == 12345.0  # noqa: PLR2004
        assert 'b2' not in snapshots.odometers

    def test_newest_entry_wins_regardless_of_order(
        self,
        memory_source: InMemoryTelemetrySource,
        t1: datetime,
    ) -> None:
        """Should pick the newest status and odometer by timestamp."""
        memory_source.add_device('b1')
        memory_source.add_status('b1', t1 + timedelta(minutes=5), 2.0, 2.0)
        memory_source.add_status('b1', t1, 1.0, 1.0)
        memory_source.add_odometer('b1', 2000.0, t1 + timedelta(days=1))
        memory_source.add_odometer('b1', 1000.0, t1)

        snapshots: SnapshotBatch = memory_source.fetch_snapshots(
            memory_source.list_devices()
        )

        assert snapshots.statuses['b1'].timestamp == t1 + timedelta(minutes=5)
        assert snapshots.odometers['b1'].value == 2000.0  # noqa: PLR2004

    def test_odometer_readings_before_from_date_excluded(self, t1: datetime) -> None:
        """Should only return odometer readings at or after the lower bound."""
        source = InMemoryTelemetrySource(odometer_from_date=t1)
        source.add_device('b1')
        source.set_status('b1', t1)
        source.add_odometer('b1', 500.0, t1 - timedelta(days=1))

        snapshots: SnapshotBatch = source.fetch_snapshots(source.list_devices())

        assert 'b1' not in snapshots.odometers

    def test_cancellation_checked_before_each_batch(
        self,
        memory_source: InMemoryTelemetrySource,
        t1: datetime,
    ) -> None:
        """Should stop before sending a batch once cancelled."""
        memory_source.add_device('b1')
        memory_source.set_status('b1', t1)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(CycleCancelledError):
            memory_source.fetch_snapshots(memory_source.list_devices(), token)

        assert memory_source.batch_sizes == []

    def test_batch_failure_propagates(
        self,
        memory_source: InMemoryTelemetrySource,
        t1: datetime,
    ) -> None:
        """Should raise whatever the batch execution raises."""
        memory_source.add_device('b1')
        memory_source.set_status('b1', t1)
        memory_source.fail_next('execute_batch', TransientAPIError('db busy'))

        with pytest.raises(TransientAPIError):
            memory_source.fetch_snapshots(memory_source.list_devices())


class TestGeotabTelemetrySource:
    """Test the live source against a mocked GeotabClient."""

    def test_list_devices_skips_malformed_entries(self, sync_config: SyncConfig) -> None:
        """Should validate devices and drop entries without an id."""
        client = Mock(spec=GeotabClient)
        client.get.return_value = [
            {'id': 'b1', 'name': 'Truck 1', 'vehicleIdentificationNumber': 'VIN1'},
            {'name': 'no id'},
            {'id': 'b2', 'vehicleIdentificationNumber': ''},
        ]

        devices: list[Device] = GeotabTelemetrySource(client, sync_config).list_devices()

        client.get.assert_called_once_with('Device')
        assert [device.device_id for device in devices] == ['b1', 'b2']
        assert devices[0].vin == 'VIN1'
        assert devices[1].vin is None

    def test_fetch_snapshots_uses_multi_call(self, sync_config: SyncConfig) -> None:
        """Should send one ExecuteMultiCall per batch and parse the results."""
        client = Mock(spec=GeotabClient)
        client.multi_call.return_value = [
            [
                {
                    'device': {'id': 'b1'},
                    'dateTime': '2024-01-15T10:30:00.000Z',
                    'latitude': 43.0,
                    'longitude': -79.0,
                }
            ],
            [
                {
                    'device': {'id': 'b1'},
                    'data': 12345.0,
                    'dateTime': '2024-01-14T08:00:00.000Z',
                }
            ],
        ]

        source = GeotabTelemetrySource(client, sync_config)
        snapshots: SnapshotBatch = source.fetch_snapshots([Device(id='b1')])

        calls: list[dict[str, Any]] = client.multi_call.call_args.args[0]
        assert [call['params']['typeName'] for call in calls] == [
            'DeviceStatusInfo',
            'StatusData',
        ]
        assert snapshots.statuses['b1'].timestamp == datetime(
            2024, 1, 15, 10, 30, tzinfo=UTC
        )
        assert snapshots.odometers['b1'].value == 12345.0  # noqa: PLR2004

    def test_short_result_list_tolerated(self, sync_config: SyncConfig) -> None:
        """Should treat missing trailing results as no data."""
        client = Mock(spec=GeotabClient)
        client.multi_call.return_value = [
            [
                {
                    'device': {'id': 'b1'},
                    'dateTime': '2024-01-15T10:30:00.000Z',
                }
            ],
        ]

        snapshots: SnapshotBatch = GeotabTelemetrySource(
            client, sync_config
        ).fetch_snapshots([Device(id='b1')])

        assert 'b1' in snapshots.statuses
        assert snapshots.odometers == {}

    def test_results_for_unknown_devices_ignored(self, sync_config: SyncConfig) -> None:
        """Should drop entries whose device was not requested."""
        client = Mock(spec=GeotabClient)
        client.multi_call.return_value = [
            [{'device': {'id': 'zzz'}, 'dateTime': '2024-01-15T10:30:00.000Z'}],
            [],
        ]

        snapshots: SnapshotBatch = GeotabTelemetrySource(
            client, sync_config
        ).fetch_snapshots([Device(id='b1')])

        assert snapshots.statuses == {}
