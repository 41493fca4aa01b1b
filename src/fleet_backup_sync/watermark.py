# fleet_backup_sync/watermark.py
"""
In-memory per-device watermarks.

A watermark is the last status timestamp accepted for a device. A new status
is accepted only if it is strictly newer, which is what keeps the same
reading from being appended twice. Watermarks live only in process memory:
after a restart the first cycle writes the current snapshot of every device.
"""

import logging
import threading
from datetime import UTC, datetime

__all__: list[str] = ['WatermarkTracker']

logger: logging.Logger = logging.getLogger(__name__)


class WatermarkTracker:
    """
    Mapping of device id to last accepted UTC timestamp.

    Watermarks only move forward. All access goes through a single lock, so
    should_accept() may be called concurrently for different devices.
    """

    def __init__(self) -> None:
        self._watermarks: dict[str, datetime] = {}
        self._lock: threading.Lock = threading.Lock()

    def should_accept(self, device_id: str, candidate: datetime) -> bool:
        """
        Accept a status timestamp if it advances the device's watermark.

        The check and the update happen atomically.

        Args:
            device_id: Device the status belongs to.
            candidate: Status timestamp. Naive values are taken as UTC.

        Returns:
            True if there was no watermark or candidate is strictly newer
            (the watermark is moved to candidate), False otherwise.
        """
        candidate_utc: datetime = (
            candidate.replace(tzinfo=UTC)
            if candidate.tzinfo is None
            else candidate.astimezone(UTC)
        )

        with self._lock:
            current: datetime | None = self._watermarks.get(device_id)
            if current is not None and candidate_utc <= current:
                return False
            self._watermarks[device_id] = candidate_utc

        logger.debug(
            'Watermark for device %s advanced from %s to %s',
            device_id,
            current.isoformat() if current is not None else None,
            candidate_utc.isoformat(),
        )
        return True

    def get(self, device_id: str) -> datetime | None:
        """Current watermark for a device, or None."""
        with self._lock:
            return self._watermarks.get(device_id)

    def snapshot(self) -> dict[str, datetime]:
        """Copy of all watermarks."""
        with self._lock:
            return dict(self._watermarks)

    def __contains__(self, device_id: object) -> bool:
        with self._lock:
            return device_id in self._watermarks

    def __len__(self) -> int:
        with self._lock:
            return len(self._watermarks)
