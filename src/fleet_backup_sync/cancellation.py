# fleet_backup_sync/cancellation.py
"""
Cooperative cancellation for the sync loop.

A CancellationToken wraps a threading.Event. The signal handler calls
cancel(); the loop checks the token only at its suspension points (between
batched requests, before dispatching file writes, and while sleeping), so no
work is interrupted halfway through.
"""

import threading

__all__: list[str] = ['CancellationToken', 'CycleCancelledError']


class CycleCancelledError(Exception):
    """Raised at a suspension point once cancellation has been requested."""


class CancellationToken:
    """
    Thread-safe, one-way cancellation flag.

    Example:
        >>> token = CancellationToken()
        >>> token.sleep(60)  # returns early and raises once cancel() is called
    """

    def __init__(self) -> None:
        self._event: threading.Event = threading.Event()

    @property
    def is_cancelled(self) -> bool:
        """Whether cancel() has been called."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation. Safe to call from a signal handler."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """
        Raises:
            CycleCancelledError: If cancellation has been requested.
        """
        if self._event.is_set():
            raise CycleCancelledError('Cancellation requested')

    def sleep(self, seconds: float) -> None:
        """
        Wait for the given time unless cancelled first.

        Raises:
            CycleCancelledError: If cancellation is requested before or
                during the wait.
        """
        if self._event.wait(timeout=max(seconds, 0.0)):
            raise CycleCancelledError('Cancellation requested')
