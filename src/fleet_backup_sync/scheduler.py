# fleet_backup_sync/scheduler.py
"""
Fixed-period scheduler for sync cycles.

The scheduler authenticates once, then runs one SyncCycle after another with
a fixed sleep in between until it is cancelled or hits a fatal error. All
retry and backoff policy for the agent lives here.

State Machine:
--------------
    AUTHENTICATING --ok--> RUNNING
    AUTHENTICATING --failure / cancel--> STOPPED
    RUNNING --success--> sleep(poll interval) --> RUNNING
    RUNNING --RateLimitError--> BACKOFF --sleep(rate-limit backoff)--> RUNNING
    RUNNING --TransientAPIError--> BACKOFF --sleep(transient backoff)--> RUNNING
    RUNNING --InvalidApiOperationError / AuthenticationError / other--> STOPPED
    any --cancel (observed at a suspension point)--> STOPPED

Retry Behavior:
---------------
A failed cycle is retried through a tenacity Retrying controller with a
custom wait strategy that picks the backoff from the exception class. A
retried cycle starts right after its backoff; it does not also wait for the
regular poll interval. Every sleep is a cancellable wait on the
CancellationToken.
"""

import logging
from enum import Enum
from typing import Final

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_never,
)

from fleet_backup_sync.cancellation import CancellationToken, CycleCancelledError
from fleet_backup_sync.client import (
    AuthenticationError,
    InvalidApiOperationError,
    RateLimitError,
    TransientAPIError,
)
from fleet_backup_sync.config import SyncConfig
from fleet_backup_sync.data_source import TelemetrySource
from fleet_backup_sync.sync import CycleResult, SyncCycle

__all__: list[str] = [
    'EXIT_FAILURE',
    'EXIT_SUCCESS',
    'CycleScheduler',
    'SchedulerState',
]

logger: logging.Logger = logging.getLogger(__name__)

EXIT_SUCCESS: Final[int] = 0
EXIT_FAILURE: Final[int] = 1


class SchedulerState(str, Enum):
    """Lifecycle states of the scheduler."""

    AUTHENTICATING = 'authenticating'
    RUNNING = 'running'
    BACKOFF = 'backoff'
    STOPPED = 'stopped'


class CycleScheduler:
    """
    Runs sync cycles on a fixed period until cancelled or a fatal error.

    Attributes:
        state: Current SchedulerState (read-only).
        cycles_completed: Successful cycles so far (read-only).
        last_result: CycleResult of the most recent successful cycle.

    Example:
        >>> scheduler = CycleScheduler(source, SyncCycle(source, writer), config.sync)
        >>> exit_code = scheduler.run()
    """

    def __init__(
        self,
        source: TelemetrySource,
        cycle: SyncCycle,
        sync_config: SyncConfig,
        cancellation: CancellationToken | None = None,
    ) -> None:
        self._source: TelemetrySource = source
        self._cycle: SyncCycle = cycle
        self._sync_config: SyncConfig = sync_config
        self._cancellation: CancellationToken = (
            cancellation if cancellation is not None else CancellationToken()
        )
        self._state: SchedulerState = SchedulerState.STOPPED
        self._cycles_completed: int = 0
        self.last_result: CycleResult | None = None

    @property
    def state(self) -> SchedulerState:
        """Current lifecycle state."""
        return self._state

    @property
    def cycles_completed(self) -> int:
        """Number of cycles that finished successfully."""
        return self._cycles_completed

    @property
    def cancellation(self) -> CancellationToken:
        """Token that stops the scheduler when cancelled."""
        return self._cancellation

    def _set_state(self, new_state: SchedulerState) -> None:
        if new_state is not self._state:
            logger.debug('Scheduler state: %s -> %s', self._state.value, new_state.value)
        self._state = new_state

    def _sleep(self, seconds: float) -> None:
        """Cancellable sleep; raises CycleCancelledError when cancelled."""
        self._cancellation.sleep(seconds)

    # -------------------------------------------------------------------------
    # Main Loop
    # -------------------------------------------------------------------------

    def run(self, max_cycles: int | None = None) -> int:
        """
        Authenticate, then run cycles until stopped.

        Args:
            max_cycles: Stop cleanly after this many successful cycles.
                None runs until cancellation or a fatal error.

        Returns:
            EXIT_SUCCESS after cancellation or reaching max_cycles,
            EXIT_FAILURE after a fatal error.
        """
        auth_exit_code: int | None = self._authenticate()
        if auth_exit_code is not None:
            return auth_exit_code

        try:
            while True:
                self._cancellation.raise_if_cancelled()
                self.last_result = self._run_cycle_with_retry()
                self._cycles_completed += 1

                if max_cycles is not None and self._cycles_completed >= max_cycles:
                    logger.info(
                        'Completed %d cycle(s), stopping as requested',
                        self._cycles_completed,
                    )
                    self._set_state(SchedulerState.STOPPED)
                    return EXIT_SUCCESS

                logger.info(
                    'Waiting %.0f seconds for the next cycle...',
                    self._sync_config.poll_interval_seconds,
                )
                self._sleep(self._sync_config.poll_interval_seconds)

        except CycleCancelledError:
            logger.info('Cancellation observed, stopping sync loop')
            self._set_state(SchedulerState.STOPPED)
            return EXIT_SUCCESS
        except AuthenticationError as error:
            logger.critical('Session could not be restored, stopping: %s', error)
            self._set_state(SchedulerState.STOPPED)
            return EXIT_FAILURE
        except InvalidApiOperationError as error:
            logger.critical('Invalid API operation, stopping: %s', error)
            self._set_state(SchedulerState.STOPPED)
            return EXIT_FAILURE
        except Exception:
            logger.exception('Unexpected error, stopping')
            self._set_state(SchedulerState.STOPPED)
            return EXIT_FAILURE

    def _authenticate(self) -> int | None:
        """
        Run the AUTHENTICATING state.

        Returns:
            None on success, otherwise the exit code to stop with.
        """
        self._set_state(SchedulerState.AUTHENTICATING)
        logger.info('Starting authentication with Geotab API...')

        try:
            self._cancellation.raise_if_cancelled()
            self._source.authenticate()
        except CycleCancelledError:
            logger.info('Authentication canceled by the user')
            self._set_state(SchedulerState.STOPPED)
            return EXIT_SUCCESS
        except Exception as error:
            logger.critical('Could not authenticate. End of program: %s', error)
            self._set_state(SchedulerState.STOPPED)
            return EXIT_FAILURE

        self._set_state(SchedulerState.RUNNING)
        return None

    # -------------------------------------------------------------------------
    # Retry Policy
    # -------------------------------------------------------------------------

    def _run_cycle_with_retry(self) -> CycleResult:
        """Run one cycle, retrying transient failures after a fixed backoff."""
        retrying = Retrying(
            retry=retry_if_exception_type(TransientAPIError),
            wait=self._wait_for_failure_class,
            stop=stop_never,
            sleep=self._sleep,
            before_sleep=self._log_backoff,
            reraise=True,
        )
        return retrying(self._run_cycle)

    def _run_cycle(self) -> CycleResult:
        self._set_state(SchedulerState.RUNNING)
        return self._cycle.run_once(self._cancellation)

    def _wait_for_failure_class(self, retry_state: RetryCallState) -> float:
        """
        Wait strategy: rate limits back off longer than other transient errors.

        Args:
            retry_state: Tenacity retry state containing exception info.

        Returns:
            Number of seconds to wait before the next attempt.
        """
        exception: BaseException | None = (
            retry_state.outcome.exception() if retry_state.outcome else None
        )
        if isinstance(exception, RateLimitError):
            return self._sync_config.rate_limit_backoff_seconds
        return self._sync_config.transient_backoff_seconds

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        """Log the failure and enter BACKOFF before tenacity sleeps."""
        self._set_state(SchedulerState.BACKOFF)

        exception: BaseException | None = (
            retry_state.outcome.exception() if retry_state.outcome else None
        )
        wait_seconds: float = (
            retry_state.next_action.sleep if retry_state.next_action else 0.0
        )

        if isinstance(exception, RateLimitError):
            logger.error(
                'User has exceeded the query limit, retrying after %.0f seconds: %s',
                wait_seconds,
                exception,
            )
        else:
            logger.error(
                'Transient API error (attempt %d), retrying after %.0f seconds: %s',
                retry_state.attempt_number,
                wait_seconds,
                exception,
            )
