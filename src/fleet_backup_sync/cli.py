# fleet_backup_sync/cli.py
"""
Command-line entry point.

    fleet-backup-sync <server> <database> <username> <password> [--config PATH] [--once]

The four positional arguments are merged over the optional YAML configuration
as the `api` section. SIGINT and SIGTERM cancel the run; the scheduler stops
at its next suspension point and the process exits with code 0.
"""

import argparse
import logging
import signal
from collections.abc import Sequence
from pathlib import Path
from types import FrameType
from typing import Any

from fleet_backup_sync.cancellation import CancellationToken
from fleet_backup_sync.client import GeotabClient
from fleet_backup_sync.common import AppendOnlyCsvWriter, setup_logger
from fleet_backup_sync.config import BackupConfig, load_config
from fleet_backup_sync.data_source import GeotabTelemetrySource
from fleet_backup_sync.scheduler import EXIT_FAILURE, CycleScheduler
from fleet_backup_sync.sync import SyncCycle

__all__: list[str] = ['build_argument_parser', 'install_signal_handlers', 'main']

logger: logging.Logger = logging.getLogger(__name__)


def build_argument_parser() -> argparse.ArgumentParser:
    """Build the parser for the four connection arguments and options."""
    parser = argparse.ArgumentParser(
        prog='fleet-backup-sync',
        description=(
            'Incremental per-vehicle CSV backup of MyGeotab status and odometer data.'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fleet-backup-sync my.geotab.com demo_db me@example.com secret
  fleet-backup-sync my.geotab.com demo_db me@example.com secret --once
  fleet-backup-sync my.geotab.com demo_db me@example.com secret --config backup.yaml

Signals:
  SIGINT/SIGTERM - Stop at the next suspension point
        """,
    )
    parser.add_argument('server', help='MyGeotab server host, e.g. my.geotab.com')
    parser.add_argument('database', help='MyGeotab database name')
    parser.add_argument('username', help='MyGeotab user name')
    parser.add_argument('password', help='MyGeotab password')
    parser.add_argument(
        '-c',
        '--config',
        type=Path,
        default=None,
        metavar='PATH',
        help='Optional YAML file with sync, storage and logging settings',
    )
    parser.add_argument(
        '-1',
        '--once',
        action='store_true',
        help='Run a single sync cycle and exit',
    )
    return parser


def install_signal_handlers(token: CancellationToken) -> None:
    """Route SIGINT and SIGTERM to the cancellation token."""
    signal_names: dict[int, str] = {signal.SIGINT: 'SIGINT', signal.SIGTERM: 'SIGTERM'}

    def _request_cancellation(signum: int, frame: FrameType | None) -> None:
        logger.info(
            'Cancellation requested (%s)...',
            signal_names.get(signum, f'signal {signum}'),
        )
        token.cancel()

    signal.signal(signal.SIGINT, _request_cancellation)
    signal.signal(signal.SIGTERM, _request_cancellation)


def _api_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        'api': {
            'server': args.server,
            'database': args.database,
            'username': args.username,
            'password': args.password,
        }
    }


def main(argv: Sequence[str] | None = None) -> int:
    """
    Run the backup agent.

    Args:
        argv: Argument list without the program name; sys.argv when None.

    Returns:
        Process exit code: 0 after cancellation or --once, 1 on fatal errors.
        Wrong arity exits through argparse with code 2.
    """
    args: argparse.Namespace = build_argument_parser().parse_args(argv)

    setup_logger()
    try:
        config: BackupConfig = load_config(args.config, overrides=_api_overrides(args))
    except (OSError, ValueError) as error:
        logger.critical('Could not load configuration: %s', error)
        return EXIT_FAILURE

    setup_logger(config=config.logging)

    token = CancellationToken()
    install_signal_handlers(token)

    with GeotabClient(config.api) as client:
        source = GeotabTelemetrySource(client, config.sync)
        writer = AppendOnlyCsvWriter(config.storage)
        cycle = SyncCycle(source, writer, unit_system=config.sync.unit_system)
        scheduler = CycleScheduler(source, cycle, config.sync, token)
        return scheduler.run(max_cycles=1 if args.once else None)
