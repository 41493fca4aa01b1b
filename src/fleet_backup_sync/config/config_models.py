# fleet_backup_sync/config/config_models.py
"""
Configuration management for the fleet backup agent.

This module provides the Pydantic models that control how the agent talks to
the MyGeotab API, how often it polls, where backups are written, and how it
logs.

Design Decisions:
-----------------
- All models use `extra='forbid'` to catch typos and invalid fields in YAML
  configuration files early, preventing silent misconfiguration.

- No logging occurs within this module because the logging configuration itself
  is defined here. Logging must be configured by the caller after loading config.

- SSL verification supports three modes to handle corporate proxy environments:
  1. `True` - Standard verification using system CA bundle
  2. `False` - Disabled verification (use with caution, required for some proxies)
  3. String path - Custom CA bundle (e.g., exported Zscaler root certificate)

- SecretStr is used for the account password to prevent accidental exposure in
  logs, repr(), or error messages. The actual value must be accessed via
  `.get_secret_value()`.

- The odometer unit system is an explicit setting rather than something
  inferred from the host locale, so identical data produces identical files
  on every deployment.

Usage:
------
    from fleet_backup_sync.config.config_models import BackupConfig

    config = BackupConfig.model_validate(
        {'api': {'database': 'demo', 'username': 'me', 'password': 'secret'}}
    )
"""

from datetime import UTC, datetime
from pathlib import Path
from typing import Literal, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

# =============================================================================
# Public API
# =============================================================================

__all__: list[str] = [
    'ApiConfig',
    'BackupConfig',
    'LogLevelName',
    'LoggingConfig',
    'StorageConfig',
    'SyncConfig',
    'UnitSystem',
]

# =============================================================================
# Type Aliases
# =============================================================================

# Valid logging level names recognized by Python's logging module.
# Using Literal rather than an Enum because these map directly to stdlib names.
LogLevelName = Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

# Numeric equivalents of log level names for validation purposes.
LOG_LEVEL_VALUES: frozenset[int] = frozenset({10, 20, 30, 40, 50})

# Mapping from level name to numeric value, avoiding import of logging module
# in the model layer to maintain separation of concerns.
LOG_LEVEL_NAME_TO_INT: dict[LogLevelName, int] = {
    'DEBUG': 10,
    'INFO': 20,
    'WARNING': 30,
    'ERROR': 40,
    'CRITICAL': 50,
}

# Distance units used for the odometer column.
UnitSystem = Literal['metric', 'imperial']

# Hard ceiling imposed by the MyGeotab ExecuteMultiCall endpoint.
MAX_CALLS_PER_MULTICALL: int = 100

# Lower bound for the odometer search: the earliest representable date.
EARLIEST_SEARCH_DATE: datetime = datetime(1, 1, 1, tzinfo=UTC)


# =============================================================================
# API Configuration
# =============================================================================


class ApiConfig(BaseModel):
    """Connection settings for the MyGeotab JSON-RPC API.

    The server, database, username and password normally come from the
    command line; the remaining fields tune the HTTP transport.

    SSL/TLS Handling:
        Corporate proxy environments (e.g., Zscaler) often perform TLS
        interception, which breaks standard certificate verification.
        The verify_ssl field supports three modes:
          - True: Standard verification (default, use in production)
          - False: Disabled verification (insecure, use only when necessary)
          - Path string: Custom CA bundle path (preferred for proxy environments)
        Setting use_truststore=True takes precedence and builds an SSLContext
        from the operating system's certificate store.

    Attributes:
        server: API host name (e.g., 'my.geotab.com'). A scheme or trailing
            slash is stripped during validation.
        database: MyGeotab database (account) name.
        username: MyGeotab user name.
        password: Account password, masked in logs and repr.
        request_timeout: Connection and read timeout as [connect, read] seconds.
        verify_ssl: SSL certificate verification mode.
        use_truststore: Build the SSLContext from the OS trust store.
    """

    model_config = ConfigDict(extra='forbid')

    server: str = Field(
        default='my.geotab.com',
        description='API host name without scheme',
    )
    database: str = Field(
        min_length=1,
        description='MyGeotab database (account) name',
    )
    username: str = Field(
        min_length=1,
        description='MyGeotab user name',
    )
    password: SecretStr = Field(
        description='Account password (masked in logs and repr)',
    )
    request_timeout: tuple[int, int] = Field(
        default=(10, 60),
        description='[connect_timeout, read_timeout] in seconds; both must be positive',
    )
    verify_ssl: bool | str = Field(
        default=True,
        description='False to disable SSL, True for system CA, or path to CA bundle',
    )
    use_truststore: bool = Field(
        default=False,
        description='Use truststore library for OS system CA certificates',
    )

    @field_validator('server')
    @classmethod
    def normalize_server(cls, server: str) -> str:
        """Strip an accidental scheme and trailing slash from the host name.

        Args:
            server: Host name as supplied by the user.

        Returns:
            Bare host name, e.g. 'my.geotab.com'.

        Raises:
            ValueError: If the host name is empty.
        """
        normalized: str = server.strip()
        for scheme in ('https://', 'http://'):
            if normalized.lower().startswith(scheme):
                normalized = normalized[len(scheme) :]
        normalized = normalized.rstrip('/')

        if not normalized:
            raise ValueError('server cannot be empty')

        return normalized

    @field_validator('password')
    @classmethod
    def validate_password_not_empty(cls, password: SecretStr) -> SecretStr:
        """Ensure the password is not empty.

        Raises:
            ValueError: If the password is empty.
        """
        if not password.get_secret_value():
            raise ValueError('password cannot be empty')
        return password

    @field_validator('request_timeout')
    @classmethod
    def validate_timeout_values_positive(
        cls, timeout: tuple[int, int]
    ) -> tuple[int, int]:
        """Ensure both timeout values are positive integers.

        Args:
            timeout: Tuple of [connect_timeout, read_timeout] in seconds.

        Returns:
            The validated timeout tuple.

        Raises:
            ValueError: If either timeout value is non-positive.
        """
        connect_timeout, read_timeout = timeout

        if connect_timeout <= 0:
            raise ValueError(
                f'connect_timeout must be positive, got: {connect_timeout}'
            )
        if read_timeout <= 0:
            raise ValueError(f'read_timeout must be positive, got: {read_timeout}')

        return timeout

    @field_validator('verify_ssl')
    @classmethod
    def validate_ssl_configuration(cls, verify_ssl: bool | str) -> bool | str:
        """Validate that a custom CA bundle path points at an existing file.

        Raises:
            ValueError: If string path does not exist or is not a file.
        """
        if isinstance(verify_ssl, str):
            cert_path = Path(verify_ssl)

            if not cert_path.exists():
                raise ValueError(f'SSL certificate bundle file not found: {verify_ssl}')
            if not cert_path.is_file():
                raise ValueError(
                    f'SSL certificate path must be a file, not directory: {verify_ssl}'
                )

        return verify_ssl

    @property
    def endpoint_url(self) -> str:
        """JSON-RPC endpoint for the configured server."""
        return f'https://{self.server}/apiv1'


# =============================================================================
# Sync Configuration
# =============================================================================


class SyncConfig(BaseModel):
    """Timing and query settings for the incremental sync loop.

    Backoff Policy:
        Retry policy lives entirely in the scheduler. A successful cycle is
        followed by poll_interval_seconds of sleep. A transient failure is
        retried after transient_backoff_seconds, a rate-limit failure after
        rate_limit_backoff_seconds. The defaults (60 / 10 / 60) keep the agent
        under MyGeotab's per-minute query limits.

    Attributes:
        poll_interval_seconds: Sleep between successful cycles.
        transient_backoff_seconds: Sleep before retrying after a transient error.
        rate_limit_backoff_seconds: Sleep before retrying after a rate limit.
        max_calls_per_batch: Sub-queries per ExecuteMultiCall request (1-100).
        odometer_from_date: Lower time bound for the odometer query.
        unit_system: 'metric' writes kilometres, 'imperial' writes miles.
    """

    model_config = ConfigDict(extra='forbid')

    poll_interval_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description='Seconds to wait between successful cycles',
    )
    transient_backoff_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description='Seconds to wait before retrying after a transient error',
    )
    rate_limit_backoff_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description='Seconds to wait before retrying after a rate-limit error',
    )
    max_calls_per_batch: int = Field(
        default=MAX_CALLS_PER_MULTICALL,
        ge=1,
        le=MAX_CALLS_PER_MULTICALL,
        description='Maximum sub-queries per batched request (1-100)',
    )
    odometer_from_date: datetime = Field(
        default=EARLIEST_SEARCH_DATE,
        description='Lower time bound for the odometer status data search',
    )
    unit_system: UnitSystem = Field(
        default='metric',
        description="Odometer units: 'metric' (km) or 'imperial' (miles)",
    )

    @field_validator('odometer_from_date')
    @classmethod
    def ensure_utc(cls, from_date: datetime) -> datetime:
        """Interpret naive datetimes as UTC."""
        if from_date.tzinfo is None:
            return from_date.replace(tzinfo=UTC)
        try:
            return from_date.astimezone(UTC)
        except OverflowError as error:
            raise ValueError(
                f'odometer_from_date is out of range in UTC: {from_date.isoformat()}'
            ) from error


# =============================================================================
# Storage Configuration
# =============================================================================


class StorageConfig(BaseModel):
    """Configuration for the per-device CSV backups.

    Attributes:
        backup_dir: Directory holding one '<device id>.csv' file per device.
            Created on first write if missing.
        write_workers: Upper bound on concurrent per-device file appends.
    """

    model_config = ConfigDict(extra='forbid')

    backup_dir: Path = Field(
        default=Path('VehicleBackups'),
        description='Directory for per-device CSV files',
    )
    write_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description='Maximum parallel file appends per cycle (1-64)',
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Configuration for application logging output.

    Supports dual-destination logging: console (always enabled) and optional
    file output. Console output is typically set to INFO for operational
    visibility, while file output captures DEBUG-level detail for debugging.

    Level Values:
        Levels can be specified as names ('DEBUG', 'INFO', etc.) or as
        their numeric equivalents (10, 20, etc.).

    Attributes:
        file_path: Path to log file. None disables file logging.
            Extension .log is appended automatically if missing.
        console_level: Minimum log level for console output.
        file_level: Minimum log level for file output. Defaults to DEBUG if
            file_path is provided.
    """

    model_config = ConfigDict(extra='forbid')

    file_path: Path | None = Field(
        default=None,
        description='Log file path (.log extension auto-added). None disables file logging.',
    )
    console_level: LogLevelName | int = Field(
        default='INFO',
        description="Console log level: 'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL', or int",
    )
    file_level: LogLevelName | int | None = Field(
        default=None,
        description='File log level. None disables file logging.',
    )

    @field_validator('file_path', mode='before')
    @classmethod
    def normalize_log_file_path(cls, path_value: str | Path | None) -> Path | None:
        """Normalize path and ensure .log extension."""
        if path_value is None:
            return None

        path_string: str = str(path_value)

        if not path_string.lower().endswith('.log'):
            path_string = f'{path_string}.log'

        return Path(path_string)

    @field_validator('console_level', 'file_level', mode='after')
    @classmethod
    def validate_numeric_log_level(
        cls, level_value: LogLevelName | int | None
    ) -> LogLevelName | int | None:
        """Validate numeric log levels are standard Python logging values.

        Raises:
            ValueError: If numeric level is not a standard logging value.
        """
        if level_value is None or isinstance(level_value, str):
            return level_value

        if level_value not in LOG_LEVEL_VALUES:
            raise ValueError(
                f'Numeric log level must be one of {sorted(LOG_LEVEL_VALUES)}, '
                f'got: {level_value}'
            )

        return level_value

    @model_validator(mode='after')
    def ensure_file_logging_configuration_consistency(self) -> Self:
        """Ensure file_path and file_level are consistently configured.

        Raises:
            ValueError: If file_level is set but file_path is missing.
        """
        has_file_path: bool = self.file_path is not None
        has_file_level: bool = self.file_level is not None

        if has_file_path and not has_file_level:
            self.file_level = 'DEBUG'

        if has_file_level and not has_file_path:
            raise ValueError(
                'file_level is specified but file_path is missing. '
                'Provide file_path to enable file logging, or remove file_level.'
            )

        return self

    def get_console_level_int(self) -> int:
        """Convert console_level to numeric value for logging module."""
        if isinstance(self.console_level, int):
            return self.console_level
        return LOG_LEVEL_NAME_TO_INT[self.console_level]

    def get_file_level_int(self) -> int | None:
        """Convert file_level to numeric value, or None if file logging is off."""
        if self.file_level is None:
            return None
        if isinstance(self.file_level, int):
            return self.file_level
        return LOG_LEVEL_NAME_TO_INT[self.file_level]


# =============================================================================
# Root Configuration
# =============================================================================


class BackupConfig(BaseModel):
    """Root configuration model for the fleet backup agent.

    Only the `api` section is required (and its credential fields are usually
    supplied from the command line). Every other section has working defaults.

    Attributes:
        api: MyGeotab connection settings.
        sync: Polling cadence, backoff and query settings.
        storage: CSV backup location and write parallelism.
        logging: Console and file logging settings.
    """

    model_config = ConfigDict(extra='forbid')

    api: ApiConfig = Field(
        description='MyGeotab connection settings',
    )
    sync: SyncConfig = Field(
        default_factory=SyncConfig,
        description='Polling cadence, backoff and query settings',
    )
    storage: StorageConfig = Field(
        default_factory=StorageConfig,
        description='CSV backup storage settings',
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description='Application logging configuration',
    )
