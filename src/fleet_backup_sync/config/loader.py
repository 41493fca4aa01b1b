# fleet_backup_sync/config/loader.py
"""
Configuration Loading Logic.

This module handles the retrieval, parsing, and initial validation of the
agent configuration. It serves as the bridge between an optional YAML file on
disk, values supplied on the command line, and the strictly typed Pydantic
models defined in `config_models.py`.

Responsibilities:
    1.  File I/O: Safely locating and reading the configuration file.
    2.  Parsing: Converting YAML text into Python dictionaries.
    3.  Merging: Layering command-line overrides on top of file values.
    4.  Validation: Instantiating the `BackupConfig` model to enforce types.
"""

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from fleet_backup_sync.config.config_models import BackupConfig

logger: logging.Logger = logging.getLogger(__name__)


def _deep_merge(base: dict[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge overrides into a copy of base. Overrides win."""
    merged: dict[str, Any] = dict(base)
    for key, value in overrides.items():
        existing: Any = merged.get(key)
        if isinstance(existing, dict) and isinstance(value, Mapping):
            merged[key] = _deep_merge(existing, value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: Path | str | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> BackupConfig:
    """Load and validate agent configuration.

    Reads the YAML configuration file when one is given, merges the overrides
    on top of it (command-line credentials, typically), and validates the
    result with the Pydantic model hierarchy.

    Args:
        config_path: Path to a YAML configuration file. None means no file;
            only overrides and model defaults are used.
        overrides: Nested mapping merged over the file contents, e.g.
            {'api': {'server': 'my.geotab.com', 'database': 'demo'}}.

    Returns:
        Validated BackupConfig instance ready for use.

    Raises:
        FileNotFoundError: If config_path is given but does not exist.
        yaml.YAMLError: If the YAML file is malformed.
        ValueError: If the merged configuration fails Pydantic validation.

    Example:
        >>> config = load_config(
        ...     overrides={'api': {'database': 'demo', 'username': 'me', 'password': 'pw'}}
        ... )
        >>> config.sync.poll_interval_seconds
        60.0
    """
    raw_config_data: dict[str, Any] = {}

    if config_path is not None:
        config_path = Path(config_path)
        logger.info('Loading backup configuration from: %s', config_path)

        if not config_path.exists():
            error_message: str = f'Configuration file not found: {config_path}'
            logger.error(error_message)
            raise FileNotFoundError(error_message)

        try:
            with Path.open(config_path, encoding='utf-8') as config_file:
                parsed: Any = yaml.safe_load(config_file)
        except yaml.YAMLError as error:
            error_message = f'Failed to parse YAML configuration: {error}'
            logger.error(error_message)
            raise yaml.YAMLError(error_message) from error

        if parsed is not None and not isinstance(parsed, dict):
            error_message = (
                f'Configuration root must be a mapping, got {type(parsed).__name__}'
            )
            logger.error(error_message)
            raise ValueError(error_message)

        raw_config_data = parsed or {}
    else:
        logger.debug('No config path provided, using defaults and overrides only')

    if overrides:
        raw_config_data = _deep_merge(raw_config_data, overrides)

    try:
        validated_config = BackupConfig(**raw_config_data)
    except ValueError as error:
        error_message = f'Configuration validation failed: {error}'
        logger.error(error_message)
        raise ValueError(error_message) from error

    logger.debug('Configuration loaded and validated successfully')
    return validated_config
