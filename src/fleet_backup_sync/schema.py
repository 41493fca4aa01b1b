# fleet_backup_sync/schema.py
"""
Schema definitions for the per-device CSV backups.

This module provides the canonical column list, the fixed header line and
DataFrame schema enforcement for backup rows. Both the writer (serializing new
rows) and the reader (loading a backup back for inspection) go through
enforce_backup_schema() so the on-disk format has a single definition.

Format Rules:
-------------
- Column order is fixed: Id, Timestamp, VIN, Latitude, Longitude, Odometer.
- Timestamps are written as UTC ISO-8601 with microseconds and a 'Z' suffix,
  which parses back to the same instant.
- Numbers are written by pandas, which never consults the process locale, so
  decimal separators are always '.'.
- Missing values are written as empty fields.
- Carriage returns and newlines inside Id and VIN are replaced by a space.
"""

import logging
from typing import Final

import numpy as np
import pandas as pd

logger: logging.Logger = logging.getLogger(__name__)

__all__: list[str] = [
    'BACKUP_COLUMNS',
    'CSV_HEADER',
    'CSV_TIMESTAMP_FORMAT',
    'enforce_backup_schema',
]

# =============================================================================
# Schema Constants
# =============================================================================

# Canonical column order for backup rows.
BACKUP_COLUMNS: Final[list[str]] = [
    'Id',  # MyGeotab device identifier
    'Timestamp',  # Status timestamp (UTC)
    'VIN',  # Vehicle Identification Number, may be empty
    'Latitude',  # Decimal degrees, WGS84
    'Longitude',  # Decimal degrees, WGS84
    'Odometer',  # Whole km or miles depending on the configured unit system
]

# Header line written once at the top of every backup file.
CSV_HEADER: Final[str] = ','.join(BACKUP_COLUMNS)

# strftime pattern for the Timestamp column.
CSV_TIMESTAMP_FORMAT: Final[str] = '%Y-%m-%dT%H:%M:%S.%fZ'

FLOAT_COLUMNS: Final[list[str]] = ['Latitude', 'Longitude']
STRING_COLUMNS: Final[list[str]] = ['Id', 'VIN']

# Line breaks inside string fields are folded to one space so a record is
# always one physical line.
LINE_BREAK_PATTERN: Final[str] = r'[\r\n]+'


# =============================================================================
# Schema Functions
# =============================================================================


def enforce_backup_schema(dataframe: pd.DataFrame) -> pd.DataFrame:
    """
    Enforce column order and types on a backup DataFrame.

    This function is idempotent: calling it multiple times on the same
    DataFrame produces the same result.

    Args:
        dataframe: DataFrame with the backup columns. May have loose types
            (timestamps as strings, numbers as objects).

    Returns:
        DataFrame with enforced types:
            - Timestamp: datetime64[ns, UTC]
            - Latitude/Longitude: float64 (missing as NaN)
            - Odometer: nullable Int64 (missing as <NA>)
            - Id/VIN: object (string), missing as NaN

    Raises:
        ValueError: If required columns are missing from the input DataFrame.
    """
    missing_columns: set[str] = set(BACKUP_COLUMNS) - set(dataframe.columns)
    if missing_columns:
        raise ValueError(
            f'DataFrame missing required columns: {sorted(missing_columns)}'
        )

    result: pd.DataFrame = dataframe.copy()

    # Blank and whitespace-only strings count as missing
    result = result.replace(to_replace=r'^\s*$', value=np.nan, regex=True)

    result['Timestamp'] = pd.to_datetime(result['Timestamp'], utc=True, errors='coerce')

    for column_name in FLOAT_COLUMNS:
        result[column_name] = pd.to_numeric(
            result[column_name], errors='coerce'
        ).astype(np.float64)

    result['Odometer'] = (
        pd.to_numeric(result['Odometer'], errors='coerce').round().astype('Int64')
    )

    for column_name in STRING_COLUMNS:
        result[column_name] = result[column_name].astype(object)
        valid_mask: pd.Series = result[column_name].notna()
        # Convert only non-null rows so NaN never becomes the string "nan"
        result.loc[valid_mask, column_name] = (
            result.loc[valid_mask, column_name]
            .astype(str)
            .str.replace(LINE_BREAK_PATTERN, ' ', regex=True)
        )

    missing_timestamps: int = int(result['Timestamp'].isna().sum())
    if missing_timestamps > 0:
        logger.warning('Found %d backup rows without a timestamp', missing_timestamps)

    return result[BACKUP_COLUMNS]
