"""
Data loading and validation utilities for interpolation results.

This module handles loading the target-level CSVs written by the pipelines
(interpolated counts and share shifts) and performing data validation checks.
"""

import logging
from pathlib import Path
from typing import List, Optional

import polars as pl

logger = logging.getLogger(__name__)


def load_and_validate_results(
    csv_path: Path,
    id_column: str = "GEOID",
    required_columns: Optional[List[str]] = None
) -> pl.DataFrame:
    """
    Load a target-level result CSV and validate data quality.

    Loads the CSV using Polars with the id column read as text (so leading
    zeros in identifiers such as tract GEOIDs survive), checks for required
    columns and duplicate ids, and drops rows without an id. Logs data
    quality metrics for transparency.

    Parameters
    ----------
    csv_path : Path
        Path to the CSV file written by a pipeline run.
    id_column : str
        Target identifier column.
    required_columns : List[str], optional
        Columns that must be present in addition to id_column.

    Returns
    -------
    pl.DataFrame
        Validated Polars DataFrame with one row per id.

    Raises
    ------
    FileNotFoundError
        If csv_path does not exist on the filesystem.
    ValueError
        If required columns are missing or ids are duplicated.

    Notes
    -----
    Missing values in non-id columns are kept: a missing shift means the id
    was absent from one of the compared runs, which is meaningful.
    """
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info(f"Loading results from {csv_path}")

    df = pl.read_csv(csv_path, schema_overrides={id_column: pl.Utf8})

    logger.info(f"Initial shape: {df.shape}")

    critical_cols = [id_column] + list(required_columns or [])
    missing_critical = [col for col in critical_cols if col not in df.columns]
    if missing_critical:
        raise ValueError(f"Missing critical columns: {missing_critical}")

    # Drop rows without an identifier
    initial_count = df.shape[0]
    df = df.filter(pl.col(id_column).is_not_null())
    dropped = initial_count - df.shape[0]
    if dropped > 0:
        logger.warning(f"Dropped {dropped} rows without '{id_column}'")

    if df[id_column].is_duplicated().any():
        raise ValueError(f"Duplicate values in '{id_column}' in {csv_path.name}")

    logger.info(f"Final shape after validation: {df.shape}")

    return df


def load_shift_results(
    csv_path: Path,
    key_attribute: str,
    id_column: str = "GEOID"
) -> pl.DataFrame:
    """
    Load a shift CSV written by build_shift_dataset.

    Parameters
    ----------
    csv_path : Path
        Path to the shift CSV.
    key_attribute : str
        Attribute that was compared (e.g. "dem_share").
    id_column : str
        Target identifier column.

    Returns
    -------
    pl.DataFrame
        Columns id_column, <key>_a, <key>_b and <key>_shift.
    """
    required = [f"{key_attribute}_a", f"{key_attribute}_b", f"{key_attribute}_shift"]
    return load_and_validate_results(csv_path, id_column=id_column, required_columns=required)
