"""Share computation and shift comparison for interpolated results.

Interpolated counts are turned into comparable shares (e.g. Democratic share
of all votes) and two result sets on the same target geography are compared
by differencing a share per target id.
"""
from __future__ import annotations

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def compute_shares(
    estimates: pd.DataFrame,
    shares: dict[str, str],
    total_column: str
) -> pd.DataFrame:
    """Add share columns (numerator / total) to an interpolated result set.

    Args:
        estimates: Interpolated counts, one row per target id (not modified in-place)
        shares: Mapping of output share column name to numerator column name
        total_column: Column holding the denominator count

    Returns:
        Copy of estimates with one added column per share. Shares are NaN where
        the total is zero or missing.

    Raises:
        ValueError: If numerator or total columns are missing
    """
    required = [total_column, *shares.values()]
    missing = [col for col in required if col not in estimates.columns]
    if missing:
        raise ValueError(f"Missing columns for share computation: {missing}")

    result = estimates.copy()
    total = result[total_column].replace(0, np.nan)
    for share_column, numerator in shares.items():
        result[share_column] = result[numerator] / total

    zero_totals = int(total.isna().sum())
    if zero_totals > 0:
        logger.warning(f"{zero_totals} rows have zero or missing '{total_column}'; shares set to NaN")

    return result


def attribute_shift(
    estimate_a: pd.DataFrame,
    estimate_b: pd.DataFrame,
    key_attribute: str,
    id_column: str = "GEOID",
    shift_column: str | None = None
) -> pd.DataFrame:
    """Difference a comparable attribute between two result sets (a minus b).

    The two sets are fully outer-joined on the target id. Ids present in only
    one set keep the value they have and get a missing (NaN) shift, never zero;
    the caller decides how to treat them.

    Args:
        estimate_a: Result set the shift is measured to (e.g. later election)
        estimate_b: Result set the shift is measured from (e.g. earlier election)
        key_attribute: Column compared in both sets (e.g. "dem_share")
        id_column: Target identifier column shared by both sets
        shift_column: Output column name (default "<key_attribute>_shift")

    Returns:
        DataFrame with columns [id_column, <key>_a, <key>_b, shift_column],
        one row per id in either set, sorted by id

    Raises:
        ValueError: If a column is missing or ids are duplicated within a set
    """
    shift_column = shift_column or f"{key_attribute}_shift"
    for label, frame in (("estimate_a", estimate_a), ("estimate_b", estimate_b)):
        missing = [col for col in (id_column, key_attribute) if col not in frame.columns]
        if missing:
            raise ValueError(f"{label} is missing columns: {missing}")
        if frame[id_column].duplicated().any():
            raise ValueError(f"{label} has duplicate values in '{id_column}'")

    col_a, col_b = f"{key_attribute}_a", f"{key_attribute}_b"
    merged = (
        estimate_a[[id_column, key_attribute]].rename(columns={key_attribute: col_a})
        .merge(
            estimate_b[[id_column, key_attribute]].rename(columns={key_attribute: col_b}),
            on=id_column,
            how="outer"
        )
        .sort_values(id_column)
        .reset_index(drop=True)
    )
    merged[shift_column] = merged[col_a] - merged[col_b]

    unmatched = int(merged[shift_column].isna().sum())
    if unmatched > 0:
        logger.info(f"{unmatched} ids have no comparable value in both sets; shift left missing")

    return merged
