"""
Reporting and output utilities for interpolation and shift results.

This module computes summary statistics of shift and count tables and writes
them as markdown tables and sections.
"""

import datetime
import logging
from pathlib import Path
from typing import Any, Dict, List

import polars as pl

logger = logging.getLogger(__name__)


def summarize_shift(
    df: pl.DataFrame,
    shift_column: str,
    id_column: str = "GEOID",
    top_n: int = 5
) -> Dict[str, Any]:
    """
    Compute descriptive statistics for a per-target shift column.

    Parameters
    ----------
    df : pl.DataFrame
        Shift table with one row per target id.
    shift_column : str
        Column holding the shift values.
    id_column : str
        Target identifier column.
    top_n : int
        Number of largest increases/decreases to report.

    Returns
    -------
    Dict[str, Any]
        Keys: n_ids, n_missing, mean, median, std, min, max, n_positive,
        n_negative, top_increase and top_decrease (lists of (id, shift) tuples).

    Raises
    ------
    ValueError
        If shift_column or id_column is missing.

    Notes
    -----
    Ids with a missing shift (present in only one compared run) are counted in
    n_missing and excluded from every statistic.
    """
    missing = [col for col in (id_column, shift_column) if col not in df.columns]
    if missing:
        raise ValueError(f"Missing columns: {missing}")

    # An all-empty column is read as text; cast so NaN checks work
    df = df.with_columns(pl.col(shift_column).cast(pl.Float64))
    valid = df.filter(
        pl.col(shift_column).is_not_null() & pl.col(shift_column).is_not_nan()
    )
    shifts = valid[shift_column]
    ordered = valid.select([id_column, shift_column])

    return {
        "n_ids": df.height,
        "n_missing": df.height - valid.height,
        "mean": shifts.mean(),
        "median": shifts.median(),
        "std": shifts.std(),
        "min": shifts.min(),
        "max": shifts.max(),
        "n_positive": int((shifts > 0).sum()),
        "n_negative": int((shifts < 0).sum()),
        "top_increase": ordered.sort(shift_column, descending=True).head(top_n).rows(),
        "top_decrease": ordered.sort(shift_column).head(top_n).rows(),
    }


def summarize_totals(
    df: pl.DataFrame,
    attributes: List[str]
) -> Dict[str, List]:
    """
    Sum count attributes over all targets, as a markdown-ready table.

    Comparing these totals with the source layer totals shows how much of
    each count was lost (or duplicated) by the interpolation.
    """
    present = [col for col in attributes if col in df.columns]
    sums = df.select([pl.col(col).sum() for col in present]).row(0) if present else ()
    return {
        "Attribute": present,
        "Total": [f"{value:,.1f}" for value in sums],
    }


def _fmt(value: Any) -> str:
    if value is None:
        return "n/a"
    return f"{value:+.4f}"


def shift_summary_table(summary: Dict[str, Any]) -> Dict[str, List]:
    """Convert summarize_shift output to a two-column markdown table dict."""
    stats = [
        ("Targets", str(summary["n_ids"])),
        ("Missing shift", str(summary["n_missing"])),
        ("Mean", _fmt(summary["mean"])),
        ("Median", _fmt(summary["median"])),
        ("Std. dev.", "n/a" if summary["std"] is None else f"{summary['std']:.4f}"),
        ("Min", _fmt(summary["min"])),
        ("Max", _fmt(summary["max"])),
        ("Increased", str(summary["n_positive"])),
        ("Decreased", str(summary["n_negative"])),
    ]
    return {
        "Statistic": [name for name, _ in stats],
        "Value": [value for _, value in stats],
    }


def save_markdown_table(
    data: Dict[str, List],
    path: Path,
    title: str
) -> None:
    """
    Append a formatted markdown table to an existing file.

    Converts dictionary data to GitHub-flavored markdown table format with
    aligned columns. Appends to existing file rather than overwriting.

    Parameters
    ----------
    data : Dict[str, List]
        Dictionary mapping column names (str) to column values (List).
        All lists must have the same length.
    path : Path
        Output markdown file path. File is created if it doesn't exist,
        or appended to if it exists.
    title : str
        Table section title (rendered as ### heading).

    Raises
    ------
    ValueError
        If data dictionary is empty or if column lists have inconsistent lengths.
    """
    # Validate data structure before generating table
    if not data:
        raise ValueError("Data dictionary cannot be empty")

    # Check all columns have same length to prevent malformed tables
    column_lengths = [len(values) for values in data.values()]
    if len(set(column_lengths)) > 1:
        raise ValueError(
            f"Column length mismatch: {dict(zip(data.keys(), column_lengths))}. "
            "All columns must have the same number of rows."
        )

    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'a', encoding='utf-8') as f:
        f.write(f"\n### {title}\n\n")

        # Header
        headers = list(data.keys())
        f.write("| " + " | ".join(headers) + " |\n")
        f.write("| " + " | ".join(["---"] * len(headers)) + " |\n")

        # Rows
        n_rows = len(data[headers[0]])
        for i in range(n_rows):
            row = [str(data[col][i]) for col in headers]
            f.write("| " + " | ".join(row) + " |\n")

        f.write("\n")

    logger.info(f"Saved table '{title}' to {path}")


def create_summary_header(
    path: Path,
    title: str,
    sample_size: int,
    unit: str = "target features"
) -> None:
    """
    Create the header section of a summary markdown file.

    Initializes a new markdown file with title, run date and sample size.
    Overwrites existing file if present.

    Parameters
    ----------
    path : Path
        Output file path for markdown summary.
    title : str
        Report title (rendered as # heading).
    sample_size : int
        Number of rows summarized.
    unit : str
        Noun describing the rows (e.g. "census tracts").
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'w', encoding='utf-8') as f:
        f.write(f"# {title}\n\n")
        f.write(f"Run Date: {datetime.date.today().isoformat()}\n\n")
        f.write(f"Sample Size: {sample_size} {unit}\n\n")
        f.write("---\n\n")

    logger.info(f"Created summary header at {path}")


def append_section(
    path: Path,
    title: str,
    content: str
) -> None:
    """
    Append a titled section with horizontal rule separator to markdown file.

    File must exist before calling this function. Use create_summary_header()
    to initialize new files.
    """
    with open(path, 'a', encoding='utf-8') as f:
        f.write(f"## {title}\n\n")
        f.write(content)
        f.write("\n\n---\n\n")

    logger.info(f"Appended section '{title}' to {path}")
