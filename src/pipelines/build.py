"""Pipeline orchestration for interpolation, shift and raster extraction runs.

This module coordinates complete runs driven by the named configurations in
config.py: loading layers, projecting to a linear CRS, repairing geometries,
clipping to a common extent, interpolating counts onto the target geography,
computing shares, comparing two interpolated runs, and sampling raster time
series along a dated point path. Each run writes one CSV.
"""
from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from .config import (
    ANALYSIS_CONFIGS,
    DATA_FINAL,
    RASTER_CONFIGS,
    SHIFT_CONFIGS,
    GeometryConfig,
    extraction_output_path,
    interpolated_output_path,
    shift_output_path,
)
from .interpolate import interpolate
from .raster import extract_along_path, open_raster_series
from .shift import attribute_shift, compute_shares
from .spatial import clip_to_common_extent, repair_geometries, to_projected
from .utils import read_layer, read_points_csv

# Configure logger for this module
logger = logging.getLogger(__name__)


def build_interpolated_dataset(
    analysis_key: str,
    analysis: dict | None = None,
    geometry_config: GeometryConfig | None = None,
    output_dir: Path = DATA_FINAL
) -> str:
    """Execute one areal interpolation run and write the target-level CSV.

    Steps:
    1. Load source and target layers
    2. Project both to the configured projected CRS
    3. Repair invalid geometries
    4. Clip the non-reference layer to the reference layer's dissolved extent
    5. Interpolate count attributes onto the target geography
    6. Compute shares from the interpolated counts
    7. Write CSV

    Args:
        analysis_key: Key of the run (names the output file)
        analysis: Run configuration; defaults to ANALYSIS_CONFIGS[analysis_key]
        geometry_config: Geometry precision settings
        output_dir: Directory for the output CSV

    Returns:
        String path to the output CSV file

    Raises:
        KeyError: If analysis_key is unknown and no analysis dict is given
        InvalidCRS, InvalidGeometry, EmptyGeometry: From the
            spatial steps; these abort the run
    """
    analysis = analysis or ANALYSIS_CONFIGS[analysis_key]
    geometry_config = geometry_config or GeometryConfig()
    source_id = analysis.get("source_id")
    target_id = analysis["target_id"]
    attributes = list(analysis["attributes"])

    logger.info("=" * 60)
    logger.info(f"Interpolating: {analysis.get('name', analysis_key)}")
    logger.info("=" * 60)

    # Step 1: Load layers
    logger.info("STEP 1: Loading source and target layers...")
    source = read_layer(analysis["source_path"], layer=analysis.get("source_layer"))
    target = read_layer(analysis["target_path"], layer=analysis.get("target_layer"))

    # Step 2: Project to a CRS with linear units for area arithmetic
    logger.info(f"STEP 2: Projecting layers to EPSG:{analysis['projected_crs']}...")
    source = to_projected(source, analysis["projected_crs"])
    target = to_projected(target, analysis["projected_crs"])

    # Step 3: Repair geometries before any overlay
    logger.info("STEP 3: Repairing geometries...")
    source = repair_geometries(source)
    target = repair_geometries(target)

    # Step 4: Clip to the extent of the reference layer (e.g. drop water area)
    reference = analysis.get("reference", "source")
    logger.info(f"STEP 4: Clipping to the {reference} layer extent...")
    if reference == "source":
        (target,) = clip_to_common_extent(source, [target], config=geometry_config)
    elif reference == "target":
        (source,) = clip_to_common_extent(target, [source], config=geometry_config)
    else:
        raise ValueError(f"reference must be 'source' or 'target', got '{reference}'")
    logger.info(f"{len(source)} source and {len(target)} target features after clipping")

    # Step 5: Areal-weighted interpolation
    logger.info("STEP 5: Interpolating attributes...")
    estimates = interpolate(
        source,
        target,
        attributes,
        target_id=target_id,
        source_id=source_id,
        weight_by=analysis.get("weight_by", "target"),
        require_overlap=analysis.get("require_overlap", False),
        config=geometry_config,
    )

    # Step 6: Shares of the total count
    if analysis.get("shares"):
        logger.info("STEP 6: Computing shares...")
        estimates = compute_shares(estimates, analysis["shares"], analysis["share_total"])

    # Step 7: Write output
    output_path = interpolated_output_path(analysis_key, Path(output_dir))
    output_path.parent.mkdir(parents=True, exist_ok=True)
    estimates.to_csv(output_path, index=False)

    logger.info("=" * 60)
    logger.info(f"SUCCESS: Wrote {len(estimates)} target features to {output_path.name}")
    logger.info("=" * 60)
    return str(output_path)


def build_shift_dataset(
    shift_key: str,
    shift: dict | None = None,
    output_dir: Path = DATA_FINAL
) -> str:
    """Compare two interpolated runs and write the per-target shift CSV.

    Both runs must already have been written to output_dir by
    build_interpolated_dataset.

    Returns:
        String path to the output CSV file

    Raises:
        FileNotFoundError: If either interpolated CSV is missing
    """
    shift = shift or SHIFT_CONFIGS[shift_key]
    id_column = shift.get("id_column", "GEOID")
    output_dir = Path(output_dir)

    logger.info(f"Computing shift: {shift.get('name', shift_key)}")

    frames = []
    for analysis_key in (shift["analysis_a"], shift["analysis_b"]):
        path = interpolated_output_path(analysis_key, output_dir)
        if not path.exists():
            raise FileNotFoundError(
                f"Interpolated results not found: {path}. Run analysis '{analysis_key}' first."
            )
        # Keep ids as strings so leading zeros survive the round trip
        frames.append(pd.read_csv(path, dtype={id_column: str}))

    shifted = attribute_shift(frames[0], frames[1], shift["key_attribute"], id_column=id_column)

    output_path = shift_output_path(shift_key, output_dir)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    shifted.to_csv(output_path, index=False)
    logger.info(f"Wrote {len(shifted)} shifts to {output_path}")
    return str(output_path)


def build_path_extraction(
    raster_key: str,
    raster: dict | None = None,
    output_dir: Path = DATA_FINAL,
    max_workers: int = 1
) -> tuple[str, list]:
    """Sample a raster time series along a dated point path and write a CSV.

    Dates without a raster band are skipped (and logged); values for all
    other dates are still written.

    Returns:
        Tuple of (output CSV path, list of dates that had no raster band)
    """
    raster = raster or RASTER_CONFIGS[raster_key]

    logger.info("=" * 60)
    logger.info(f"Extracting: {raster.get('name', raster_key)}")
    logger.info("=" * 60)

    series = open_raster_series(
        raster["raster_path"],
        variable=raster.get("variable"),
        band_dates=raster.get("band_dates"),
        crs=raster.get("raster_crs"),
    )

    track_path = Path(raster["track_path"])
    if track_path.suffix.lower() == ".csv":
        track = read_points_csv(
            track_path,
            raster.get("x_column", "lon"),
            raster.get("y_column", "lat"),
            crs=raster.get("track_crs", 4326),
        )
    else:
        track = read_layer(track_path)

    result = extract_along_path(
        series,
        track,
        date_column=raster.get("date_column", "date"),
        value_name=raster.get("value_name", "value"),
        max_workers=max_workers,
    )

    if result.missing_dates:
        logger.warning(
            f"{len(result.missing_dates)} dates had no raster band: "
            f"{', '.join(str(d.date()) for d in result.missing_dates)}"
        )

    output_path = extraction_output_path(raster_key, Path(output_dir))
    output_path.parent.mkdir(parents=True, exist_ok=True)
    result.values.to_csv(output_path, index=False)
    logger.info(f"Wrote {len(result.values)} extracted values to {output_path}")
    return str(output_path), result.missing_dates
