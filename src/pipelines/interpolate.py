"""Areal-weighted interpolation of count attributes between polygon layers.

Redistributes extensive attributes (vote counts, population) from a source
layer onto a target layer in proportion to the area of overlap. Both layers
must already be clipped to the same extent (see spatial.clip_to_common_extent),
repaired, and projected to one CRS with linear units.

Attributes must be counts. Redistributing rates or densities by area fraction
silently produces wrong numbers and is not guarded against.
"""
from __future__ import annotations

import logging

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely

from .config import GeometryConfig
from .errors import EmptyGeometry, EmptyResult
from .spatial import check_common_crs, polygonal_parts, validate_geometries

logger = logging.getLogger(__name__)

WEIGHT_MODES = ("target", "source")


def _check_columns(
    source_layer: gpd.GeoDataFrame,
    target_layer: gpd.GeoDataFrame,
    attributes: list[str],
    target_id: str,
    source_id: str | None
) -> None:
    if not attributes:
        raise ValueError("Attributes list cannot be empty")

    missing = [col for col in attributes if col not in source_layer.columns]
    if missing:
        raise ValueError(f"Missing attribute columns in source layer: {missing}")

    if target_id not in target_layer.columns:
        raise ValueError(f"Target id column '{target_id}' not found in target layer")
    if target_layer[target_id].duplicated().any():
        raise ValueError(f"Target id column '{target_id}' contains duplicate values")

    if source_id is not None:
        if source_id not in source_layer.columns:
            raise ValueError(f"Source id column '{source_id}' not found in source layer")
        if source_id == target_id:
            raise ValueError("source_id and target_id must be different column names")

    if target_id in attributes or (source_id is not None and source_id in attributes):
        raise ValueError("Id columns cannot also be interpolated attributes")


def _denominator_areas(
    layer: gpd.GeoDataFrame,
    id_column: str | None,
    config: GeometryConfig,
    name: str
) -> np.ndarray:
    """Area of every feature, rejecting features too small to divide by."""
    areas = shapely.area(layer.geometry.to_numpy())
    degenerate = areas <= config.area_epsilon
    if degenerate.any():
        labels = layer[id_column].to_numpy() if id_column else layer.index.to_numpy()
        raise EmptyGeometry(
            f"{int(degenerate.sum())} {name} features have zero area "
            f"(e.g. {list(labels[degenerate][:5])}); overlap fractions are undefined"
        )
    return areas


def overlap_fragments(
    source_layer: gpd.GeoDataFrame,
    target_layer: gpd.GeoDataFrame,
    attributes: list[str],
    target_id: str = "GEOID",
    source_id: str | None = None,
    weight_by: str = "target",
    config: GeometryConfig | None = None
) -> gpd.GeoDataFrame:
    """Intersect every target feature with every overlapping source feature.

    Candidate pairs come from the source layer's spatial index; each pair is
    intersected with shapely at the configured precision grid. Fragments with
    no polygonal part, or with area at or below ``config.area_epsilon``, are
    always excluded (slivers along shared edges are floating point artifacts).

    Args:
        source_layer: Polygons carrying the known count attributes
        target_layer: Polygons that will receive estimates
        attributes: Count columns copied from the parent source feature
        target_id: Unique identifier column of the target layer
        source_id: Optional identifier column of the source layer to carry along
        weight_by: Denominator of the overlap fraction. ``"target"`` divides the
            fragment area by its target's area; ``"source"`` divides by its
            source's area, which conserves source totals.
        config: Geometry precision and tolerance settings

    Returns:
        GeoDataFrame with one row per fragment: target id, source id (if given),
        fragment_area, overlap_fraction, the source attributes and the fragment
        geometry. Rows are ordered by target then source position.

    Raises:
        InvalidCRS: If the layers are not in one common projected CRS
        InvalidGeometry: If either layer has invalid or missing geometries
        EmptyGeometry: If a denominator feature has zero area
        ValueError: If columns are missing or weight_by is unknown
    """
    config = config or GeometryConfig()
    if weight_by not in WEIGHT_MODES:
        raise ValueError(f"weight_by must be one of {WEIGHT_MODES}, got '{weight_by}'")

    check_common_crs(source_layer, target_layer)
    validate_geometries(source_layer, name="source layer")
    validate_geometries(target_layer, name="target layer")
    _check_columns(source_layer, target_layer, attributes, target_id, source_id)

    if weight_by == "target":
        denominators = _denominator_areas(target_layer, target_id, config, "target")
    else:
        denominators = _denominator_areas(source_layer, source_id, config, "source")

    target_geoms = target_layer.geometry.to_numpy()
    source_geoms = source_layer.geometry.to_numpy()

    # Candidate (target, source) pairs whose geometries intersect
    target_pos, source_pos = source_layer.sindex.query(
        target_layer.geometry, predicate="intersects"
    )
    order = np.lexsort((source_pos, target_pos))
    target_pos, source_pos = target_pos[order], source_pos[order]

    pieces = shapely.intersection(
        target_geoms[target_pos], source_geoms[source_pos], grid_size=config.grid_size
    )
    pieces = polygonal_parts(pieces)
    areas = np.nan_to_num(shapely.area(pieces), nan=0.0)

    keep = areas > config.area_epsilon
    dropped = int((~keep).sum())
    if dropped > 0:
        logger.debug(f"Excluded {dropped} zero-area fragments (area <= {config.area_epsilon})")
    target_pos, source_pos = target_pos[keep], source_pos[keep]
    pieces, areas = pieces[keep], areas[keep]

    parent = target_pos if weight_by == "target" else source_pos
    fractions = areas / denominators[parent]

    excess = fractions - 1.0
    over_tolerance = excess > config.fraction_tolerance
    if over_tolerance.any():
        logger.warning(
            f"{int(over_tolerance.sum())} overlap fractions exceed 1.0 by more than "
            f"{config.fraction_tolerance} (max {fractions.max():.6f}); check layer alignment"
        )
    if config.clamp_fractions:
        fractions = np.minimum(fractions, 1.0)

    data = {target_id: target_layer[target_id].to_numpy()[target_pos]}
    if source_id is not None:
        data[source_id] = source_layer[source_id].to_numpy()[source_pos]
    data["fragment_area"] = areas
    data["overlap_fraction"] = fractions
    for attr in attributes:
        data[attr] = source_layer[attr].to_numpy()[source_pos]

    return gpd.GeoDataFrame(data, geometry=list(pieces), crs=target_layer.crs)


def interpolate(
    source_layer: gpd.GeoDataFrame,
    target_layer: gpd.GeoDataFrame,
    attributes: list[str],
    target_id: str = "GEOID",
    source_id: str | None = None,
    weight_by: str = "target",
    keep_geometry: bool = False,
    require_overlap: bool = False,
    config: GeometryConfig | None = None
) -> pd.DataFrame:
    """Estimate count attributes for target polygons from overlapping source polygons.

    For each fragment, ``value = source_value * overlap_fraction``; fragment
    values are then summed per target id. With the default ``weight_by="target"``
    the fraction is fragment area over target area, so a target fully covered
    by sources has fractions summing to 1.0. With ``weight_by="source"`` the
    fraction is fragment area over source area, which splits each source total
    across targets and preserves the grand total.

    Args:
        source_layer: Polygons carrying the known count attributes
        target_layer: Polygons that will receive estimates
        attributes: Count columns to redistribute
        target_id: Unique identifier column of the target layer
        source_id: Optional identifier column of the source layer (logging only)
        weight_by: ``"target"`` (default) or ``"source"`` area denominator
        keep_geometry: Return a GeoDataFrame carrying the target geometries
        require_overlap: Raise instead of omitting targets that overlap no source
        config: Geometry precision and tolerance settings

    Returns:
        One row per target id that overlaps at least one source feature, with
        the summed attributes. Targets without overlap get no row; callers
        should treat absence as zero.

    Raises:
        EmptyResult: If require_overlap is set and some target overlaps no source
        InvalidCRS, InvalidGeometry, EmptyGeometry: See overlap_fragments
    """
    fragments = overlap_fragments(
        source_layer,
        target_layer,
        attributes,
        target_id=target_id,
        source_id=source_id,
        weight_by=weight_by,
        config=config,
    )
    if fragments.empty:
        logger.warning("Source and target layers do not overlap; every target gets no estimate")

    weighted = pd.DataFrame(
        fragments[attributes].to_numpy(dtype=float)
        * fragments["overlap_fraction"].to_numpy()[:, None],
        columns=attributes,
    )
    weighted.insert(0, target_id, fragments[target_id].to_numpy())

    # Fragments are ordered by target position, so sort=False keeps target order
    # min_count=1 keeps all-missing contributions missing instead of 0
    estimates = (
        weighted.groupby(target_id, as_index=False, sort=False)[attributes].sum(min_count=1)
    )

    unmatched = len(target_layer) - len(estimates)
    if unmatched > 0 and require_overlap:
        uncovered = target_layer.loc[~target_layer[target_id].isin(estimates[target_id]), target_id]
        raise EmptyResult(
            f"{unmatched} target features overlap no source feature "
            f"(e.g. {list(uncovered.iloc[:5])})"
        )
    if unmatched > 0:
        logger.info(f"{unmatched} target features overlap no source feature and get no estimate")
    logger.info(
        f"Interpolated {len(attributes)} attributes from {len(source_layer)} source "
        f"to {len(estimates)} target features via {len(fragments)} fragments"
    )

    if keep_geometry:
        geometry_name = target_layer.geometry.name
        return target_layer[[target_id, geometry_name]].merge(estimates, on=target_id, how="inner")

    return estimates
