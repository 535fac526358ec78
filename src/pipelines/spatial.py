"""Spatial operations for preparing polygon layers for areal interpolation.

This module handles CRS validation and projection, geometry repair, clipping
layers to a common extent defined by a dissolved reference layer, buffering,
and point-in-polygon spatial joins. Every geometric operation receives an
explicit GeometryConfig so results never depend on process-wide settings.
"""
from __future__ import annotations

import logging

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely
from shapely.geometry import GeometryCollection, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from .config import GeometryConfig
from .errors import InvalidCRS, InvalidGeometry

logger = logging.getLogger(__name__)


def polygonal_part(geom: BaseGeometry | None) -> BaseGeometry | None:
    """Return only the areal components of a geometry.

    Overlay operations on polygons that share an edge or a vertex can return
    lines, points or mixed GeometryCollections. Only (Multi)Polygon parts carry
    area, so everything else is discarded. Returns None when nothing is left.
    """
    if geom is None or geom.is_empty:
        return None
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom
    if isinstance(geom, GeometryCollection):
        polygons = [
            part for part in geom.geoms
            if isinstance(part, (Polygon, MultiPolygon)) and not part.is_empty
        ]
        if not polygons:
            return None
        if len(polygons) == 1:
            return polygons[0]
        return shapely.union_all(polygons)
    return None


def polygonal_parts(geoms) -> np.ndarray:
    """Apply polygonal_part element-wise, returning an object array."""
    out = np.empty(len(geoms), dtype=object)
    for i, geom in enumerate(geoms):
        out[i] = polygonal_part(geom)
    return out


def check_projected(layer: gpd.GeoDataFrame, name: str = "layer") -> None:
    """Raise InvalidCRS unless the layer has a projected (linear unit) CRS."""
    if layer.crs is None:
        raise InvalidCRS(f"{name} has no CRS; set or reproject it before measuring area")
    if not layer.crs.is_projected:
        raise InvalidCRS(
            f"{name} uses {layer.crs.to_string()}, which is not projected. "
            "Area and distance need linear units; reproject first."
        )


def check_common_crs(*layers: gpd.GeoDataFrame) -> None:
    """Raise InvalidCRS unless all layers share one projected CRS."""
    for i, layer in enumerate(layers):
        check_projected(layer, name=f"layer {i}")
    first = layers[0].crs
    for i, layer in enumerate(layers[1:], start=1):
        if layer.crs != first:
            raise InvalidCRS(
                f"layer {i} CRS {layer.crs.to_string()} differs from "
                f"layer 0 CRS {first.to_string()}"
            )


def to_projected(layer: gpd.GeoDataFrame, crs: int | str) -> gpd.GeoDataFrame:
    """Reproject a layer to a projected CRS suitable for area arithmetic.

    Raises:
        InvalidCRS: If the layer has no CRS, or if the requested CRS is geographic
    """
    if layer.crs is None:
        raise InvalidCRS("Cannot reproject a layer without a CRS")
    projected = layer.to_crs(crs)
    check_projected(projected, name=f"layer reprojected to {crs}")
    return projected


def validate_geometries(layer: gpd.GeoDataFrame, name: str = "layer") -> None:
    """Raise InvalidGeometry if any feature geometry is missing or invalid."""
    geoms = layer.geometry
    invalid = geoms.isna() | ~geoms.is_valid
    if invalid.any():
        examples = list(layer.index[invalid.to_numpy()][:5])
        raise InvalidGeometry(
            f"{name} has {int(invalid.sum())} invalid or missing geometries "
            f"(e.g. index {examples}); run repair_geometries first"
        )


def repair_geometries(layer: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Fix invalid polygon geometries, dropping features that cannot be repaired.

    Invalid geometries (self-intersections, bow-ties) are passed through
    shapely.make_valid and reduced to their polygonal part. Features with null
    geometries or no polygonal part after repair are removed.

    Args:
        layer: Polygon GeoDataFrame (not modified in-place)

    Returns:
        Copy of layer with only valid, non-empty polygonal geometries
    """
    repaired = layer.copy()
    geoms = repaired.geometry
    null_mask = geoms.isna() | geoms.is_empty
    invalid_mask = ~null_mask & ~geoms.is_valid

    if invalid_mask.any():
        logger.warning(f"Found {int(invalid_mask.sum())} invalid geometries, repairing...")
        positions = np.flatnonzero(invalid_mask.to_numpy())
        fixed = shapely.make_valid(geoms.iloc[positions].to_numpy())

        geom_values = geoms.to_numpy().copy()
        for pos, geom in zip(positions, fixed):
            geom_values[pos] = polygonal_part(geom)
        repaired[repaired.geometry.name] = gpd.GeoSeries(
            geom_values, index=repaired.index, crs=repaired.crs
        )

    geoms = repaired.geometry
    keep = ~(geoms.isna() | geoms.is_empty)
    dropped = int((~keep).sum())
    if dropped > 0:
        logger.warning(f"Dropped {dropped} features with empty or unrepairable geometries")

    return repaired.loc[keep].copy()


def dissolve_boundary(
    reference_layer: gpd.GeoDataFrame,
    config: GeometryConfig | None = None
) -> BaseGeometry:
    """Union all geometries of a reference layer into a single clip boundary.

    Attributes are discarded; only the combined footprint is kept.

    Raises:
        ValueError: If the reference layer is empty or has no polygonal extent
    """
    config = config or GeometryConfig()
    if reference_layer.empty:
        raise ValueError("Reference layer is empty; cannot build a clip boundary")

    geoms = reference_layer.geometry.dropna().to_numpy()
    boundary = shapely.union_all(geoms, grid_size=config.grid_size)
    polygonal = polygonal_part(boundary)
    if polygonal is None:
        raise ValueError("Reference layer has no areal extent to clip against")
    return polygonal


def clip_to_common_extent(
    reference_layer: gpd.GeoDataFrame,
    other_layers: list[gpd.GeoDataFrame],
    config: GeometryConfig | None = None
) -> list[gpd.GeoDataFrame]:
    """Truncate layers to the extent covered by a reference layer.

    The reference layer (for example precinct results, which contain no water
    area) is dissolved into one boundary, and each other layer is intersected
    with it. Attributes of each other layer are preserved on its clipped
    features; features entirely outside the boundary, or left with an area at
    or below ``config.area_epsilon`` (edge slivers), are dropped.

    Args:
        reference_layer: Layer defining the true extent
        other_layers: Layers to truncate; reprojected to the reference CRS if needed
        config: Geometry precision settings

    Returns:
        Clipped copies of other_layers, in the same order

    Raises:
        InvalidCRS: If any layer has no CRS
    """
    config = config or GeometryConfig()
    if reference_layer.crs is None:
        raise InvalidCRS("Reference layer has no CRS")

    boundary = dissolve_boundary(reference_layer, config)

    clipped_layers = []
    for i, layer in enumerate(other_layers):
        if layer.crs is None:
            raise InvalidCRS(f"Layer {i} has no CRS; cannot clip to reference extent")
        if layer.crs != reference_layer.crs:
            logger.info(f"Reprojecting layer {i} from {layer.crs.to_string()} to reference CRS")
            layer = layer.to_crs(reference_layer.crs)

        pieces = shapely.intersection(
            layer.geometry.to_numpy(), boundary, grid_size=config.grid_size
        )
        pieces = polygonal_parts(pieces)

        clipped = layer.copy()
        clipped[clipped.geometry.name] = gpd.GeoSeries(pieces, index=layer.index, crs=layer.crs)
        # Missing geometry has NaN area, so this also drops features outside the boundary
        keep = shapely.area(pieces) > config.area_epsilon
        dropped = int((~keep).sum())
        if dropped > 0:
            logger.info(
                f"Layer {i}: dropped {dropped} features outside the reference extent "
                f"or with area <= {config.area_epsilon}"
            )
        clipped_layers.append(clipped.loc[keep].copy())

    return clipped_layers


def buffer_layer(
    layer: gpd.GeoDataFrame,
    distance: float,
    config: GeometryConfig | None = None
) -> gpd.GeoDataFrame:
    """Buffer every feature by a distance in CRS units (projected CRS required).

    Raises:
        InvalidCRS: If the layer CRS is missing or geographic
    """
    config = config or GeometryConfig()
    check_projected(layer, name="buffer input")

    buffered = layer.copy()
    geoms = shapely.buffer(layer.geometry.to_numpy(), distance, quad_segs=config.quad_segs)
    if config.grid_size:
        geoms = shapely.set_precision(geoms, config.grid_size)
    buffered[buffered.geometry.name] = gpd.GeoSeries(geoms, index=layer.index, crs=layer.crs)
    return buffered


def count_points_in_polygons(
    points_gdf: gpd.GeoDataFrame,
    polygons_gdf: gpd.GeoDataFrame,
    polygon_id: str,
    count_column: str = "n_points"
) -> pd.DataFrame:
    """Count points falling within each polygon using a spatial join.

    Points are reprojected to the polygon CRS when they differ. Polygons
    containing no points receive a count of zero.

    Returns:
        DataFrame with columns [polygon_id, count_column], one row per polygon

    Raises:
        InvalidCRS: If either layer has no CRS
        ValueError: If polygon_id is not a column of polygons_gdf
    """
    if points_gdf.crs is None or polygons_gdf.crs is None:
        raise InvalidCRS("Both layers need a CRS for a spatial join")
    if polygon_id not in polygons_gdf.columns:
        raise ValueError(f"Polygon id column '{polygon_id}' not found")

    if points_gdf.crs != polygons_gdf.crs:
        points_gdf = points_gdf.to_crs(polygons_gdf.crs)

    joined = gpd.sjoin(
        points_gdf[[points_gdf.geometry.name]],
        polygons_gdf[[polygon_id, polygons_gdf.geometry.name]],
        how="inner",
        predicate="within"
    )
    counts = joined.groupby(polygon_id).size().rename(count_column).reset_index()

    result = polygons_gdf[[polygon_id]].merge(counts, on=polygon_id, how="left")
    result[count_column] = result[count_column].fillna(0).astype(np.int64)
    return pd.DataFrame(result)
