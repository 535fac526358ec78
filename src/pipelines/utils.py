"""Utility functions for fetching and reading geospatial input layers.

This module provides helpers for downloading remote layer files into the
local cache and loading polygon/point layers into GeoDataFrames from any
format geopandas can read (GeoPackage, shapefile, GeoJSON) or from CSV
files with coordinate columns.
"""
from __future__ import annotations
import logging
from pathlib import Path
from urllib.parse import urlparse

import geopandas as gpd
import pandas as pd
import requests

from .config import CACHE_DIR

logger = logging.getLogger(__name__)


def _is_url(source: str | Path) -> bool:
    return urlparse(str(source)).scheme in ("http", "https")


def download_to_cache(url: str, cache_dir: Path = CACHE_DIR, timeout: int = 180) -> Path:
    """Download a remote file into the cache directory, reusing earlier downloads.

    Args:
        url: Full URL to the file (GeoPackage, zipped shapefile, NetCDF, ...)
        cache_dir: Directory holding cached downloads
        timeout: Request timeout in seconds (default 180 for large files)

    Returns:
        Path to the cached local copy

    Raises:
        requests.HTTPError: If the HTTP request fails (4xx/5xx status)
        requests.Timeout: If request exceeds timeout duration
        requests.ConnectionError: If network connection fails
    """
    cache_dir.mkdir(parents=True, exist_ok=True)
    filename = Path(urlparse(url).path).name or "download"
    local_path = cache_dir / filename

    if local_path.exists():
        logger.info(f"Using cached copy of {url}: {local_path}")
        return local_path

    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.Timeout as e:
        raise requests.Timeout(
            f"Request timed out after {timeout}s for URL: {url}. "
            "Try increasing timeout or check network connection."
        ) from e
    except requests.ConnectionError as e:
        raise requests.ConnectionError(
            f"Failed to connect to {url}. Check network connection and URL."
        ) from e

    local_path.write_bytes(response.content)
    logger.info(f"Downloaded {url} ({len(response.content):,} bytes) to {local_path}")
    return local_path


def read_layer(source: str | Path, layer: str | None = None) -> gpd.GeoDataFrame:
    """Load a vector layer from a local path or URL.

    Args:
        source: Local file path or http(s) URL of the layer file
        layer: Layer name for multi-layer containers such as GeoPackage

    Returns:
        GeoDataFrame in the CRS stored with the file

    Raises:
        FileNotFoundError: If a local source does not exist
        ValueError: If the file holds no features
    """
    if _is_url(source):
        path = download_to_cache(str(source))
    else:
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Layer file not found: {path}")

    kwargs = {"layer": layer} if layer else {}
    gdf = gpd.read_file(path, **kwargs)

    if gdf.empty:
        raise ValueError(f"Layer {path} contains no features")

    logger.info(f"Loaded {len(gdf)} features from {path.name} (CRS: {gdf.crs})")
    return gdf


def read_points_csv(
    path: str | Path,
    x_column: str,
    y_column: str,
    crs: int | str = 4326
) -> gpd.GeoDataFrame:
    """Load a CSV of coordinates (e.g. a dated tracking path) as point features.

    Args:
        path: CSV file path or http(s) URL
        x_column: Column holding x / longitude values
        y_column: Column holding y / latitude values
        crs: CRS of the coordinate columns (default WGS84)

    Returns:
        GeoDataFrame of points with all CSV columns retained

    Raises:
        ValueError: If coordinate columns are missing
    """
    if _is_url(path):
        path = download_to_cache(str(path))

    df = pd.read_csv(path)
    missing = [col for col in (x_column, y_column) if col not in df.columns]
    if missing:
        raise ValueError(f"Missing coordinate columns in {path}: {missing}")

    # Rows without coordinates cannot be sampled
    initial_count = len(df)
    df = df.dropna(subset=[x_column, y_column])
    dropped = initial_count - len(df)
    if dropped > 0:
        logger.warning(f"Dropped {dropped} rows without coordinates from {path}")

    return gpd.GeoDataFrame(
        df,
        geometry=gpd.points_from_xy(df[x_column], df[y_column]),
        crs=crs
    )
