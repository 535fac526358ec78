"""Raster and NetCDF time series sampling along a dated point path.

This module opens multi-band gridded files (NetCDF via xarray, GeoTIFF via
rioxarray), resolves a timestamp to its band on the time axis, and samples
band values at point locations. Extraction along a moving path is a map over
an explicit sequence of dates (each date an independent task) followed by a
single concatenation.
"""
from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

import geopandas as gpd
import numpy as np
import pandas as pd
import rioxarray  # noqa: F401  (registers the .rio accessor)
import xarray as xr
from pyproj import CRS
from rasterio.enums import Resampling

from .errors import InvalidCRS, MissingTemporalMatch

logger = logging.getLogger(__name__)

NETCDF_SUFFIXES = {".nc", ".nc4", ".cdf", ".netcdf"}

# Common spatial dimension names normalised to x / y
SPATIAL_DIM_ALIASES = {
    "lon": "x",
    "longitude": "x",
    "lat": "y",
    "latitude": "y",
}


@dataclass
class ExtractionResult:
    """Values sampled along a path plus the dates that had no raster band."""

    values: pd.DataFrame
    missing_dates: list = field(default_factory=list)


def _standardize_spatial_dims(da: xr.DataArray) -> xr.DataArray:
    renames = {
        name: alias for name, alias in SPATIAL_DIM_ALIASES.items()
        if name in da.dims and alias not in da.dims
    }
    return da.rename(renames) if renames else da


def assign_time_axis(
    da: xr.DataArray,
    dates: Iterable,
    band_dim: str = "band",
    time_dim: str = "time"
) -> xr.DataArray:
    """Replace a numbered band axis with a datetime time axis.

    Raises:
        ValueError: If the band dimension is missing or the number of dates
            differs from the number of bands
    """
    if band_dim not in da.dims:
        raise ValueError(f"DataArray has no '{band_dim}' dimension (dims: {da.dims})")

    times = pd.to_datetime(list(dates))
    if len(times) != da.sizes[band_dim]:
        raise ValueError(
            f"Got {len(times)} dates for {da.sizes[band_dim]} bands; counts must match"
        )
    return da.rename({band_dim: time_dim}).assign_coords({time_dim: times})


def open_raster_series(
    path: str | Path,
    variable: Optional[str] = None,
    band_dates: Optional[Iterable] = None,
    crs: Optional[int | str] = None,
    time_dim: str = "time"
) -> xr.DataArray:
    """Open a multi-band gridded file as a DataArray with a time axis.

    NetCDF files are opened with xarray and the requested variable (or the
    first data variable) is returned. Other formats (GeoTIFF) are opened with
    rioxarray; their numbered bands become the time axis when ``band_dates``
    is given.

    Args:
        path: Path to the raster/NetCDF file
        variable: NetCDF data variable name (default: first data variable)
        band_dates: Dates of each band, for formats without a time coordinate
        crs: CRS to assign when the file carries none (e.g. lon/lat NetCDF)
        time_dim: Name of the time dimension

    Returns:
        DataArray with dims including time_dim, "y" and "x"

    Raises:
        FileNotFoundError: If the file does not exist
        KeyError: If the NetCDF variable is not present
        ValueError: If no time axis can be established
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Raster file not found: {path}")

    if path.suffix.lower() in NETCDF_SUFFIXES:
        ds = xr.open_dataset(path)
        if variable is None:
            variable = list(ds.data_vars)[0]
        if variable not in ds.data_vars:
            raise KeyError(f"Variable '{variable}' not in {path.name}: {list(ds.data_vars)}")
        da = ds[variable]
    else:
        da = rioxarray.open_rasterio(path)

    da = _standardize_spatial_dims(da)

    if band_dates is not None:
        da = assign_time_axis(da, band_dates, time_dim=time_dim)
    if time_dim not in da.dims:
        raise ValueError(
            f"{path.name} has no '{time_dim}' axis (dims: {da.dims}); pass band_dates"
        )

    if crs is not None and da.rio.crs is None:
        da = da.rio.write_crs(crs)

    logger.info(f"Opened {path.name}: {da.sizes[time_dim]} time steps, dims {dict(da.sizes)}")
    return da


def select_band(
    series: xr.DataArray,
    timestamp,
    time_dim: str = "time"
) -> xr.DataArray:
    """Return the band whose timestamp falls on the same day as ``timestamp``.

    When several bands fall on the same day the first is used and a warning
    is logged.

    Raises:
        MissingTemporalMatch: If no band matches; no fallback band is returned
    """
    target = pd.Timestamp(timestamp).normalize()
    times = pd.DatetimeIndex(series[time_dim].values).normalize()
    matches = np.flatnonzero(times == target)
    if len(matches) == 0:
        raise MissingTemporalMatch(target, available=times)
    if len(matches) > 1:
        logger.warning(
            f"{len(matches)} bands fall on {target.date()}; using the first "
            f"({pd.Timestamp(series[time_dim].values[matches[0]])})"
        )
    return series.isel({time_dim: int(matches[0])})


def _raster_crs(band: xr.DataArray) -> Optional[CRS]:
    crs = band.rio.crs
    return CRS.from_user_input(crs) if crs is not None else None


def _grid_bounds(band: xr.DataArray, dim: str) -> tuple[float, float]:
    coords = band[dim].values.astype(float)
    half = abs(coords[1] - coords[0]) / 2 if len(coords) > 1 else 0.0
    return coords.min() - half, coords.max() + half


def sample_points(
    band: xr.DataArray,
    points: gpd.GeoDataFrame,
    method: str = "nearest"
) -> np.ndarray:
    """Sample a single band at point locations.

    Points are reprojected to the raster CRS when both CRSs are known. Points
    outside the grid extent get NaN rather than the nearest edge cell.

    Args:
        band: 2D DataArray with "y" and "x" dims
        points: Point GeoDataFrame
        method: xarray selection method ("nearest") or None for exact match

    Returns:
        Float array of sampled values, aligned with the rows of points
    """
    raster_crs = _raster_crs(band)
    if raster_crs is not None and points.crs is not None and points.crs != raster_crs:
        points = points.to_crs(raster_crs)

    extra_dims = [dim for dim in band.dims if dim not in ("x", "y")]
    band = band.squeeze([dim for dim in extra_dims if band.sizes[dim] == 1], drop=True)
    extra_dims = [dim for dim in band.dims if dim not in ("x", "y")]
    if extra_dims:
        raise ValueError(f"Band still has non-spatial dims {extra_dims}; select one band first")

    xs = points.geometry.x.to_numpy()
    ys = points.geometry.y.to_numpy()

    sampled = band.sel(
        x=xr.DataArray(xs, dims="points"),
        y=xr.DataArray(ys, dims="points"),
        method=method,
    )
    values = np.asarray(sampled.values, dtype=float)

    x_min, x_max = _grid_bounds(band, "x")
    y_min, y_max = _grid_bounds(band, "y")
    outside = (xs < x_min) | (xs > x_max) | (ys < y_min) | (ys > y_max)
    if outside.any():
        logger.debug(f"{int(outside.sum())} points fall outside the raster extent")
        values[outside] = np.nan

    return values


def _normalized_dates(path: gpd.GeoDataFrame, date_column: str) -> pd.Series:
    if date_column not in path.columns:
        raise ValueError(f"Date column '{date_column}' not found in path layer")
    return pd.to_datetime(path[date_column]).dt.normalize()


def extract_for_date(
    series: xr.DataArray,
    path: gpd.GeoDataFrame,
    date,
    date_column: str = "date",
    value_name: str = "value",
    time_dim: str = "time",
    method: str = "nearest"
) -> pd.DataFrame:
    """Sample the band for one date at the path points recorded on that date.

    Returns:
        DataFrame of the matching path rows (geometry replaced by x/y columns)
        with the sampled values in ``value_name``

    Raises:
        MissingTemporalMatch: If the raster has no band for the date
    """
    day = pd.Timestamp(date).normalize()
    on_day = path.loc[_normalized_dates(path, date_column) == day]

    band = select_band(series, day, time_dim=time_dim)
    values = sample_points(band, on_day, method=method)

    result = pd.DataFrame(on_day.drop(columns=on_day.geometry.name))
    result["x"] = on_day.geometry.x.to_numpy()
    result["y"] = on_day.geometry.y.to_numpy()
    result[value_name] = values
    return result


def extract_along_path(
    series: xr.DataArray,
    path: gpd.GeoDataFrame,
    date_column: str = "date",
    value_name: str = "value",
    time_dim: str = "time",
    method: str = "nearest",
    max_workers: int = 1
) -> ExtractionResult:
    """Sample raster values along a dated point path, one task per date.

    Each distinct date is extracted independently (optionally on a thread
    pool). Dates with no raster band are logged and reported in
    ``missing_dates``; extraction continues for the other dates.

    Args:
        series: Raster time series with a time axis
        path: Point GeoDataFrame with a date column
        date_column: Column holding the observation date of each point
        value_name: Output column for the sampled values
        time_dim: Name of the raster time dimension
        method: xarray selection method for sampling
        max_workers: Thread count; 1 runs sequentially

    Returns:
        ExtractionResult with the concatenated per-date values (in date order)
        and the sorted list of dates that had no band
    """
    dates = sorted(_normalized_dates(path, date_column).dropna().unique())
    logger.info(f"Extracting '{value_name}' for {len(path)} points over {len(dates)} dates")

    def run_one(date):
        try:
            return date, extract_for_date(
                series, path, date,
                date_column=date_column,
                value_name=value_name,
                time_dim=time_dim,
                method=method,
            )
        except MissingTemporalMatch as e:
            logger.warning(f"Skipping {pd.Timestamp(date).date()}: {e}")
            return date, None

    if max_workers > 1:
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            outcomes = list(executor.map(run_one, dates))
    else:
        outcomes = [run_one(date) for date in dates]

    frames = [frame for _, frame in outcomes if frame is not None]
    missing = [pd.Timestamp(date) for date, frame in outcomes if frame is None]

    if frames:
        values = pd.concat(frames, ignore_index=True)
    else:
        columns = [c for c in path.columns if c != path.geometry.name] + ["x", "y", value_name]
        values = pd.DataFrame(columns=columns)

    logger.info(f"Extracted {len(values)} values; {len(missing)} dates had no raster band")
    return ExtractionResult(values=values, missing_dates=missing)


def reproject_raster(
    da: xr.DataArray,
    dst_crs: int | str,
    resampling: str = "nearest"
) -> xr.DataArray:
    """Reproject a raster to another CRS with rioxarray.

    Raises:
        InvalidCRS: If the raster has no CRS to reproject from
        KeyError: If the resampling name is unknown to rasterio
    """
    if da.rio.crs is None:
        raise InvalidCRS("Raster has no CRS; assign one with rio.write_crs before reprojecting")
    return da.rio.reproject(dst_crs, resampling=Resampling[resampling])
