import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import xarray as xr
from shapely.geometry import box

from src.pipelines.config import GeometryConfig

UTM_16N = "EPSG:32616"


def make_layer(records, crs=UTM_16N):
    """Build a polygon layer from (attributes dict, (minx, miny, maxx, maxy)) pairs."""
    rows = [attrs for attrs, _ in records]
    geoms = [box(*bounds) for _, bounds in records]
    return gpd.GeoDataFrame(pd.DataFrame(rows), geometry=geoms, crs=crs)


@pytest.fixture
def geometry_config():
    return GeometryConfig()


@pytest.fixture
def two_square_target():
    """Adjacent unit squares T1 (0,0)-(1,1) and T2 (1,0)-(2,1)."""
    return make_layer([
        ({"GEOID": "T1"}, (0, 0, 1, 1)),
        ({"GEOID": "T2"}, (1, 0, 2, 1)),
    ])


@pytest.fixture
def wide_source():
    """Single source square S (0,0)-(1.5,1) carrying count=100."""
    return make_layer([({"precinct": "S", "count": 100.0}, (0, 0, 1.5, 1))])


@pytest.fixture
def strip_source():
    """Three vertical strips exactly covering (0,0)-(2,1)."""
    return make_layer([
        ({"precinct": "A", "count": 30.0, "other": 3.0}, (0, 0, 0.7, 1)),
        ({"precinct": "B", "count": 50.0, "other": 5.0}, (0.7, 0, 1.3, 1)),
        ({"precinct": "C", "count": 20.0, "other": 2.0}, (1.3, 0, 2, 1)),
    ])


@pytest.fixture
def sst_series():
    """Three daily 3x3 grids; value = day*100 + row*10 + col."""
    times = pd.date_range("2024-01-01", periods=3, freq="D")
    values = np.array([
        [[day * 100 + row * 10 + col for col in range(3)] for row in range(3)]
        for day in range(1, 4)
    ], dtype=float)
    return xr.DataArray(
        values,
        dims=("time", "y", "x"),
        coords={"time": times, "y": [2.5, 1.5, 0.5], "x": [0.5, 1.5, 2.5]},
        name="sst",
    )


@pytest.fixture
def track():
    """A dated point path; the last date has no raster band."""
    df = pd.DataFrame({
        "fix": [1, 2, 3, 4],
        "date": ["2024-01-01", "2024-01-01", "2024-01-03", "2024-01-05"],
        "lon": [0.6, 2.4, 1.5, 1.5],
        "lat": [2.4, 0.4, 1.5, 1.5],
    })
    return gpd.GeoDataFrame(df, geometry=gpd.points_from_xy(df["lon"], df["lat"]))
