from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Navigate up from src/pipelines/config.py to project root
PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_RAW = PROJECT_ROOT / "data" / "raw"
DATA_FINAL = PROJECT_ROOT / "data" / "final"
CACHE_DIR = PROJECT_ROOT / ".cache"


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


# Geometry precision settings (override via environment or .env file)
GRID_SIZE = _env_float("GRID_SIZE", None)  # None = full floating precision
AREA_EPSILON = _env_float("AREA_EPSILON", 1e-6)  # CRS units squared (m² for UTM)
MAX_WORKERS = int(os.getenv("MAX_WORKERS", "1"))


@dataclass(frozen=True)
class GeometryConfig:
    """Explicit settings handed to every geometric operation.

    Attributes:
        grid_size: Precision grid passed to shapely overlay functions. ``None``
            keeps full floating point precision.
        area_epsilon: Fragments (and denominators) with area at or below this
            value are treated as empty.
        clamp_fractions: Clamp overlap fractions above 1.0 (edge noise) to 1.0.
        fraction_tolerance: Exceedance above 1.0 that is accepted silently;
            larger exceedances are logged as warnings.
        quad_segs: Segments per quarter circle when buffering.
    """

    grid_size: Optional[float] = None
    area_epsilon: float = 1e-6
    clamp_fractions: bool = True
    fraction_tolerance: float = 1e-6
    quad_segs: int = 8


def geometry_config_from_env() -> GeometryConfig:
    """Build a GeometryConfig from the env-derived module constants."""
    return GeometryConfig(grid_size=GRID_SIZE, area_epsilon=AREA_EPSILON)


# Areal interpolation run configurations
# Format: "analysis_key": {
#   "name": Human readable description,
#   "source_path": Layer carrying the known (extensive) attributes,
#   "target_path": Layer defining the output geography,
#   "source_id" / "target_id": Identifier columns,
#   "attributes": Count columns to redistribute,
#   "reference": Which layer defines the common extent ("source" or "target"),
#   "projected_crs": EPSG code used for all area arithmetic,
#   "shares": {share_column: numerator_column}, divided by "share_total"
# }
ANALYSIS_CONFIGS = {
    "election_2016": {
        "name": "2016 presidential precinct results to census tracts",
        "source_path": DATA_RAW / "precincts_2016.gpkg",
        "target_path": DATA_RAW / "tracts.gpkg",
        "source_id": "precinct",
        "target_id": "GEOID",
        "attributes": ["votes_dem", "votes_rep", "votes_total"],
        "reference": "source",  # precinct layer has no water area
        "projected_crs": 32616,  # UTM Zone 16N
        "shares": {"dem_share": "votes_dem", "rep_share": "votes_rep"},
        "share_total": "votes_total",
    },
    "election_2020": {
        "name": "2020 presidential precinct results to census tracts",
        "source_path": DATA_RAW / "precincts_2020.gpkg",
        "target_path": DATA_RAW / "tracts.gpkg",
        "source_id": "precinct",
        "target_id": "GEOID",
        "attributes": ["votes_dem", "votes_rep", "votes_total"],
        "reference": "source",
        "projected_crs": 32616,
        "shares": {"dem_share": "votes_dem", "rep_share": "votes_rep"},
        "share_total": "votes_total",
    },
}

# Share comparisons between two interpolated analyses (a minus b)
SHIFT_CONFIGS = {
    "dem_shift_2016_2020": {
        "name": "Democratic share shift, 2016 to 2020",
        "analysis_a": "election_2020",
        "analysis_b": "election_2016",
        "key_attribute": "dem_share",
    },
}

# Raster time series sampled along a dated point track
RASTER_CONFIGS = {
    "track_sst": {
        "name": "Daily sea surface temperature along a tagged track",
        "raster_path": DATA_RAW / "sst_daily.nc",
        "variable": "sst",
        "raster_crs": 4326,  # NetCDF lon/lat grids usually carry no CRS
        "track_path": DATA_RAW / "track_points.csv",
        "x_column": "lon",
        "y_column": "lat",
        "track_crs": 4326,
        "date_column": "date",
        "value_name": "sst",
    },
}

# Select which analysis to run (change this to switch analyses)
SELECTED_ANALYSIS = os.getenv("ANALYSIS", "election_2020")


def interpolated_output_path(analysis_key: str, output_dir: Path = DATA_FINAL) -> Path:
    return output_dir / f"interpolated_{analysis_key}.csv"


def shift_output_path(shift_key: str, output_dir: Path = DATA_FINAL) -> Path:
    return output_dir / f"shift_{shift_key}.csv"


def extraction_output_path(raster_key: str, output_dir: Path = DATA_FINAL) -> Path:
    return output_dir / f"extracted_{raster_key}.csv"
