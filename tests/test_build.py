import pandas as pd
import pytest

from conftest import UTM_16N, make_layer
from src.pipelines.build import (
    build_interpolated_dataset,
    build_path_extraction,
    build_shift_dataset,
)


def _precincts(path, p1, p2):
    """Write P1 (0,0)-(1,1) and P2 (1,0)-(2,1) with (dem, rep, total) votes."""
    layer = make_layer([
        ({"precinct": "P1", "votes_dem": p1[0], "votes_rep": p1[1], "votes_total": p1[2]},
         (0, 0, 1, 1)),
        ({"precinct": "P2", "votes_dem": p2[0], "votes_rep": p2[1], "votes_total": p2[2]},
         (1, 0, 2, 1)),
    ])
    layer.to_file(path, driver="GPKG")
    return path


@pytest.fixture
def election_inputs(tmp_path):
    # T2 reaches past the precinct extent and is clipped to y <= 1
    tracts = make_layer([
        ({"GEOID": "01001"}, (0, 0, 2, 0.5)),
        ({"GEOID": "01002"}, (0, 0.5, 2, 1.5)),
    ])
    tracts.to_file(tmp_path / "tracts.gpkg", driver="GPKG")

    def analysis(year, p1, p2):
        return {
            "name": f"{year} test election",
            "source_path": _precincts(tmp_path / f"precincts_{year}.gpkg", p1, p2),
            "target_path": tmp_path / "tracts.gpkg",
            "source_id": "precinct",
            "target_id": "GEOID",
            "attributes": ["votes_dem", "votes_rep", "votes_total"],
            "reference": "source",
            "projected_crs": 32616,
            "shares": {"dem_share": "votes_dem", "rep_share": "votes_rep"},
            "share_total": "votes_total",
        }

    return {
        "early": analysis(2016, (60.0, 40.0, 100.0), (20.0, 30.0, 50.0)),
        "late": analysis(2020, (70.0, 30.0, 100.0), (25.0, 25.0, 50.0)),
    }


def test_interpolation_run_writes_tract_csv(tmp_path, election_inputs):
    out = build_interpolated_dataset(
        "early", analysis=election_inputs["early"], output_dir=tmp_path / "final"
    )

    df = pd.read_csv(out, dtype={"GEOID": str}).set_index("GEOID")
    assert list(df.index) == ["01001", "01002"]
    assert df.loc["01001", "votes_total"] == pytest.approx(75.0)
    assert df.loc["01002", "votes_total"] == pytest.approx(75.0)
    assert df.loc["01002", "votes_dem"] == pytest.approx(40.0)
    assert df.loc["01001", "dem_share"] == pytest.approx(40 / 75)


def test_shift_run_compares_two_interpolations(tmp_path, election_inputs):
    out_dir = tmp_path / "final"
    build_interpolated_dataset("early", analysis=election_inputs["early"], output_dir=out_dir)
    build_interpolated_dataset("late", analysis=election_inputs["late"], output_dir=out_dir)

    out = build_shift_dataset(
        "dem",
        shift={"analysis_a": "late", "analysis_b": "early", "key_attribute": "dem_share"},
        output_dir=out_dir,
    )

    df = pd.read_csv(out, dtype={"GEOID": str})
    assert list(df["GEOID"]) == ["01001", "01002"]
    assert df["dem_share_shift"].tolist() == pytest.approx([0.1, 0.1])


def test_shift_run_requires_interpolated_inputs(tmp_path):
    with pytest.raises(FileNotFoundError, match="Run analysis"):
        build_shift_dataset(
            "dem",
            shift={"analysis_a": "late", "analysis_b": "early", "key_attribute": "dem_share"},
            output_dir=tmp_path,
        )


def test_target_reference_clips_source(tmp_path, election_inputs):
    analysis = dict(election_inputs["early"], reference="target")

    out = build_interpolated_dataset("early", analysis=analysis, output_dir=tmp_path)

    df = pd.read_csv(out, dtype={"GEOID": str}).set_index("GEOID")
    # Unclipped T2 has area 2, only half of it covered by precincts
    assert df.loc["01002", "votes_total"] == pytest.approx(37.5)


def test_path_extraction_run(tmp_path, sst_series):
    raster_path = tmp_path / "sst.nc"
    sst_series.rename({"x": "lon", "y": "lat"}).to_dataset(name="sst").to_netcdf(raster_path)
    track_path = tmp_path / "track.csv"
    pd.DataFrame({
        "fix": [1, 2, 3, 4],
        "date": ["2024-01-01", "2024-01-01", "2024-01-03", "2024-01-05"],
        "lon": [0.6, 2.4, 1.5, 1.5],
        "lat": [2.4, 0.4, 1.5, 1.5],
    }).to_csv(track_path, index=False)

    out, missing = build_path_extraction(
        "sst",
        raster={
            "raster_path": raster_path,
            "variable": "sst",
            "raster_crs": 4326,
            "track_path": track_path,
            "x_column": "lon",
            "y_column": "lat",
            "track_crs": 4326,
            "date_column": "date",
            "value_name": "sst",
        },
        output_dir=tmp_path / "final",
        max_workers=2,
    )

    df = pd.read_csv(out)
    assert df["fix"].tolist() == [1, 2, 3]
    assert df["sst"].tolist() == [100.0, 122.0, 311.0]
    assert missing == [pd.Timestamp("2024-01-05")]


def test_unknown_reference_rejected(tmp_path, election_inputs):
    analysis = dict(election_inputs["early"], reference="both")
    with pytest.raises(ValueError, match="reference"):
        build_interpolated_dataset("early", analysis=analysis, output_dir=tmp_path)


def test_layers_projected_before_interpolation(tmp_path, election_inputs):
    # Store the tracts in lon/lat; the run must project them back to UTM
    geographic = tmp_path / "tracts_ll.gpkg"
    make_layer([
        ({"GEOID": "01001"}, (0, 0, 2, 0.5)),
        ({"GEOID": "01002"}, (0, 0.5, 2, 1.5)),
    ], crs=UTM_16N).to_crs(4326).to_file(geographic, driver="GPKG")
    analysis = dict(election_inputs["early"], target_path=geographic)

    out = build_interpolated_dataset("early", analysis=analysis, output_dir=tmp_path)

    df = pd.read_csv(out, dtype={"GEOID": str}).set_index("GEOID")
    assert df.loc["01001", "votes_total"] == pytest.approx(75.0, rel=1e-3)
