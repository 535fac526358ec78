import geopandas as gpd
import numpy as np
import pytest
from shapely.geometry import Polygon

from conftest import make_layer
from src.pipelines.config import GeometryConfig
from src.pipelines.errors import EmptyGeometry, EmptyResult, InvalidCRS, InvalidGeometry
from src.pipelines.interpolate import interpolate, overlap_fragments
from src.pipelines.spatial import clip_to_common_extent


def _by_id(estimates, column, id_column="GEOID"):
    return dict(zip(estimates[id_column], estimates[column]))


def test_two_square_scenario(wide_source, two_square_target):
    estimates = interpolate(wide_source, two_square_target, ["count"])

    values = _by_id(estimates, "count")
    assert values["T1"] == pytest.approx(100.0)
    assert values["T2"] == pytest.approx(50.0)


def test_two_square_fractions(wide_source, two_square_target):
    fragments = overlap_fragments(
        wide_source, two_square_target, ["count"], source_id="precinct"
    )

    fractions = _by_id(fragments, "overlap_fraction")
    assert fractions["T1"] == pytest.approx(1.0)
    assert fractions["T2"] == pytest.approx(0.5)
    assert set(fragments["precinct"]) == {"S"}


def test_fractions_sum_to_one_when_source_covers_target(strip_source, two_square_target):
    fragments = overlap_fragments(strip_source, two_square_target, ["count"])

    totals = fragments.groupby("GEOID")["overlap_fraction"].sum()
    assert len(totals) == 2
    for total in totals:
        assert total == pytest.approx(1.0, abs=1e-6)


def test_source_weighting_conserves_totals():
    source = make_layer([
        ({"count": 10.0}, (0, 0, 1, 1)),
        ({"count": 20.0}, (1, 0, 2, 1)),
        ({"count": 30.0}, (0, 1, 1, 2)),
        ({"count": 40.0}, (1, 1, 2, 2)),
    ])
    target = make_layer([
        ({"GEOID": "a"}, (0, 0, 2, 0.5)),
        ({"GEOID": "b"}, (0, 0.5, 2, 1.5)),
        ({"GEOID": "c"}, (0, 1.5, 2, 2)),
    ])

    estimates = interpolate(source, target, ["count"], weight_by="source")

    assert estimates["count"].sum() == pytest.approx(source["count"].sum(), abs=1e-6)
    assert _by_id(estimates, "count")["a"] == pytest.approx(15.0)


def test_multiple_attributes_weighted_independently(strip_source, two_square_target):
    estimates = interpolate(strip_source, two_square_target, ["count", "other"])

    # T1 is 0.7 covered by A and 0.3 by B -> 30 * 0.7 + 50 * 0.3
    values = _by_id(estimates, "count")
    assert values["T1"] == pytest.approx(36.0)
    assert values["T2"] == pytest.approx(50 * 0.3 + 20 * 0.7)
    assert _by_id(estimates, "other")["T1"] == pytest.approx(3.6)


def test_target_without_overlap_gets_no_record(wide_source):
    target = make_layer([
        ({"GEOID": "T1"}, (0, 0, 1, 1)),
        ({"GEOID": "FAR"}, (10, 10, 11, 11)),
    ])

    estimates = interpolate(wide_source, target, ["count"])

    assert list(estimates["GEOID"]) == ["T1"]


def test_disjoint_layers_give_empty_result(wide_source):
    target = make_layer([({"GEOID": "FAR"}, (10, 10, 11, 11))])

    estimates = interpolate(wide_source, target, ["count"])

    assert estimates.empty
    assert list(estimates.columns) == ["GEOID", "count"]


def test_require_overlap_raises_for_uncovered_targets(wide_source):
    target = make_layer([
        ({"GEOID": "T1"}, (0, 0, 1, 1)),
        ({"GEOID": "FAR"}, (10, 10, 11, 11)),
    ])

    with pytest.raises(EmptyResult, match="FAR"):
        interpolate(wide_source, target, ["count"], require_overlap=True)


def test_missing_source_value_stays_missing(two_square_target):
    source = make_layer([
        ({"count": 10.0}, (0, 0, 1, 1)),
        ({"count": float("nan")}, (1, 0, 2, 1)),
    ])

    values = _by_id(interpolate(source, two_square_target, ["count"]), "count")

    assert values["T1"] == pytest.approx(10.0)
    assert np.isnan(values["T2"])


def test_edge_touching_fragments_are_excluded(two_square_target):
    # Source shares only the x=1 edge with T1
    source = make_layer([({"count": 10.0}, (1, 0, 2, 1))])

    fragments = overlap_fragments(source, two_square_target, ["count"])

    assert list(fragments["GEOID"]) == ["T2"]
    assert (fragments["fragment_area"] > 0).all()


def test_geographic_crs_rejected(wide_source, two_square_target):
    with pytest.raises(InvalidCRS):
        interpolate(
            wide_source.set_crs(4326, allow_override=True),
            two_square_target.set_crs(4326, allow_override=True),
            ["count"],
        )


def test_mismatched_crs_rejected(wide_source, two_square_target):
    with pytest.raises(InvalidCRS):
        interpolate(wide_source, two_square_target.set_crs(3857, allow_override=True), ["count"])


def test_missing_crs_rejected(wide_source, two_square_target):
    target = gpd.GeoDataFrame(two_square_target.drop(columns="geometry"),
                              geometry=list(two_square_target.geometry))
    with pytest.raises(InvalidCRS):
        interpolate(wide_source, target, ["count"])


def test_invalid_geometry_rejected(two_square_target):
    bowtie = Polygon([(0, 0), (1, 1), (1, 0), (0, 1)])
    source = gpd.GeoDataFrame({"count": [10.0]}, geometry=[bowtie], crs=two_square_target.crs)

    with pytest.raises(InvalidGeometry):
        interpolate(source, two_square_target, ["count"])


def test_zero_area_target_raises_empty_geometry(wide_source):
    target = make_layer([
        ({"GEOID": "T1"}, (0, 0, 1, 1)),
        ({"GEOID": "SPECK"}, (0.5, 0.5, 0.5001, 0.5001)),
    ])

    with pytest.raises(EmptyGeometry):
        interpolate(wide_source, target, ["count"])


def test_fraction_noise_clamped_to_one():
    # Snapping to a 0.1 grid grows T's 1.06 edge to 1.1, so the fragment
    # is larger than the unsnapped target area
    source = make_layer([({"count": 100.0}, (0, 0, 2, 2))])
    target = make_layer([({"GEOID": "T"}, (0, 0, 1.06, 1.06))])

    clamped = overlap_fragments(source, target, ["count"], config=GeometryConfig(grid_size=0.1))
    assert clamped["overlap_fraction"].iloc[0] == pytest.approx(1.0)

    unclamped = overlap_fragments(
        source, target, ["count"],
        config=GeometryConfig(grid_size=0.1, clamp_fractions=False),
    )
    assert unclamped["overlap_fraction"].iloc[0] > 1.0


def test_keep_geometry_returns_geodataframe(wide_source, two_square_target):
    estimates = interpolate(wide_source, two_square_target, ["count"], keep_geometry=True)

    assert isinstance(estimates, gpd.GeoDataFrame)
    assert estimates.crs == two_square_target.crs
    assert estimates.geometry.area.tolist() == pytest.approx([1.0, 1.0])


def test_missing_attribute_rejected(wide_source, two_square_target):
    with pytest.raises(ValueError, match="Missing attribute"):
        interpolate(wide_source, two_square_target, ["votes"])


def test_duplicate_target_ids_rejected(wide_source):
    target = make_layer([
        ({"GEOID": "T1"}, (0, 0, 1, 1)),
        ({"GEOID": "T1"}, (1, 0, 2, 1)),
    ])
    with pytest.raises(ValueError, match="duplicate"):
        interpolate(wide_source, target, ["count"])


def test_unknown_weight_mode_rejected(wide_source, two_square_target):
    with pytest.raises(ValueError, match="weight_by"):
        interpolate(wide_source, two_square_target, ["count"], weight_by="population")


def test_clipped_edge_slivers_do_not_abort_interpolation():
    source = make_layer([({"precinct": "P", "count": 100.0}, (0, 0, 1000, 1000))])
    target = make_layer([
        ({"GEOID": "T1"}, (0, 0, 1000, 1000)),
        ({"GEOID": "T2"}, (1000 - 1e-7, 500, 2000, 501)),
    ])

    (clipped,) = clip_to_common_extent(source, [target])
    estimates = interpolate(source, clipped, ["count"])

    assert _by_id(estimates, "count") == {"T1": pytest.approx(100.0)}
