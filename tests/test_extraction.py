from datetime import datetime, timezone

import pytest
from shapely.geometry import Polygon

from dynaindex.filters import ast
from dynaindex.filters.extraction import (
    Bounds,
    extract_bounds,
    extract_geometries,
    extract_ids,
    intersect_id_filters,
    merge_bounds,
    on_attributes,
    split_filter,
    split_id_filter,
)

T1 = datetime(2020, 1, 1, tzinfo=timezone.utc)
T2 = datetime(2020, 1, 2, tzinfo=timezone.utc)


def bbox(xmin, ymin, xmax, ymax, crs=None):
    return ast.BBox("geom", xmin, ymin, xmax, ymax, crs=crs)


# --- identifiers ---

def test_split_id_filter_from_a_conjunction():
    ids = ast.IdIn(("a",))
    rest = ast.Comparison("name", ast.ComparisonOp.EQ, "bob")
    assert split_id_filter(ast.And((ids, rest))) == (ids, rest)
    assert split_id_filter(ids) == (ids, None)


def test_or_mixing_ids_and_attributes_is_not_separable():
    f = ast.Or((ast.IdIn(("a",)), ast.Comparison("name", ast.ComparisonOp.EQ, "bob")))
    assert split_id_filter(f) == (None, f)
    assert extract_ids(f).unconstrained


def test_function_ids_are_not_literals():
    f = ast.IdIn((ast.Function("uuid"),))
    assert split_id_filter(f) == (None, f)


def test_id_sets_intersect_and_union():
    a, b = ast.IdIn(("a", "b")), ast.IdIn(("b", "c"))
    assert intersect_id_filters(ast.And((a, b))) == frozenset({"b"})
    assert intersect_id_filters(ast.Or((a, b))) == frozenset({"a", "b", "c"})
    assert extract_ids(ast.And((a, b))).values == ("b",)
    assert extract_ids(ast.And((ast.IdIn(("a",)), ast.IdIn(("c",))))).disjoint


# --- geometries ---

def test_bbox_geometry_is_precise():
    values = extract_geometries(bbox(0, 0, 10, 10), "geom")
    assert values.precise
    assert [g.bounds for g in values.values] == [(0.0, 0.0, 10.0, 10.0)]


def test_other_geometry_attributes_are_ignored():
    assert extract_geometries(ast.BBox("other", 0, 0, 1, 1), "geom").unconstrained


def test_bbox_crossing_the_antimeridian_is_split():
    values = extract_geometries(bbox(170, -10, -170, 10), "geom")
    assert sorted(g.bounds for g in values.values) == [(-180.0, -10.0, -170.0, 10.0), (170.0, -10.0, 180.0, 10.0)]


def test_bbox_outside_the_world_is_clipped():
    values = extract_geometries(bbox(170, 80, 200, 100), "geom")
    assert [g.bounds for g in values.values] == [(170.0, 80.0, 180.0, 90.0)]


def test_bbox_in_another_crs_is_reprojected():
    values = extract_geometries(bbox(0, 0, 1113194.9079327357, 1118889.9748579594, crs="EPSG:3857"), "geom")
    assert not values.precise
    assert values.values[0].bounds == pytest.approx((0.0, 0.0, 10.0, 10.0), abs=1e-4)


def test_intersecting_bboxes():
    values = extract_geometries(ast.And((bbox(0, 0, 10, 10), bbox(5, 5, 20, 20))), "geom")
    assert [g.bounds for g in values.values] == [(5.0, 5.0, 10.0, 10.0)]
    assert extract_geometries(ast.And((bbox(0, 0, 1, 1), bbox(5, 5, 6, 6))), "geom").disjoint


def test_or_of_bboxes_keeps_both():
    values = extract_geometries(ast.Or((bbox(0, 0, 1, 1), bbox(5, 5, 6, 6))), "geom")
    assert len(values.values) == 2
    assert values.precise


def test_or_with_an_unconstrained_branch():
    f = ast.Or((bbox(0, 0, 1, 1), ast.Comparison("name", ast.ComparisonOp.EQ, "bob")))
    assert extract_geometries(f, "geom").unconstrained


def test_non_rectangular_geometries_are_imprecise():
    triangle = Polygon([(0, 0), (10, 0), (0, 10)])
    values = extract_geometries(ast.Spatial("geom", ast.SpatialOp.INTERSECTS, triangle), "geom")
    assert not values.precise
    assert values.values[0].equals(triangle)


def test_disjoint_and_dwithin():
    square = Polygon([(0, 0), (1, 0), (1, 1), (0, 1)])
    disjoint = extract_geometries(ast.Spatial("geom", ast.SpatialOp.DISJOINT, square), "geom")
    assert disjoint.unconstrained and not disjoint.precise
    dwithin = extract_geometries(ast.Spatial("geom", ast.SpatialOp.DWITHIN, square, distance=1.0), "geom")
    assert not dwithin.precise
    assert dwithin.values[0].bounds == pytest.approx((-1.0, -1.0, 2.0, 2.0))


def test_exclude_is_disjoint():
    assert extract_geometries(ast.EXCLUDE, "geom").disjoint
    assert extract_geometries(ast.INCLUDE, "geom").unconstrained
    assert extract_geometries(None, "geom").unconstrained


# --- bounds ---

def test_between_and_comparisons():
    assert extract_bounds(ast.Between("age", 10, 20), "age").values == (Bounds(10, 20),)
    f = ast.And((
        ast.Comparison("age", ast.ComparisonOp.GT, 5),
        ast.Comparison("age", ast.ComparisonOp.LT, 10),
    ))
    assert extract_bounds(f, "age").values == (Bounds(5, 10, False, False),)


def test_not_equal_is_two_ranges():
    values = extract_bounds(ast.Comparison("age", ast.ComparisonOp.NE, 5), "age")
    assert values.values == (Bounds(None, 5, True, False), Bounds(5, None, False, True))


def test_or_of_equalities():
    f = ast.Or((
        ast.Comparison("name", ast.ComparisonOp.EQ, "b"),
        ast.Comparison("name", ast.ComparisonOp.EQ, "a"),
    ))
    assert extract_bounds(f, "name").values == (Bounds.equals("a"), Bounds.equals("b"))
    assert extract_bounds(ast.In("name", ("a", "a", "c")), "name").values == (Bounds.equals("a"), Bounds.equals("c"))


def test_contradictions_are_disjoint():
    f = ast.And((
        ast.Comparison("age", ast.ComparisonOp.EQ, 1),
        ast.Comparison("age", ast.ComparisonOp.EQ, 2),
    ))
    assert extract_bounds(f, "age").disjoint
    assert extract_bounds(ast.Between("age", 5, 1), "age").disjoint


def test_like_prefix():
    values = extract_bounds(ast.Like("name", "bo%"), "name")
    assert not values.precise
    (b,) = values.values
    assert b.lower == "bo" and b.lower_inclusive and not b.upper_inclusive
    assert "bob" > b.lower and "bob" < b.upper
    assert extract_bounds(ast.Like("name", "%ob"), "name").unconstrained
    assert extract_bounds(ast.Like("name", "b_b%"), "name").unconstrained


def test_function_values_are_unconstrained():
    values = extract_bounds(ast.Comparison("age", ast.ComparisonOp.EQ, ast.Function("now")), "age")
    assert values.unconstrained
    assert not values.precise


def test_temporal_bounds():
    during = extract_bounds(ast.Temporal("dtg", ast.TemporalOp.DURING, T1, T2), "dtg")
    assert during.values == (Bounds(T1, T2, False, False),)
    before = extract_bounds(ast.Temporal("dtg", ast.TemporalOp.BEFORE, T1), "dtg")
    assert before.values == (Bounds(None, T1, True, False),)
    after = extract_bounds(ast.Temporal("dtg", ast.TemporalOp.AFTER, T1), "dtg")
    assert after.values == (Bounds(T1, None, False, True),)
    tequals = extract_bounds(ast.Temporal("dtg", ast.TemporalOp.TEQUALS, T1), "dtg")
    assert tequals.values == (Bounds.equals(T1),)


def test_naive_datetimes_are_utc():
    naive = datetime(2020, 1, 1)
    values = extract_bounds(ast.Comparison("dtg", ast.ComparisonOp.GE, naive), "dtg")
    assert values.values == (Bounds(T1, None),)


def test_negation_is_imprecise_for_its_attribute():
    f = ast.Not(ast.Comparison("age", ast.ComparisonOp.EQ, 1))
    assert not extract_bounds(f, "age").precise
    assert extract_bounds(f, "name").precise


def test_merge_bounds():
    merged = merge_bounds([Bounds(5, 10), Bounds(1, 5, True, False), Bounds(20, None)])
    assert merged == [Bounds(1, 10), Bounds(20, None)]
    assert merge_bounds([Bounds(1, 5, True, False), Bounds(5, 6, False, True)]) == [
        Bounds(1, 5, True, False), Bounds(5, 6, False, True)
    ]


# --- partitioning ---

def test_split_filter_on_attributes():
    spatial = bbox(0, 0, 1, 1)
    temporal = ast.Temporal("dtg", ast.TemporalOp.DURING, T1, T2)
    name = ast.Comparison("name", ast.ComparisonOp.EQ, "bob")
    f = ast.And((spatial, temporal, name))
    assert split_filter(f, on_attributes(["geom", "dtg"])) == (ast.And((spatial, temporal)), name)
    assert split_filter(f, on_attributes(["geom"])) == (spatial, ast.And((temporal, name)))
    assert split_filter(name, on_attributes(["geom"])) == (None, name)


def test_clauses_with_ids_are_never_accepted():
    f = ast.Or((ast.IdIn(("a",)), bbox(0, 0, 1, 1)))
    assert split_filter(f, on_attributes(["geom"])) == (None, f)


if __name__ == "__main__":
    pytest.main([__file__])
