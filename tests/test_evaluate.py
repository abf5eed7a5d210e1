from datetime import datetime, timedelta, timezone

import pytest
from shapely.geometry import Point, Polygon

from dynaindex.exceptions import FilterEvaluationError
from dynaindex.filters import ast
from dynaindex.filters.evaluate import evaluate
from dynaindex.models import Feature

T = datetime(2020, 1, 1, 12, tzinfo=timezone.utc)


@pytest.fixture
def feature():
    return Feature(
        id="f1",
        geometry=Point(1.0, 1.0),
        properties={"name": "bob", "age": 30, "dtg": T},
    )


def test_include_exclude_and_none(feature):
    assert evaluate(ast.INCLUDE, feature)
    assert not evaluate(ast.EXCLUDE, feature)
    assert evaluate(None, feature)


def test_comparisons(feature):
    op = ast.ComparisonOp
    assert evaluate(ast.Comparison("name", op.EQ, "bob"), feature)
    assert evaluate(ast.Comparison("name", op.NE, "alice"), feature)
    assert evaluate(ast.Comparison("age", op.LT, 31), feature)
    assert evaluate(ast.Comparison("age", op.LE, 30), feature)
    assert not evaluate(ast.Comparison("age", op.GT, 30), feature)
    assert evaluate(ast.Comparison("age", op.GE, 30), feature)
    assert not evaluate(ast.Comparison("missing", op.EQ, 1), feature)


def test_incomparable_values_raise(feature):
    with pytest.raises(FilterEvaluationError):
        evaluate(ast.Comparison("name", ast.ComparisonOp.LT, 3), feature)
    with pytest.raises(FilterEvaluationError):
        evaluate(ast.Comparison("age", ast.ComparisonOp.EQ, ast.Function("random")), feature)


def test_between_in_and_null(feature):
    assert evaluate(ast.Between("age", 30, 40), feature)
    assert not evaluate(ast.Between("age", 31, 40), feature)
    assert evaluate(ast.In("name", ("alice", "bob")), feature)
    assert not evaluate(ast.In("name", ("carol",)), feature)
    assert evaluate(ast.IsNull("missing"), feature)
    assert not evaluate(ast.IsNull("name"), feature)


def test_like(feature):
    assert evaluate(ast.Like("name", "bo%"), feature)
    assert evaluate(ast.Like("name", "b_b"), feature)
    assert not evaluate(ast.Like("name", "B%"), feature)
    assert evaluate(ast.Like("name", "B%", nocase=True), feature)
    assert not evaluate(ast.Like("name", "b\\%"), feature)


def test_logic(feature):
    yes = ast.Comparison("name", ast.ComparisonOp.EQ, "bob")
    no = ast.Comparison("name", ast.ComparisonOp.EQ, "carol")
    assert evaluate(yes & ~no, feature)
    assert evaluate(no | yes, feature)
    assert not evaluate(ast.And((yes, no)), feature)


def test_ids(feature):
    assert evaluate(ast.IdIn(("f1", "f2")), feature)
    assert not evaluate(ast.IdIn(("f2",)), feature)
    assert evaluate(ast.Comparison("id", ast.ComparisonOp.EQ, "f1"), feature)


def test_bbox(feature):
    assert evaluate(ast.BBox("geom", 0, 0, 2, 2), feature)
    assert not evaluate(ast.BBox("geom", 5, 5, 6, 6), feature)
    assert not evaluate(ast.BBox("other", 0, 0, 2, 2), feature)


def test_bbox_across_the_antimeridian():
    feature = Feature(id="f", geometry=Point(179.5, 0.0))
    assert evaluate(ast.BBox("geom", 170, -10, -170, 10), feature)
    assert not evaluate(ast.BBox("geom", -170, -10, 170, 10), Feature(id="g", geometry=Point(175.0, 0.0)))


def test_spatial_predicates(feature):
    square = Polygon([(0, 0), (2, 0), (2, 2), (0, 2)])
    op = ast.SpatialOp
    assert evaluate(ast.Spatial("geom", op.INTERSECTS, square), feature)
    assert evaluate(ast.Spatial("geom", op.WITHIN, square), feature)
    assert not evaluate(ast.Spatial("geom", op.CONTAINS, square), feature)
    assert not evaluate(ast.Spatial("geom", op.DISJOINT, square), feature)
    assert evaluate(ast.Spatial("geom", op.DWITHIN, Point(2.0, 1.0), distance=1.0), feature)
    assert not evaluate(ast.Spatial("geom", op.BEYOND, Point(2.0, 1.0), distance=1.0), feature)
    assert evaluate(ast.Spatial("geom", op.BEYOND, Point(5.0, 1.0), distance=1.0), feature)


def test_temporal(feature):
    op = ast.TemporalOp
    hour = timedelta(hours=1)
    assert evaluate(ast.Temporal("dtg", op.DURING, T - hour, T + hour), feature)
    assert not evaluate(ast.Temporal("dtg", op.DURING, T, T + hour), feature)
    assert evaluate(ast.Temporal("dtg", op.BEFORE, T + hour), feature)
    assert evaluate(ast.Temporal("dtg", op.AFTER, T - hour), feature)
    assert evaluate(ast.Temporal("dtg", op.TEQUALS, T), feature)
    assert not evaluate(ast.Temporal("missing", op.TEQUALS, T), feature)


def test_features_from_geojson_and_wkt():
    from_geojson = Feature(id=7, geometry={"type": "Point", "coordinates": [1.0, 2.0]})
    from_wkt = Feature(id="7", geometry="POINT (1 2)")
    assert from_geojson.id == "7"
    assert from_geojson.geometry.equals(from_wkt.geometry)
    with pytest.raises(ValueError):
        Feature(id="", geometry="POINT (1 2)")


if __name__ == "__main__":
    pytest.main([__file__])
