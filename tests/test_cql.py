from datetime import datetime, timezone

import pytest
from shapely.geometry import Point

from dynaindex.exceptions import FilterParseError
from dynaindex.filters import ast
from dynaindex.filters.cql import parse_cql


def test_empty_filter_is_include():
    assert parse_cql("") is ast.INCLUDE
    assert parse_cql("   ") is ast.INCLUDE


def test_bbox():
    f = parse_cql("BBOX(geom, 44, 49.1, 46, 50.1)")
    assert f == ast.BBox("geom", 44.0, 49.1, 46.0, 50.1)


def test_comparisons_and_logic():
    f = parse_cql("name = 'bob' AND age > 5")
    assert f == ast.And((
        ast.Comparison("name", ast.ComparisonOp.EQ, "bob"),
        ast.Comparison("age", ast.ComparisonOp.GT, 5),
    ))


def test_not_and_between():
    f = parse_cql("NOT age BETWEEN 1 AND 3")
    assert f == ast.Not(ast.Between("age", 1, 3))
    assert parse_cql("age NOT BETWEEN 1 AND 3") == f


def test_ids_become_identifier_filters():
    assert parse_cql("id IN ('a', 'b')") == ast.IdIn(("a", "b"))
    assert parse_cql("id = 'a'") == ast.IdIn(("a",))
    assert parse_cql("fid = 'a'", id_attribute="fid") == ast.IdIn(("a",))
    assert parse_cql("name IN ('a', 'b')") == ast.In("name", ("a", "b"))


def test_during():
    f = parse_cql("dtg DURING 2020-01-01T00:00:00Z/2020-01-02T00:00:00Z")
    assert f == ast.Temporal(
        "dtg",
        ast.TemporalOp.DURING,
        datetime(2020, 1, 1, tzinfo=timezone.utc),
        datetime(2020, 1, 2, tzinfo=timezone.utc),
    )


def test_intersects_point():
    f = parse_cql("INTERSECTS(geom, POINT(1 2))")
    assert isinstance(f, ast.Spatial)
    assert f.op == ast.SpatialOp.INTERSECTS
    assert f.geometry.equals(Point(1, 2))


def test_like():
    f = parse_cql("name LIKE 'bo%'")
    assert isinstance(f, ast.Like)
    assert f.attribute == "name"
    assert f.pattern == "bo%"
    assert not f.nocase


def test_is_null():
    assert parse_cql("name IS NULL") == ast.IsNull("name")


def test_cql2_text():
    assert parse_cql("name = 'bob'", parser_type="cql2") == ast.Comparison("name", ast.ComparisonOp.EQ, "bob")


def test_quoted_filter_text():
    assert parse_cql('"age < 3"') == ast.Comparison("age", ast.ComparisonOp.LT, 3)


def test_invalid_filters():
    with pytest.raises(FilterParseError):
        parse_cql("name = ")
    with pytest.raises(ValueError):
        parse_cql("BBOX(geom, 1, 2")
    with pytest.raises(FilterParseError):
        parse_cql("name = 'bob'", parser_type="sql")


def test_unknown_properties():
    with pytest.raises(FilterParseError) as exc:
        parse_cql("name = 'bob' AND colour = 'red'", valid_props={"name", "age"})
    assert "colour" in str(exc.value)
    assert parse_cql("age > 1", valid_props={"age"}) == ast.Comparison("age", ast.ComparisonOp.GT, 1)


if __name__ == "__main__":
    pytest.main([__file__])
