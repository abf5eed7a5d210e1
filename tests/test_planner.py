import math
from datetime import timedelta

import pytest
from shapely.geometry import Polygon

from dynaindex.filters import ast
from dynaindex.filters.cql import parse_cql
from dynaindex.filters.evaluate import evaluate
from dynaindex.index.indices import FeatureIndex, FullScanIndex, feature_indices
from dynaindex.index.keyspace import ByteRange
from dynaindex.models import FeatureSchema, StaticStatistics
from dynaindex.planning.decider import StrategyDecider
from dynaindex.planning.planner import QueryPlanner


def _window(t0):
    return ast.And((
        ast.BBox("geom", 44.0, 49.1, 46.0, 50.1),
        ast.Temporal("dtg", ast.TemporalOp.DURING, t0 - timedelta(hours=1), t0 + timedelta(hours=1)),
    ))


def _scan_matches(plan, index, feature, schema):
    """Replays a plan against one feature the way a storage layer would."""
    for scan in plan.scans:
        if scan.strategy.index.name != index.name:
            continue
        row = index.key_space.to_index_key(feature)
        in_range = any(r.start <= row and (r.end is None or row < r.end) for r in scan.byte_ranges)
        if not in_range:
            continue
        if scan.key_filter is not None and not scan.key_filter(row):
            continue
        if evaluate(scan.secondary, feature, schema.geometry_attribute, schema.id_attribute):
            return True
    return False


def test_spatio_temporal_filter_uses_z3(planner, schema, features, t0):
    plan = planner.plan(_window(t0))
    (scan,) = plan.scans
    assert scan.strategy.index.name == "z3:geom:dtg"
    assert scan.secondary is None
    assert scan.byte_ranges
    assert not plan.deduplicate

    z3 = next(i for i in planner.indices if i.name == "z3:geom:dtg")
    matched = {f.id for f in features if _scan_matches(plan, z3, f, schema)}
    assert matched == {"inside-1", "inside-2"}


def test_spatial_filter_uses_z2(planner):
    plan = planner.plan(parse_cql("BBOX(geom, 44, 49.1, 46, 50.1)"))
    assert plan.strategies[0].index.name == "z2:geom"
    assert plan.strategies[0].secondary is None


def test_temporal_filter_uses_z3_at_a_higher_cost(planner, t0):
    temporal = planner.plan(ast.Temporal("dtg", ast.TemporalOp.DURING, t0, t0 + timedelta(hours=1)))
    spatio_temporal = planner.plan(_window(t0))
    assert temporal.strategies[0].index.name == "z3:geom:dtg"
    assert temporal.cost >= 40
    assert temporal.cost > spatio_temporal.cost


def test_open_ended_intervals_fall_back_to_a_full_scan(planner, t0):
    f = ast.Temporal("dtg", ast.TemporalOp.AFTER, t0)
    strategy = planner.plan(f).strategies[0]
    assert strategy.is_full_scan
    assert strategy.secondary == f


def test_identifiers_win_over_spatio_temporal(planner, t0):
    f = ast.And((ast.IdIn(("inside-1",)),) + _window(t0).children)
    strategies = planner.decider.get_filter_strategies(f)
    best = strategies[0]
    z3 = next(s for s in strategies if s.index.name == "z3:geom:dtg")
    assert best.index.name == "id"
    assert best.cost < z3.cost
    assert best.primary == ast.IdIn(("inside-1",))
    assert best.secondary == _window(t0)

    (scan,) = planner.plan(f).scans
    assert scan.byte_ranges == [ByteRange(b"inside-1", b"inside-1\x00")]


def test_function_identifiers_are_not_separable(planner):
    f = ast.IdIn((ast.Function("random_id"),))
    strategy = planner.plan(f).strategies[0]
    assert strategy.is_full_scan
    assert strategy.secondary == f


def test_include_without_indices_is_a_full_scan():
    schema = FeatureSchema.create(name="records", geometry_attribute=None, dtg_attribute=None)
    plan = QueryPlanner(schema).plan(ast.INCLUDE)
    (scan,) = plan.scans
    assert scan.strategy.is_full_scan
    assert math.isinf(scan.strategy.cost)
    assert scan.secondary is None
    assert scan.byte_ranges == [ByteRange(b"", None, False)]


def test_include_sorted_by_id_uses_the_id_index(planner):
    plan = planner.plan(None, sort_by="id")
    strategy = plan.strategies[0]
    assert strategy.index.name == "id"
    assert strategy.primary is None
    assert plan.scans[0].byte_ranges == [ByteRange(b"", None, False)]
    assert planner.plan().strategies[0].is_full_scan


def test_exclude_and_disjoint_filters_plan_nothing(planner):
    assert planner.plan(ast.EXCLUDE).is_empty
    disjoint = ast.And((ast.BBox("geom", 0, 0, 1, 1), ast.BBox("geom", 5, 5, 6, 6)))
    plan = planner.plan(disjoint)
    assert plan.is_empty
    assert plan.cost == 0


def test_imprecise_geometries_keep_the_primary_as_secondary(planner):
    triangle = ast.Spatial("geom", ast.SpatialOp.INTERSECTS, Polygon([(0, 0), (10, 0), (0, 10)]))
    (scan,) = planner.plan(triangle).scans
    assert scan.strategy.index.name == "z2:geom"
    assert scan.secondary == triangle
    assert scan.key_filter is not None


def test_or_across_indices_is_split_into_scans(planner):
    f = ast.Or((ast.IdIn(("a",)), ast.BBox("geom", 0, 0, 1, 1)))
    plan = planner.plan(f)
    assert [s.index.name for s in plan.strategies] == ["id", "z2:geom"]
    assert plan.deduplicate
    assert plan.cost < math.inf


def test_or_on_one_index_stays_a_single_scan(planner):
    f = ast.Or((ast.BBox("geom", 0, 0, 1, 1), ast.BBox("geom", 5, 5, 6, 6)))
    plan = planner.plan(f)
    assert [s.index.name for s in plan.strategies] == ["z2:geom"]
    assert not plan.deduplicate


def test_max_ranges_bounds_the_scan(planner):
    plan = planner.plan(ast.BBox("geom", -170.0, -80.0, 170.0, 80.0), max_ranges=10)
    (scan,) = plan.scans
    shards = scan.strategy.index.key_space.sharding.count
    assert len(scan.ranges) // shards <= 10
    assert len(scan.byte_ranges) == len(scan.ranges)


def test_attribute_index_costs(attribute_schema):
    planner = QueryPlanner(attribute_schema)
    equals = planner.plan(parse_cql("name = 'bob'")).strategies[0]
    assert equals.index.name == "attr:name"
    assert equals.cost == 30
    greater = planner.plan(parse_cql("name > 'b'")).strategies[0]
    assert greater.cost == 60
    like = planner.plan(parse_cql("name LIKE 'bo%'")).strategies[0]
    assert like.index.name == "attr:name"
    assert like.cost == 90
    assert isinstance(like.secondary, ast.Like)


def test_attribute_statistics_drive_the_cost(attribute_schema):
    stats = StaticStatistics({"name": {"bob": 10, "alice": 1000}})
    planner = QueryPlanner(attribute_schema, stats)
    strategy = planner.plan(parse_cql("name = 'bob'")).strategies[0]
    assert strategy.cost == pytest.approx(0.1)


def test_ties_prefer_the_requested_sort_then_declaration_order():
    schema = FeatureSchema.from_user_data("people", {"dynaindex.indices.enabled": "attr:name,attr:age,id"})
    planner = QueryPlanner(schema)
    f = parse_cql("name = 'a' AND age = 3")
    assert planner.plan(f).strategies[0].index.name == "attr:name"
    assert planner.plan(f, sort_by="age").strategies[0].index.name == "attr:age"


def test_decider_requires_a_full_scan(schema):
    indices = [i for i in feature_indices(schema) if not i.is_full_scan]
    with pytest.raises(ValueError):
        StrategyDecider(indices)


def test_feature_index_is_abstract(schema):
    with pytest.raises(TypeError):
        FeatureIndex(schema, schema.index("z2:geom"))
    strategy = FullScanIndex(schema).get_filter_strategy(ast.BBox("geom", 0.0, 0.0, 1.0, 1.0))
    assert strategy.is_full_scan
    assert strategy.secondary == ast.BBox("geom", 0.0, 0.0, 1.0, 1.0)


def test_plan_description(planner, t0):
    text = str(planner.plan(_window(t0)))
    assert "z3:geom:dtg" in text
    assert "empty" in str(planner.plan(ast.EXCLUDE))


if __name__ == "__main__":
    pytest.main([__file__])
