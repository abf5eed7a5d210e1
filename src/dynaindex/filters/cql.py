#    Copyright 2025 FAO
# 
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
# 
#        http://www.apache.org/licenses/LICENSE-2.0
# 
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
# 
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Set

from pygeofilter import ast as pgf
from pygeofilter import values as pgf_values
from pygeofilter.parsers.cql2_text import parse as parse_cql2_text
from pygeofilter.parsers.ecql import parse as parse_ecql
from shapely.geometry import box, shape

from dynaindex.exceptions import FilterParseError
from dynaindex.filters import ast

logger = logging.getLogger(__name__)

# approximate length of one degree at the equator
_METERS_PER_DEGREE = 111_320.0

_UNITS_TO_METERS = {
    "meters": 1.0,
    "kilometers": 1000.0,
    "feet": 0.3048,
    "statute miles": 1609.344,
    "nautical miles": 1852.0,
}

_SPATIAL_OPS = {
    pgf.GeometryIntersects: ast.SpatialOp.INTERSECTS,
    pgf.GeometryWithin: ast.SpatialOp.WITHIN,
    pgf.GeometryContains: ast.SpatialOp.CONTAINS,
    pgf.GeometryEquals: ast.SpatialOp.EQUALS,
    pgf.GeometryOverlaps: ast.SpatialOp.OVERLAPS,
    pgf.GeometryCrosses: ast.SpatialOp.CROSSES,
    pgf.GeometryTouches: ast.SpatialOp.TOUCHES,
    pgf.GeometryDisjoint: ast.SpatialOp.DISJOINT,
}

_COMPARISON_OPS = {
    pgf.Equal: ast.ComparisonOp.EQ,
    pgf.NotEqual: ast.ComparisonOp.NE,
    pgf.LessThan: ast.ComparisonOp.LT,
    pgf.LessEqual: ast.ComparisonOp.LE,
    pgf.GreaterThan: ast.ComparisonOp.GT,
    pgf.GreaterEqual: ast.ComparisonOp.GE,
}

# operator to use when the attribute is on the right hand side
_SWAPPED = {
    ast.ComparisonOp.EQ: ast.ComparisonOp.EQ,
    ast.ComparisonOp.NE: ast.ComparisonOp.NE,
    ast.ComparisonOp.LT: ast.ComparisonOp.GT,
    ast.ComparisonOp.LE: ast.ComparisonOp.GE,
    ast.ComparisonOp.GT: ast.ComparisonOp.LT,
    ast.ComparisonOp.GE: ast.ComparisonOp.LE,
}


def _negate(f: ast.Filter, not_: bool) -> ast.Filter:
    return ast.Not(f) if not_ else f


class _Converter:
    """Converts a pygeofilter AST into a dynaindex filter."""

    def __init__(self, id_attribute: Optional[str]):
        self.id_attribute = id_attribute

    def convert(self, node) -> ast.Filter:
        if isinstance(node, pgf.Include):
            return ast.EXCLUDE if node.not_ else ast.INCLUDE
        if isinstance(node, pgf.And):
            return ast.And((self.convert(node.lhs), self.convert(node.rhs)))
        if isinstance(node, pgf.Or):
            return ast.Or((self.convert(node.lhs), self.convert(node.rhs)))
        if isinstance(node, pgf.Not):
            return ast.Not(self.convert(node.sub_node))
        if type(node) in _COMPARISON_OPS:
            return self._comparison(node)
        if isinstance(node, pgf.Between):
            f = ast.Between(self._attribute(node.lhs), self._value(node.low), self._value(node.high))
            return _negate(f, node.not_)
        if isinstance(node, pgf.In):
            return _negate(self._in(node), node.not_)
        if isinstance(node, pgf.Like):
            f = ast.Like(
                self._attribute(node.lhs),
                node.pattern,
                wildcard=node.wildcard,
                single_char=node.singlechar,
                escape_char=node.escapechar,
                nocase=node.nocase,
            )
            return _negate(f, node.not_)
        if isinstance(node, pgf.IsNull):
            return _negate(ast.IsNull(self._attribute(node.lhs)), node.not_)
        if isinstance(node, pgf.Exists):
            return _negate(ast.Not(ast.IsNull(self._attribute(node.lhs))), node.not_)
        if isinstance(node, pgf.BBox):
            return ast.BBox(
                self._attribute(node.lhs),
                float(node.minx), float(node.miny), float(node.maxx), float(node.maxy),
                crs=node.crs,
            )
        if type(node) in _SPATIAL_OPS:
            geometry, crs = self._geometry(node.rhs)
            return ast.Spatial(self._attribute(node.lhs), _SPATIAL_OPS[type(node)], geometry, crs=crs)
        if isinstance(node, pgf.SpatialDistancePredicate):
            return self._distance(node)
        if isinstance(node, pgf.TemporalPredicate):
            return self._temporal(node)
        raise FilterParseError(f"Unsupported filter node: {type(node).__name__}")

    # --- operands ---

    def _attribute(self, node) -> str:
        if isinstance(node, pgf.Attribute):
            return node.name
        raise FilterParseError(f"Expected an attribute, got: {node!r}")

    def _value(self, node) -> Any:
        if isinstance(node, pgf.Attribute):
            raise FilterParseError(f"Attribute '{node.name}' used where a value is expected")
        if isinstance(node, pgf.Function):
            return ast.Function(node.name, tuple(self._value(a) for a in node.arguments))
        if isinstance(node, pgf.Arithmetic):
            return ast.Function(type(node).__name__.lower(), (self._value(node.lhs), self._value(node.rhs)))
        if isinstance(node, datetime):
            return node if node.tzinfo else node.replace(tzinfo=timezone.utc)
        if isinstance(node, date):
            return datetime.combine(node, time.min, tzinfo=timezone.utc)
        return node

    def _geometry(self, node):
        if isinstance(node, pgf_values.Envelope):
            return box(node.x1, node.y1, node.x2, node.y2), None
        if isinstance(node, pgf_values.Geometry):
            crs = (node.geometry.get("crs") or {}).get("properties", {}).get("name")
            return shape(node.geometry), crs
        raise FilterParseError(f"Expected a geometry, got: {node!r}")

    # --- predicates ---

    def _comparison(self, node) -> ast.Filter:
        op = _COMPARISON_OPS[type(node)]
        if isinstance(node.lhs, pgf.Attribute):
            name, value = node.lhs.name, self._value(node.rhs)
        elif isinstance(node.rhs, pgf.Attribute):
            name, value, op = node.rhs.name, self._value(node.lhs), _SWAPPED[op]
        else:
            raise FilterParseError(f"Comparison without an attribute: {node}")
        if name == self.id_attribute and op == ast.ComparisonOp.EQ:
            return ast.IdIn((value,))
        return ast.Comparison(name, op, value)

    def _in(self, node) -> ast.Filter:
        name = self._attribute(node.lhs)
        values = tuple(self._value(v) for v in node.sub_nodes)
        if name == self.id_attribute:
            return ast.IdIn(values)
        return ast.In(name, values)

    def _distance(self, node) -> ast.Filter:
        geometry, crs = self._geometry(node.rhs)
        factor = _UNITS_TO_METERS.get(str(node.units).lower())
        if factor is None:
            raise FilterParseError(f"Unsupported distance units: {node.units}")
        distance = float(node.distance) * factor / _METERS_PER_DEGREE
        op = ast.SpatialOp.DWITHIN if isinstance(node, pgf.DistanceWithin) else ast.SpatialOp.BEYOND
        return ast.Spatial(self._attribute(node.lhs), op, geometry, distance=distance, crs=crs)

    def _instant(self, value) -> datetime:
        value = self._value(value)
        if not isinstance(value, datetime):
            raise FilterParseError(f"Expected a timestamp, got: {value!r}")
        return value

    def _interval(self, value):
        if not isinstance(value, pgf_values.Interval):
            instant = self._instant(value)
            return instant, instant
        start, end = value.start, value.end
        if isinstance(start, timedelta):
            end = self._instant(end)
            return end - start, end
        start = self._instant(start)
        if isinstance(end, timedelta):
            return start, start + end
        return start, self._instant(end)

    def _temporal(self, node) -> ast.Filter:
        name = self._attribute(node.lhs)
        start, end = self._interval(node.rhs)
        if isinstance(node, pgf.TimeDuring):
            return ast.Temporal(name, ast.TemporalOp.DURING, start, end)
        if isinstance(node, pgf.TimeBefore):
            return ast.Temporal(name, ast.TemporalOp.BEFORE, start)
        if isinstance(node, pgf.TimeAfter):
            return ast.Temporal(name, ast.TemporalOp.AFTER, end)
        if isinstance(node, pgf.TimeEquals):
            return ast.Temporal(name, ast.TemporalOp.TEQUALS, start)
        if isinstance(node, pgf.TimeBeforeOrDuring):
            return ast.Comparison(name, ast.ComparisonOp.LT, end)
        if isinstance(node, pgf.TimeDuringOrAfter):
            return ast.Comparison(name, ast.ComparisonOp.GT, start)
        raise FilterParseError(f"Unsupported temporal predicate: {type(node).__name__}")


def property_names(node) -> Set[str]:
    """Attribute names referenced by a pygeofilter AST node."""
    props = set()
    if isinstance(node, pgf.Attribute):
        props.add(node.name)
    for attr in ['lhs', 'rhs', 'sub_node']:
        child = getattr(node, attr, None)
        if child is not None and not isinstance(child, (str, int, float)):
            props.update(property_names(child))
    for attr in ['sub_nodes', 'arguments']:
        children = getattr(node, attr, None)
        if children:
            for child in children:
                props.update(property_names(child))
    return props


def parse_cql(
    cql_text: str,
    parser_type: str = 'ecql',
    id_attribute: Optional[str] = "id",
    valid_props: Optional[Set[str]] = None,
) -> ast.Filter:
    """
    Parses a CQL filter string (ECQL or CQL2 text) into a filter AST.

    Equality and IN predicates on `id_attribute` become identifier filters.
    An empty string is INCLUDE.

    Raises:
        FilterParseError: If the text is invalid, uses an unsupported construct or
                          references properties outside `valid_props`.
    """
    if not cql_text or not cql_text.strip():
        return ast.INCLUDE

    if len(cql_text) >= 2 and cql_text.startswith('"') and cql_text.endswith('"'):
        cql_text = cql_text[1:-1]

    try:
        if parser_type.lower() == 'cql2':
            tree = parse_cql2_text(cql_text)
        elif parser_type.lower() == 'ecql':
            tree = parse_ecql(cql_text)
        else:
            raise FilterParseError(f"Unknown parser type: {parser_type}")

        if valid_props is not None:
            invalid_props = property_names(tree) - set(valid_props)
            if invalid_props:
                raise FilterParseError(
                    f"Unknown properties: {', '.join(sorted(invalid_props))}. "
                    f"Available properties: {', '.join(sorted(valid_props))}."
                )

        result = _Converter(id_attribute).convert(tree)
        logger.debug(f"Parsed {parser_type.upper()} filter '{cql_text}' into {result}")
        return result
    except FilterParseError:
        raise
    except Exception as e:
        raise FilterParseError(f"Invalid {parser_type.upper()} filter: {e}") from e
