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

"""
Extraction of index-usable values from a filter.

Each extractor walks the filter for a single attribute and returns a `FilterValues`:
the extracted values (geometries, bounds, ids), whether they capture the predicate
exactly (`precise`) and whether no feature can match at all (`disjoint`). An empty,
non-disjoint result means the attribute is unconstrained.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, FrozenSet, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar

from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from dynaindex.curve.binned_time import to_datetime
from dynaindex.filters import ast
from dynaindex.filters.visitor import FilterVisitor, attribute_names
from dynaindex.tools.geospatial import WHOLE_WORLD, is_rectangle, split_antimeridian, to_wgs84

logger = logging.getLogger(__name__)

T = TypeVar("T")

_WORLD = box(*WHOLE_WORLD)


@dataclass(frozen=True)
class FilterValues(Generic[T]):
    values: Tuple[T, ...] = ()
    precise: bool = True
    disjoint: bool = False

    @property
    def unconstrained(self) -> bool:
        return not self.values and not self.disjoint

    @classmethod
    def empty(cls, precise: bool = True) -> "FilterValues":
        return cls((), precise, False)

    @classmethod
    def nothing(cls) -> "FilterValues":
        return cls((), True, True)


@dataclass(frozen=True)
class Bounds:
    """A range over an ordered attribute; a `None` side is unbounded."""
    lower: Any = None
    upper: Any = None
    lower_inclusive: bool = True
    upper_inclusive: bool = True

    @classmethod
    def equals(cls, value) -> "Bounds":
        return cls(value, value, True, True)

    @property
    def is_equals(self) -> bool:
        return self.lower is not None and self.lower == self.upper and self.lower_inclusive and self.upper_inclusive

    @property
    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower > self.upper:
            return True
        return self.lower == self.upper and not (self.lower_inclusive and self.upper_inclusive)

    def intersect(self, other: "Bounds") -> Optional["Bounds"]:
        lower, lower_inclusive = _pick(self.lower, self.lower_inclusive, other.lower, other.lower_inclusive, max)
        upper, upper_inclusive = _pick(self.upper, self.upper_inclusive, other.upper, other.upper_inclusive, min)
        result = Bounds(lower, upper, lower_inclusive, upper_inclusive)
        return None if result.is_empty else result

    def overlaps_or_touches(self, other: "Bounds") -> bool:
        first, second = sorted((self, other), key=_lower_sort_key)
        if first.upper is None or second.lower is None:
            return True
        if first.upper > second.lower:
            return True
        return first.upper == second.lower and (first.upper_inclusive or second.lower_inclusive)

    def union(self, other: "Bounds") -> "Bounds":
        """Union of two overlapping or touching bounds."""
        lower, lower_inclusive = _pick(self.lower, self.lower_inclusive, other.lower, other.lower_inclusive, min, True)
        upper, upper_inclusive = _pick(self.upper, self.upper_inclusive, other.upper, other.upper_inclusive, max, True)
        return Bounds(lower, upper, lower_inclusive, upper_inclusive)


def _pick(a, a_inc, b, b_inc, choose, unbounded_wins=False):
    if a is None or b is None:
        if unbounded_wins:
            return None, True
        return (b, b_inc) if a is None else (a, a_inc)
    if a == b:
        # tighter side for intersections, looser side for unions
        return a, (a_inc or b_inc) if unbounded_wins else (a_inc and b_inc)
    chosen = choose(a, b)
    return (a, a_inc) if chosen is a else (b, b_inc)


def _lower_sort_key(b: Bounds):
    return (b.lower is not None, b.lower if b.lower is not None else 0)


def merge_bounds(bounds: Iterable[Bounds]) -> List[Bounds]:
    """Sorts bounds and unions the ones that overlap or touch."""
    ordered = sorted(bounds, key=_lower_sort_key)
    merged: List[Bounds] = []
    for b in ordered:
        if merged and merged[-1].overlaps_or_touches(b):
            merged[-1] = merged[-1].union(b)
        else:
            merged.append(b)
    return merged


def _normalize_value(value):
    if isinstance(value, datetime):
        return to_datetime(value)
    return value


# --- identifiers ---

def _literal_ids(f: ast.IdIn) -> Optional[FrozenSet]:
    if any(isinstance(v, ast.Function) for v in f.ids):
        return None
    return frozenset(f.ids)


def _is_id_only(f: ast.Filter) -> bool:
    if isinstance(f, ast.IdIn):
        return _literal_ids(f) is not None
    if isinstance(f, (ast.And, ast.Or)):
        return all(_is_id_only(c) for c in f.children)
    return False


def split_id_filter(f: ast.Filter) -> Tuple[Optional[ast.Filter], Optional[ast.Filter]]:
    """
    Splits a filter into (identifier part, rest).

    The identifier part is only returned when it is provably separable: the whole
    filter, or conjuncts of a top-level AND, made only of literal identifier clauses.
    """
    if _is_id_only(f):
        return f, None
    if isinstance(f, ast.And):
        ids = [c for c in f.children if _is_id_only(c)]
        if ids:
            rest = [c for c in f.children if not _is_id_only(c)]
            return ast.and_option(ids), ast.and_option(rest)
    return None, f


def intersect_id_filters(f: ast.Filter) -> FrozenSet:
    """Resolves an identifier-only filter to its id set: AND intersects, OR unions."""
    if isinstance(f, ast.IdIn):
        ids = _literal_ids(f)
        if ids is None:
            raise ValueError(f"Identifier filter is not a literal set: {f}")
        return ids
    if isinstance(f, ast.And):
        result = None
        for child in f.children:
            ids = intersect_id_filters(child)
            result = ids if result is None else result & ids
        return result or frozenset()
    if isinstance(f, ast.Or):
        result = frozenset()
        for child in f.children:
            result |= intersect_id_filters(child)
        return result
    raise ValueError(f"Not an identifier filter: {f}")


def extract_ids(f: Optional[ast.Filter]) -> FilterValues:
    """Identifier values of the separable id part of a filter."""
    if f is None:
        return FilterValues.empty()
    id_filter, _ = split_id_filter(f)
    if id_filter is None:
        return FilterValues.empty()
    ids = intersect_id_filters(id_filter)
    if not ids:
        return FilterValues.nothing()
    return FilterValues(tuple(sorted(ids, key=str)))


# --- geometries ---

class _GeometryExtractor(FilterVisitor):

    def __init__(self, attribute: str):
        self.attribute = attribute

    def visit_include(self, f):
        return FilterValues.empty()

    def visit_exclude(self, f):
        return FilterValues.nothing()

    def visit_and(self, f):
        result: Optional[FilterValues] = None
        precise = True
        for child in f.children:
            values = self.visit(child)
            precise = precise and values.precise
            if values.disjoint:
                return FilterValues.nothing()
            if values.unconstrained:
                continue
            if result is None:
                result = values
                continue
            intersections = []
            for a in result.values:
                for b in values.values:
                    inter = a.intersection(b)
                    if not inter.is_empty:
                        intersections.append(inter)
            if not intersections:
                return FilterValues.nothing()
            result = FilterValues(tuple(intersections))
        if result is None:
            return FilterValues.empty(precise)
        return replace(result, precise=precise)

    def visit_or(self, f):
        values: List[BaseGeometry] = []
        precise = True
        for child in f.children:
            child_values = self.visit(child)
            if child_values.disjoint:
                continue
            if child_values.unconstrained:
                return FilterValues.empty(precise and child_values.precise)
            precise = precise and child_values.precise
            values.extend(child_values.values)
        if not values:
            return FilterValues.nothing()
        return FilterValues(tuple(values), precise)

    def visit_not(self, f):
        return FilterValues.empty(self.attribute not in attribute_names(f.child))

    def _other(self, f):
        return FilterValues.empty()

    visit_id_in = _other
    visit_temporal = _other

    def _attribute_clause(self, f):
        # non-spatial clause on the geometry attribute cannot be extracted
        return FilterValues.empty(f.attribute != self.attribute)

    visit_comparison = _attribute_clause
    visit_between = _attribute_clause
    visit_in = _attribute_clause
    visit_like = _attribute_clause
    visit_is_null = _attribute_clause

    def visit_bbox(self, f):
        if f.attribute != self.attribute:
            return FilterValues.empty()
        geoms = []
        precise = True
        for xmin, ymin, xmax, ymax in split_antimeridian((f.xmin, f.ymin, f.xmax, f.ymax)):
            geom = box(xmin, ymin, xmax, ymax)
            transformed = to_wgs84(geom, f.crs)
            if transformed is not geom:
                # the envelope of a reprojected box is wider than the box itself
                precise = False
                transformed = box(*transformed.bounds)
            geoms.append(transformed)
        return _clip(geoms, precise)

    def visit_spatial(self, f):
        if f.attribute != self.attribute:
            return FilterValues.empty()
        if f.op in (ast.SpatialOp.DISJOINT, ast.SpatialOp.BEYOND):
            return FilterValues.empty(False)
        geom = to_wgs84(f.geometry, f.crs)
        precise = f.op == ast.SpatialOp.INTERSECTS and is_rectangle(geom) and geom is f.geometry
        if f.op == ast.SpatialOp.DWITHIN:
            geom = geom.buffer(f.distance or 0.0)
            precise = False
        return _clip([geom], precise)


def _clip(geoms: Sequence[BaseGeometry], precise: bool) -> FilterValues:
    clipped = []
    for geom in geoms:
        inter = geom.intersection(_WORLD)
        if not inter.is_empty:
            clipped.append(inter)
    if not clipped:
        return FilterValues.nothing()
    return FilterValues(tuple(clipped), precise)


def extract_geometries(f: Optional[ast.Filter], attribute: str) -> FilterValues:
    """
    Geometries (EPSG:4326, clipped to the world) that bound the features matching `f`
    on `attribute`. BBOX filters in other CRSs are reprojected with pyproj and boxes
    crossing the antimeridian are split in two.
    """
    if f is None:
        return FilterValues.empty()
    return _GeometryExtractor(attribute).visit(f)


# --- attribute and temporal bounds ---

class _BoundsExtractor(FilterVisitor):

    def __init__(self, attribute: str):
        self.attribute = attribute

    def visit_include(self, f):
        return FilterValues.empty()

    def visit_exclude(self, f):
        return FilterValues.nothing()

    def visit_and(self, f):
        result: Optional[List[Bounds]] = None
        precise = True
        for child in f.children:
            values = self.visit(child)
            precise = precise and values.precise
            if values.disjoint:
                return FilterValues.nothing()
            if values.unconstrained:
                continue
            if result is None:
                result = list(values.values)
                continue
            result = [i for a in result for b in values.values for i in (a.intersect(b),) if i is not None]
            if not result:
                return FilterValues.nothing()
        if result is None:
            return FilterValues.empty(precise)
        return FilterValues(tuple(merge_bounds(result)), precise)

    def visit_or(self, f):
        values: List[Bounds] = []
        precise = True
        for child in f.children:
            child_values = self.visit(child)
            if child_values.disjoint:
                continue
            if child_values.unconstrained:
                return FilterValues.empty(precise and child_values.precise)
            precise = precise and child_values.precise
            values.extend(child_values.values)
        if not values:
            return FilterValues.nothing()
        return FilterValues(tuple(merge_bounds(values)), precise)

    def visit_not(self, f):
        return FilterValues.empty(self.attribute not in attribute_names(f.child))

    def visit_id_in(self, f):
        return FilterValues.empty()

    def _mine(self, f) -> bool:
        return f.attribute == self.attribute

    def visit_comparison(self, f):
        if not self._mine(f):
            return FilterValues.empty()
        if isinstance(f.value, ast.Function) or f.value is None:
            return FilterValues.empty(False)
        value = _normalize_value(f.value)
        op = ast.ComparisonOp
        if f.op == op.EQ:
            return FilterValues((Bounds.equals(value),))
        if f.op == op.NE:
            return FilterValues((Bounds(None, value, True, False), Bounds(value, None, False, True)))
        if f.op == op.LT:
            return FilterValues((Bounds(None, value, True, False),))
        if f.op == op.LE:
            return FilterValues((Bounds(None, value, True, True),))
        if f.op == op.GT:
            return FilterValues((Bounds(value, None, False, True),))
        return FilterValues((Bounds(value, None, True, True),))

    def visit_between(self, f):
        if not self._mine(f):
            return FilterValues.empty()
        if isinstance(f.lower, ast.Function) or isinstance(f.upper, ast.Function):
            return FilterValues.empty(False)
        bounds = Bounds(_normalize_value(f.lower), _normalize_value(f.upper))
        if bounds.is_empty:
            return FilterValues.nothing()
        return FilterValues((bounds,))

    def visit_in(self, f):
        if not self._mine(f):
            return FilterValues.empty()
        if any(isinstance(v, ast.Function) for v in f.values):
            return FilterValues.empty(False)
        if not f.values:
            return FilterValues.nothing()
        return FilterValues(tuple(merge_bounds(Bounds.equals(_normalize_value(v)) for v in f.values)))

    def visit_like(self, f):
        if not self._mine(f):
            return FilterValues.empty()
        prefix = _like_prefix(f)
        if not prefix:
            return FilterValues.empty(False)
        return FilterValues((Bounds(prefix, prefix + "\U0010ffff", True, False),), precise=False)

    def visit_is_null(self, f):
        return FilterValues.empty(not self._mine(f))

    def visit_bbox(self, f):
        return FilterValues.empty(not self._mine(f))

    visit_spatial = visit_bbox

    def visit_temporal(self, f):
        if not self._mine(f):
            return FilterValues.empty()
        start = to_datetime(f.start)
        op = ast.TemporalOp
        if f.op == op.DURING:
            bounds = Bounds(start, to_datetime(f.end), False, False)
            if bounds.is_empty:
                return FilterValues.nothing()
            return FilterValues((bounds,))
        if f.op == op.BEFORE:
            return FilterValues((Bounds(None, start, True, False),))
        if f.op == op.AFTER:
            return FilterValues((Bounds(start, None, False, True),))
        return FilterValues((Bounds.equals(start),))


def _like_prefix(f: ast.Like) -> Optional[str]:
    """Literal prefix of a LIKE pattern whose only wildcard is a trailing multi-char one."""
    if f.nocase or not f.pattern.endswith(f.wildcard):
        return None
    prefix = f.pattern[: -len(f.wildcard)]
    if f.wildcard in prefix or f.single_char in prefix or (f.escape_char and f.escape_char in prefix):
        return None
    return prefix


def extract_bounds(f: Optional[ast.Filter], attribute: str) -> FilterValues:
    """Ranges of `attribute` (numbers, strings or datetimes) allowed by `f`."""
    if f is None:
        return FilterValues.empty()
    return _BoundsExtractor(attribute).visit(f)


# --- filter partitioning ---

def split_filter(
    f: Optional[ast.Filter],
    accept: Callable[[ast.Filter], bool],
) -> Tuple[Optional[ast.Filter], Optional[ast.Filter]]:
    """
    Partitions a filter into (accepted, rest). The conjuncts of a top-level AND are
    partitioned individually; any other filter goes wholly to one side.
    """
    if f is None:
        return None, None
    children = f.children if isinstance(f, ast.And) else (f,)
    accepted = [c for c in children if accept(c)]
    rest = [c for c in children if not accept(c)]
    return ast.and_option(accepted), ast.and_option(rest)


def on_attributes(attributes: Iterable[str]) -> Callable[[ast.Filter], bool]:
    """Predicate for `split_filter`: clauses referencing only the given attributes."""
    allowed = frozenset(attributes)

    def accept(f: ast.Filter) -> bool:
        names = attribute_names(f)
        return bool(names) and names <= allowed and not _contains_ids(f)

    return accept


def _contains_ids(f: ast.Filter) -> bool:
    if isinstance(f, ast.IdIn):
        return True
    if isinstance(f, (ast.And, ast.Or)):
        return any(_contains_ids(c) for c in f.children)
    if isinstance(f, ast.Not):
        return _contains_ids(f.child)
    return False
