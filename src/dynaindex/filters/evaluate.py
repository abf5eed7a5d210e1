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
Residual filter evaluation.

Index scans over-approximate the query region, so the `secondary` filter of a plan
has to be re-checked against each scanned feature. This evaluator implements the
filter semantics with shapely predicates and plain Python comparisons.
"""

import logging
import re
from datetime import datetime
from typing import Any, Optional

from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from dynaindex.curve.binned_time import to_datetime
from dynaindex.exceptions import FilterEvaluationError
from dynaindex.filters import ast
from dynaindex.filters.visitor import FilterVisitor
from dynaindex.models.feature import Feature
from dynaindex.tools.geospatial import as_geometry, split_antimeridian, to_wgs84

logger = logging.getLogger(__name__)


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_datetime(value)
    return value


def _literal(value: Any) -> Any:
    if isinstance(value, ast.Function):
        raise FilterEvaluationError(f"Function '{value.name}' cannot be evaluated")
    return _comparable(value)


def like_to_regex(f: ast.Like) -> "re.Pattern":
    parts = []
    escaped = False
    for ch in f.pattern:
        if escaped:
            parts.append(re.escape(ch))
            escaped = False
        elif f.escape_char and ch == f.escape_char:
            escaped = True
        elif ch == f.wildcard:
            parts.append(".*")
        elif ch == f.single_char:
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL if f.nocase else re.DOTALL)


class FilterEvaluator(FilterVisitor):
    """Evaluates a filter against a single feature."""

    def __init__(self, feature: Feature, geometry_attribute: Optional[str] = "geom", id_attribute: Optional[str] = "id"):
        self.feature = feature
        self.geometry_attribute = geometry_attribute
        self.id_attribute = id_attribute

    def _get(self, name: str) -> Any:
        return self.feature.get(name, self.geometry_attribute, self.id_attribute)

    def _geometry(self, name: str) -> Optional[BaseGeometry]:
        value = self._get(name)
        if value is None:
            return None
        return as_geometry(value)

    def visit_include(self, f):
        return True

    def visit_exclude(self, f):
        return False

    def visit_and(self, f):
        return all(self.visit(c) for c in f.children)

    def visit_or(self, f):
        return any(self.visit(c) for c in f.children)

    def visit_not(self, f):
        return not self.visit(f.child)

    def visit_id_in(self, f):
        return self.feature.id in {str(_literal(i)) for i in f.ids}

    def visit_comparison(self, f):
        actual = _comparable(self._get(f.attribute))
        expected = _literal(f.value)
        if actual is None or expected is None:
            return False
        op = ast.ComparisonOp
        try:
            if f.op == op.EQ:
                return actual == expected
            if f.op == op.NE:
                return actual != expected
            if f.op == op.LT:
                return actual < expected
            if f.op == op.LE:
                return actual <= expected
            if f.op == op.GT:
                return actual > expected
            return actual >= expected
        except TypeError as e:
            raise FilterEvaluationError(f"Cannot compare '{f.attribute}' value {actual!r} with {expected!r}", e) from e

    def visit_between(self, f):
        actual = _comparable(self._get(f.attribute))
        if actual is None:
            return False
        try:
            return _literal(f.lower) <= actual <= _literal(f.upper)
        except TypeError as e:
            raise FilterEvaluationError(f"Cannot compare '{f.attribute}' value {actual!r}", e) from e

    def visit_in(self, f):
        actual = _comparable(self._get(f.attribute))
        return actual is not None and any(actual == _literal(v) for v in f.values)

    def visit_like(self, f):
        actual = self._get(f.attribute)
        if actual is None:
            return False
        return like_to_regex(f).fullmatch(str(actual)) is not None

    def visit_is_null(self, f):
        return self._get(f.attribute) is None

    def visit_bbox(self, f):
        geom = self._geometry(f.attribute)
        if geom is None:
            return False
        for xmin, ymin, xmax, ymax in split_antimeridian((f.xmin, f.ymin, f.xmax, f.ymax)):
            if geom.intersects(to_wgs84(box(xmin, ymin, xmax, ymax), f.crs)):
                return True
        return False

    def visit_spatial(self, f):
        geom = self._geometry(f.attribute)
        if geom is None:
            return False
        other = to_wgs84(f.geometry, f.crs)
        op = ast.SpatialOp
        if f.op == op.DWITHIN:
            return geom.distance(other) <= (f.distance or 0.0)
        if f.op == op.BEYOND:
            return geom.distance(other) > (f.distance or 0.0)
        return getattr(geom, f.op.value)(other)

    def visit_temporal(self, f):
        value = self._get(f.attribute)
        if value is None:
            return False
        t = to_datetime(value)
        start = to_datetime(f.start)
        op = ast.TemporalOp
        if f.op == op.DURING:
            return start < t < to_datetime(f.end)
        if f.op == op.BEFORE:
            return t < start
        if f.op == op.AFTER:
            return t > start
        return t == start


def evaluate(
    f: Optional[ast.Filter],
    feature: Feature,
    geometry_attribute: Optional[str] = "geom",
    id_attribute: Optional[str] = "id",
) -> bool:
    """True if `feature` matches `f`; a missing filter matches everything."""
    if f is None:
        return True
    return FilterEvaluator(feature, geometry_attribute, id_attribute).visit(f)
