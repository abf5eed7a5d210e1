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
Filter Abstract Syntax Tree.

A closed set of immutable node types describing a boolean predicate over features.
Parsers (see `dynaindex.filters.cql`) produce these nodes; the planner only consumes
them through `FilterVisitor` subclasses, which must handle every node type.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional, Tuple

from shapely.geometry.base import BaseGeometry


class ComparisonOp(str, Enum):
    EQ = "="
    NE = "<>"
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="


class SpatialOp(str, Enum):
    INTERSECTS = "intersects"
    WITHIN = "within"
    CONTAINS = "contains"
    EQUALS = "equals"
    OVERLAPS = "overlaps"
    CROSSES = "crosses"
    TOUCHES = "touches"
    DISJOINT = "disjoint"
    DWITHIN = "dwithin"
    BEYOND = "beyond"


class TemporalOp(str, Enum):
    DURING = "during"    # start < t < end
    BEFORE = "before"    # t < start
    AFTER = "after"      # t > start
    TEQUALS = "tequals"  # t == start


class Filter:
    """Base class of all filter nodes."""

    visit_name: str = ""

    def accept(self, visitor):
        return getattr(visitor, self.visit_name)(self)

    def __and__(self, other: "Filter") -> "Filter":
        return and_option([self, other])

    def __or__(self, other: "Filter") -> "Filter":
        return or_option([self, other])

    def __invert__(self) -> "Filter":
        return Not(self)


@dataclass(frozen=True)
class Function:
    """A function call used as a value; never a concrete literal."""
    name: str
    args: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class Include(Filter):
    visit_name = "visit_include"


@dataclass(frozen=True)
class Exclude(Filter):
    visit_name = "visit_exclude"


INCLUDE = Include()
EXCLUDE = Exclude()


@dataclass(frozen=True)
class And(Filter):
    children: Tuple[Filter, ...]
    visit_name = "visit_and"


@dataclass(frozen=True)
class Or(Filter):
    children: Tuple[Filter, ...]
    visit_name = "visit_or"


@dataclass(frozen=True)
class Not(Filter):
    child: Filter
    visit_name = "visit_not"


@dataclass(frozen=True)
class IdIn(Filter):
    """Feature identifier in a set of values."""
    ids: Tuple[Any, ...]
    visit_name = "visit_id_in"


@dataclass(frozen=True)
class Comparison(Filter):
    attribute: str
    op: ComparisonOp
    value: Any
    visit_name = "visit_comparison"


@dataclass(frozen=True)
class Between(Filter):
    """Inclusive range check."""
    attribute: str
    lower: Any
    upper: Any
    visit_name = "visit_between"


@dataclass(frozen=True)
class In(Filter):
    attribute: str
    values: Tuple[Any, ...]
    visit_name = "visit_in"


@dataclass(frozen=True)
class Like(Filter):
    attribute: str
    pattern: str
    wildcard: str = "%"
    single_char: str = "_"
    escape_char: Optional[str] = "\\"
    nocase: bool = False
    visit_name = "visit_like"


@dataclass(frozen=True)
class IsNull(Filter):
    attribute: str
    visit_name = "visit_is_null"


@dataclass(frozen=True)
class BBox(Filter):
    attribute: str
    xmin: float
    ymin: float
    xmax: float
    ymax: float
    crs: Optional[str] = None
    visit_name = "visit_bbox"


@dataclass(frozen=True)
class Spatial(Filter):
    attribute: str
    op: SpatialOp
    geometry: BaseGeometry = field(compare=False)
    distance: Optional[float] = None
    crs: Optional[str] = None
    visit_name = "visit_spatial"

    def __eq__(self, other):
        if not isinstance(other, Spatial):
            return NotImplemented
        return (
            (self.attribute, self.op, self.distance, self.crs) == (other.attribute, other.op, other.distance, other.crs)
            and self.geometry.equals_exact(other.geometry, 0.0)
        )

    def __hash__(self):
        return hash((self.attribute, self.op, self.geometry.wkb, self.distance, self.crs))


@dataclass(frozen=True)
class Temporal(Filter):
    """Temporal predicate; `end` is only used by DURING."""
    attribute: str
    op: TemporalOp
    start: datetime
    end: Optional[datetime] = None
    visit_name = "visit_temporal"


def and_option(filters: Iterable[Optional[Filter]]) -> Optional[Filter]:
    """AND of the given filters, flattening nested ANDs and dropping None/INCLUDE."""
    flat = []
    for f in filters:
        if f is None or isinstance(f, Include):
            continue
        if isinstance(f, Exclude):
            return EXCLUDE
        if isinstance(f, And):
            flat.extend(f.children)
        else:
            flat.append(f)
    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return And(tuple(flat))


def or_option(filters: Iterable[Optional[Filter]]) -> Optional[Filter]:
    """OR of the given filters, flattening nested ORs and dropping None/EXCLUDE."""
    flat = []
    for f in filters:
        if f is None or isinstance(f, Exclude):
            continue
        if isinstance(f, Include):
            return INCLUDE
        if isinstance(f, Or):
            flat.extend(f.children)
        else:
            flat.append(f)
    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return Or(tuple(flat))


def node_count(f: Optional[Filter]) -> int:
    """Number of nodes in a filter tree; used to compare residual filter sizes."""
    if f is None:
        return 0
    if isinstance(f, (And, Or)):
        return 1 + sum(node_count(c) for c in f.children)
    if isinstance(f, Not):
        return 1 + node_count(f.child)
    return 1
