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
Feature indices and their filter strategies.

Each index knows which part of a filter it can satisfy and what scanning it would
cost. The full scan index is implicit in every schema and accepts any filter.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import List, Optional

from dynaindex.filters import ast
from dynaindex.filters.extraction import extract_ids, on_attributes, split_filter, split_id_filter
from dynaindex.filters.visitor import attribute_names
from dynaindex.index.keyspace import ByteRange, IndexKeySpace, key_space, successor
from dynaindex.models.protocols import AttributeStatistics
from dynaindex.models.schema import FeatureSchema, IndexConfig, IndexKind
from dynaindex.planning import costs
from dynaindex.planning.strategy import FilterStrategy

logger = logging.getLogger(__name__)

FULL_SCAN_NAME = "full"


def _has_multi_attribute_or(f: Optional[ast.Filter]) -> bool:
    """An OR across attributes extracts per attribute, so their cross product over-covers."""
    if isinstance(f, ast.Or):
        return len(attribute_names(f)) > 1
    if isinstance(f, ast.And):
        return any(_has_multi_attribute_or(c) for c in f.children)
    return False


class FeatureIndex(ABC):
    """An index of a schema, as seen by the strategy decider."""

    is_full_scan = False

    def __init__(self, schema: FeatureSchema, config: IndexConfig):
        self.schema = schema
        self.config = config
        self.key_space: IndexKeySpace = key_space(schema, config)

    @property
    def kind(self) -> IndexKind:
        return self.config.kind

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def attributes(self) -> List[str]:
        return list(self.config.attributes)

    @property
    def natural_sort(self) -> Optional[str]:
        """Attribute the index already returns features ordered by, if any."""
        return None

    def get_filter_strategy(
        self,
        f: ast.Filter,
        stats: Optional[AttributeStatistics] = None,
        max_ranges: Optional[int] = None,
    ) -> Optional[FilterStrategy]:
        """The strategy this index offers for `f`, or None if it cannot help."""
        if isinstance(f, ast.Include):
            return FilterStrategy(self, None, None, temporal=False, cost=costs.FULL_SCAN_COST)
        try:
            return self._strategy(f, stats, max_ranges or self.schema.scan_ranges_target)
        except (TypeError, ValueError) as e:
            # values the index cannot encode, e.g. a string compared with a date
            logger.debug(f"Index '{self.name}' cannot use filter {f}: {e}")
            return None

    @abstractmethod
    def _strategy(self, f: ast.Filter, stats: Optional[AttributeStatistics], target: int) -> Optional[FilterStrategy]:
        """Strategy for a filter other than INCLUDE, given the range budget `target`."""
        ...

    def full_range(self) -> List[ByteRange]:
        return [ByteRange(shard, successor(shard) if shard else None, False) for shard in self.key_space.sharding.shards]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"


class Z3Index(FeatureIndex):

    def _strategy(self, f, stats, target):
        primary, secondary = split_filter(f, on_attributes(self.attributes))
        if primary is None:
            return None
        values = self.key_space.get_index_values(primary)
        intervals = values.intervals
        if intervals.unconstrained:
            return None
        if any(b.lower is None or b.upper is None for b in intervals.values):
            # open-ended intervals would span every bin up to the end of time
            return None
        precise = values.precise and not _has_multi_attribute_or(primary)
        if not precise:
            secondary = ast.and_option([primary, secondary])
        if values.disjoint:
            return FilterStrategy(self, primary, secondary, temporal=True, cost=0.0, values=values, ranges=[])
        ranges = self.key_space.get_ranges(values, target)
        per_shard = len(ranges) // self.key_space.sharding.count
        base = costs.Z3_TEMPORAL_ONLY_COST if values.geometries.unconstrained else costs.Z3_COST
        cost = costs.curve_cost(base, per_shard, target, precise)
        return FilterStrategy(self, primary, secondary, temporal=True, cost=cost, values=values, ranges=ranges)


class Z2Index(FeatureIndex):

    def _strategy(self, f, stats, target):
        primary, secondary = split_filter(f, on_attributes(self.attributes))
        if primary is None:
            return None
        values = self.key_space.get_index_values(primary)
        if values.geometries.unconstrained:
            return None
        if not values.precise:
            secondary = ast.and_option([primary, secondary])
        if values.disjoint:
            return FilterStrategy(self, primary, secondary, cost=0.0, values=values, ranges=[])
        ranges = self.key_space.get_ranges(values, target)
        per_shard = len(ranges) // self.key_space.sharding.count
        cost = costs.curve_cost(costs.Z2_COST, per_shard, target, values.precise)
        return FilterStrategy(self, primary, secondary, cost=cost, values=values, ranges=ranges)


class AttributeIndex(FeatureIndex):

    @property
    def natural_sort(self) -> Optional[str]:
        return self.attributes[0]

    def _strategy(self, f, stats, target):
        primary, secondary = split_filter(f, on_attributes(self.attributes))
        if primary is None:
            return None
        values = self.key_space.get_index_values(primary)
        if values.unconstrained:
            return None
        if not values.precise:
            secondary = ast.and_option([primary, secondary])
        if values.disjoint:
            return FilterStrategy(self, primary, secondary, cost=0.0, values=values)
        estimate = stats.estimate_count(self.attributes[0], values.values) if stats is not None else None
        if estimate is not None:
            cost = estimate * costs.ATTRIBUTE_COST_PER_FEATURE
        elif all(b.is_equals for b in values.values):
            cost = costs.ATTRIBUTE_EQUALS_COST
        else:
            cost = costs.ATTRIBUTE_RANGE_COST
        if not values.precise:
            cost *= costs.IMPRECISE_FACTOR
        return FilterStrategy(self, primary, secondary, cost=cost, values=values)


class IdIndex(FeatureIndex):

    @property
    def natural_sort(self) -> Optional[str]:
        return self.schema.id_attribute

    def _strategy(self, f, stats, target):
        primary, secondary = split_id_filter(f)
        if primary is None:
            return None
        values = extract_ids(primary)
        return FilterStrategy(self, primary, secondary, temporal=True, cost=costs.ID_COST, values=values)


class FullScanIndex(FeatureIndex):
    """Scans every feature; the last resort for any filter."""

    is_full_scan = True

    def __init__(self, schema: FeatureSchema):
        self.schema = schema
        self.config = None
        self.key_space = None

    @property
    def kind(self) -> Optional[IndexKind]:
        return None

    @property
    def name(self) -> str:
        return FULL_SCAN_NAME

    @property
    def attributes(self) -> List[str]:
        return []

    def _strategy(self, f, stats, target) -> FilterStrategy:
        return FilterStrategy(self, None, f, temporal=False, cost=math.inf)

    def full_range(self) -> List[ByteRange]:
        return [ByteRange(b"", None, False)]


_INDICES = {
    IndexKind.Z3: Z3Index,
    IndexKind.Z2: Z2Index,
    IndexKind.ATTRIBUTE: AttributeIndex,
    IndexKind.ID: IdIndex,
}


def feature_indices(schema: FeatureSchema) -> List[FeatureIndex]:
    """The configured indices of a schema in declaration order, followed by the full scan."""
    indices: List[FeatureIndex] = [_INDICES[c.kind](schema, c) for c in schema.indices]
    indices.append(FullScanIndex(schema))
    return indices
