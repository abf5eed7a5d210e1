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
from typing import List, Optional

from dynaindex.filters import ast
from dynaindex.index.indices import FeatureIndex, feature_indices
from dynaindex.models.protocols import AttributeStatistics
from dynaindex.models.schema import FeatureSchema
from dynaindex.planning.decider import StrategyDecider
from dynaindex.planning.strategy import FilterStrategy, IndexScan, QueryPlan
from dynaindex.tools.timer import Timer

logger = logging.getLogger(__name__)


class QueryPlanner:
    """Turns a filter into a query plan over the indices of a schema."""

    def __init__(self, schema: FeatureSchema, stats: Optional[AttributeStatistics] = None):
        self.schema = schema
        self.indices: List[FeatureIndex] = feature_indices(schema)
        self.decider = StrategyDecider(self.indices, stats)

    def plan(
        self,
        f: Optional[ast.Filter] = None,
        sort_by: Optional[str] = None,
        max_ranges: Optional[int] = None,
    ) -> QueryPlan:
        """
        Plans a query.

        A top-level OR is split into one scan per branch when the branch strategies
        together cost less than the best single strategy; the plan is then flagged
        for deduplication. Disjoint filters produce an empty plan.
        """
        f = ast.INCLUDE if f is None else f
        with Timer(f"Query planning for '{self.schema.name}'"):
            if isinstance(f, ast.Exclude):
                logger.debug(f"Filter {f} excludes every feature, nothing to scan")
                return QueryPlan(f, sort_by=sort_by)

            best = self.decider.select(f, sort_by, max_ranges)
            strategies = [best]
            if isinstance(f, ast.Or) and not best.disjoint:
                composed = self._compose_or(f, sort_by, max_ranges)
                if composed is not None and sum(s.cost for s in composed) < best.cost:
                    logger.debug(f"Using {len(composed)} OR branch strategies instead of {best.index.name}")
                    strategies = composed

            scans = [self._scan(s, max_ranges) for s in strategies if not s.disjoint]
            plan = QueryPlan(f, scans, sort_by=sort_by, deduplicate=len(scans) > 1)
            logger.debug(f"Planned {plan}")
            return plan

    def _compose_or(
        self,
        f: ast.Or,
        sort_by: Optional[str],
        max_ranges: Optional[int],
    ) -> Optional[List[FilterStrategy]]:
        strategies = []
        for branch in f.children:
            strategy = self.decider.select(branch, sort_by, max_ranges)
            if strategy.is_full_scan:
                return None
            strategies.append(strategy)
        return strategies

    def _scan(self, strategy: FilterStrategy, max_ranges: Optional[int]) -> IndexScan:
        index = strategy.index
        if strategy.primary is None:
            return IndexScan(strategy, byte_ranges=index.full_range())

        key_space = index.key_space
        ranges = strategy.ranges
        if ranges is None:
            ranges = key_space.get_ranges(strategy.values, max_ranges)
        if ranges:
            byte_ranges = key_space.to_byte_ranges(ranges)
        else:
            byte_ranges = key_space.get_byte_ranges(strategy.values, max_ranges)
        key_filter = None
        loose = sum(1 for r in ranges if not r.range.contained)
        if loose:
            logger.debug(
                f"Index '{index.name}' decomposed into {len(ranges)} range(s), {loose} not fully contained; "
                f"rows in those ranges are checked with a key filter"
            )
            key_filter = key_space.key_filter(strategy.values)
        return IndexScan(strategy, ranges, byte_ranges, key_filter)
