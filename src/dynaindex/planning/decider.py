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
from typing import List, Optional, Sequence

from dynaindex.filters import ast
from dynaindex.index.indices import FeatureIndex
from dynaindex.models.protocols import AttributeStatistics
from dynaindex.planning.strategy import FilterStrategy

logger = logging.getLogger(__name__)


class StrategyDecider:
    """
    Ranks the strategies the indices of a schema offer for a filter.

    Ordering: lowest cost, then an index whose natural order matches the requested
    sort, then the smallest residual filter, then declaration order. The full scan
    comes first among equals so that INCLUDE without a sort stays a plain scan.
    The decider never fails: the full scan accepts every filter.
    """

    def __init__(self, indices: Sequence[FeatureIndex], stats: Optional[AttributeStatistics] = None):
        self.indices = list(indices)
        self.stats = stats
        if not any(i.is_full_scan for i in self.indices):
            raise ValueError("The full scan index must be part of the candidate indices")

    def get_filter_strategies(
        self,
        f: ast.Filter,
        sort_by: Optional[str] = None,
        max_ranges: Optional[int] = None,
    ) -> List[FilterStrategy]:
        """Every strategy offered for `f`, best first."""
        candidates = []
        for order, index in enumerate(self.indices):
            strategy = index.get_filter_strategy(f, self.stats, max_ranges)
            if strategy is None:
                continue
            candidates.append((self._rank(strategy, sort_by, -1 if index.is_full_scan else order), strategy))
        candidates.sort(key=lambda c: c[0])
        strategies = [s for _, s in candidates]
        logger.debug(
            f"Strategies for {f}: "
            + ", ".join(f"{s.index.name}={s.cost:.3f}" for s in strategies)
        )
        return strategies

    @staticmethod
    def _rank(strategy: FilterStrategy, sort_by: Optional[str], order: int):
        sorted_match = 0 if sort_by is not None and strategy.index.natural_sort == sort_by else 1
        return (strategy.cost, sorted_match, ast.node_count(strategy.secondary), order)

    def select(
        self,
        f: ast.Filter,
        sort_by: Optional[str] = None,
        max_ranges: Optional[int] = None,
    ) -> FilterStrategy:
        """The best strategy for `f`."""
        return self.get_filter_strategies(f, sort_by, max_ranges)[0]
