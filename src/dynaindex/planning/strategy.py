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

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from dynaindex.filters import ast

if TYPE_CHECKING:
    from dynaindex.index.indices import FeatureIndex
    from dynaindex.index.keyspace import ByteRange, ScanRange


@dataclass
class FilterStrategy:
    """
    An index choice for a query: `primary` is the part of the filter the index
    satisfies, `secondary` the residual that must be re-evaluated on each scanned
    feature. Built per query, never persisted.
    """
    index: "FeatureIndex"
    primary: Optional[ast.Filter]
    secondary: Optional[ast.Filter]
    temporal: bool = False
    cost: float = math.inf
    values: Any = field(default=None, repr=False, compare=False)
    ranges: Optional[List["ScanRange"]] = field(default=None, repr=False, compare=False)

    @property
    def disjoint(self) -> bool:
        """True if no feature can match, so nothing has to be scanned."""
        return bool(getattr(self.values, "disjoint", False))

    @property
    def is_full_scan(self) -> bool:
        return self.index.is_full_scan


@dataclass
class IndexScan:
    """The scans of one strategy: curve ranges, byte ranges and the row checks."""
    strategy: FilterStrategy
    ranges: List["ScanRange"] = field(default_factory=list)
    byte_ranges: List["ByteRange"] = field(default_factory=list)
    key_filter: Optional[Callable[[bytes], bool]] = field(default=None, repr=False)

    @property
    def secondary(self) -> Optional[ast.Filter]:
        return self.strategy.secondary


@dataclass
class QueryPlan:
    """What the storage layer has to scan, and how to filter what it reads."""
    filter: ast.Filter
    scans: List[IndexScan] = field(default_factory=list)
    sort_by: Optional[str] = None
    # set when several scans may return the same feature
    deduplicate: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.scans

    @property
    def strategies(self) -> List[FilterStrategy]:
        return [s.strategy for s in self.scans]

    @property
    def cost(self) -> float:
        return sum(s.strategy.cost for s in self.scans)

    def __str__(self) -> str:
        if self.is_empty:
            return f"QueryPlan(filter={self.filter}, empty)"
        parts = [
            f"{s.strategy.index.name}[cost={s.strategy.cost:.3f}, ranges={len(s.byte_ranges)}]"
            for s in self.scans
        ]
        return f"QueryPlan(filter={self.filter}, scans={', '.join(parts)}, deduplicate={self.deduplicate})"
