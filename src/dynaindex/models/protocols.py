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

from typing import Any, Dict, Optional, Protocol, Sequence, runtime_checkable


@runtime_checkable
class AttributeStatistics(Protocol):
    """Protocol for attribute statistics used to estimate attribute index costs."""

    def estimate_count(self, attribute: str, bounds: Sequence[Any]) -> Optional[int]:
        """Estimated number of features within `bounds`, or None if unknown."""
        ...


class StaticStatistics:
    """Statistics from fixed per-attribute counts, e.g. computed offline or in tests."""

    def __init__(self, counts: Dict[str, Dict[Any, int]], totals: Optional[Dict[str, int]] = None):
        self.counts = counts
        self.totals = totals or {a: sum(c.values()) for a, c in counts.items()}

    def estimate_count(self, attribute: str, bounds: Sequence[Any]) -> Optional[int]:
        values = self.counts.get(attribute)
        if values is None:
            return None
        estimate = 0
        for b in bounds:
            if b.is_equals:
                estimate += values.get(b.lower, 0)
            else:
                # ranges scan everything between the ends we know about
                estimate += sum(
                    n for v, n in values.items()
                    if (b.lower is None or v >= b.lower) and (b.upper is None or v <= b.upper)
                )
        return min(estimate, self.totals.get(attribute, estimate))
