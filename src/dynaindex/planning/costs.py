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

# Relative scan costs; lower is better. Only their order matters to the decider.

# identifier lookups are point reads with no false positives
ID_COST = 0.001

# curve indices: base cost, scaled by the number of ranges the query decomposes into
Z3_COST = 10.0
Z3_TEMPORAL_ONLY_COST = 40.0
Z2_COST = 20.0

# attribute indices without statistics
ATTRIBUTE_EQUALS_COST = 30.0
ATTRIBUTE_RANGE_COST = 60.0
# attribute indices with statistics: cost per estimated feature
ATTRIBUTE_COST_PER_FEATURE = 0.01

# extra scanning and filtering when the index over-approximates the predicate
IMPRECISE_FACTOR = 1.5

FULL_SCAN_COST = math.inf


def curve_cost(base: float, ranges: int, target: int, precise: bool) -> float:
    """Cost of a curve index scan that decomposed into `ranges` ranges."""
    cost = base * (1.0 + ranges / max(1, target))
    return cost if precise else cost * IMPRECISE_FACTOR
