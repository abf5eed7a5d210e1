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
dynaindex: spatio-temporal space-filling-curve index core.

Encodes point geometries and timestamps into sortable curve keys, decomposes query
regions into bounded sets of key ranges, and selects the cheapest index for a filter.
"""

__version__ = "0.1.0"

from dynaindex.models import Feature, FeatureSchema, IndexConfig, IndexKind
from dynaindex.filters.cql import parse_cql
from dynaindex.filters.evaluate import evaluate
from dynaindex.planning.planner import QueryPlanner
from dynaindex.planning.strategy import FilterStrategy, QueryPlan

__all__ = [
    'Feature',
    'FeatureSchema',
    'IndexConfig',
    'IndexKind',
    'parse_cql',
    'evaluate',
    'QueryPlanner',
    'FilterStrategy',
    'QueryPlan',
]
