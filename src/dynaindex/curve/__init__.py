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

from .dimensions import NormalizedDimension, normalized_lat, normalized_lon, normalized_time
from .zorder import ZCurve, ZRange, zranges, coalesce, merge_ranges
from .binned_time import BinnedTime, TimeBinner, TimePeriod, max_offset
from .sfc import ZNSFC, Z2SFC, Z3SFC, z2_sfc, z3_sfc

__all__ = [
    # Dimensions
    'NormalizedDimension',
    'normalized_lat',
    'normalized_lon',
    'normalized_time',
    # Codec and ranges
    'ZCurve',
    'ZRange',
    'zranges',
    'coalesce',
    'merge_ranges',
    # Time
    'BinnedTime',
    'TimeBinner',
    'TimePeriod',
    'max_offset',
    # Curves
    'ZNSFC',
    'Z2SFC',
    'Z3SFC',
    'z2_sfc',
    'z3_sfc',
]
