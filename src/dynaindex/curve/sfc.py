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
Space filling curves over normalized dimensions.

`ZNSFC` combines a list of `NormalizedDimension`s with a `ZCurve` codec; `Z2SFC`
indexes (lon, lat) and `Z3SFC` indexes (lon, lat, time offset within a bin).
"""

import logging
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple, Union

from dynaindex.config import settings
from dynaindex.curve.binned_time import TimePeriod, max_offset
from dynaindex.curve.dimensions import (
    NormalizedDimension,
    normalized_lat,
    normalized_lon,
    normalized_time,
    validate_precision,
)
from dynaindex.curve.zorder import CodeBox, ZCurve, ZRange, zranges
from dynaindex.exceptions import OutOfBoundsError

logger = logging.getLogger(__name__)

# bits of a 64-bit key: resolving them all is "full precision"
FULL_PRECISION = 64


class ZNSFC:
    """Z-order curve over an arbitrary list of normalized dimensions."""

    def __init__(self, dimensions: Sequence[NormalizedDimension]):
        self.dimensions: Tuple[NormalizedDimension, ...] = tuple(dimensions)
        self.curve = ZCurve([d.precision for d in self.dimensions])

    def _check(self, values: Sequence[float]):
        if len(values) != len(self.dimensions):
            raise ValueError(f"Expected {len(self.dimensions)} values, got {len(values)}")

    def index(self, *values: float, lenient: bool = False) -> int:
        """
        Encodes one value per dimension into a curve key.

        Strict mode (write path) rejects out-of-domain values; lenient mode (query
        path) clamps them to the nearest cell.
        """
        self._check(values)
        if not lenient and not all(d.contains(v) for d, v in zip(self.dimensions, values)):
            bounds = ", ".join(f"[{d.min},{d.max})" for d in self.dimensions)
            shown = ", ".join(str(v) for v in values)
            raise OutOfBoundsError(f"Value(s) out of bounds ({bounds}): {shown}")
        codes = [d.normalize(v, lenient=True) for d, v in zip(self.dimensions, values)]
        return self.curve.interleave(codes)

    def invert(self, key: int) -> Tuple[float, ...]:
        """Decodes a key into the cell centre of each dimension."""
        codes = self.curve.deinterleave(key)
        return tuple(d.denormalize(c) for d, c in zip(self.dimensions, codes))

    def code_box(self, mins: Sequence[float], maxs: Sequence[float]) -> CodeBox:
        """Leniently normalizes a query box into code space."""
        self._check(mins)
        self._check(maxs)
        return (
            tuple(d.normalize(v, lenient=True) for d, v in zip(self.dimensions, mins)),
            tuple(d.normalize(v, lenient=True) for d, v in zip(self.dimensions, maxs)),
        )

    def decoded_bounds(self, r: ZRange) -> Tuple[Tuple[float, ...], Tuple[float, ...]]:
        """Bounding box (in dimension units) of every cell touched by a range."""
        remaining = (r.lower ^ r.upper).bit_length()
        mins, maxs = self.curve.block_bounds(r.lower >> remaining, remaining)
        return (
            tuple(d.cell_bounds(c)[0] for d, c in zip(self.dimensions, mins)),
            tuple(d.cell_bounds(c)[1] for d, c in zip(self.dimensions, maxs)),
        )

    def ranges_for_boxes(
        self,
        boxes: Sequence[Tuple[Sequence[float], Sequence[float]]],
        precision: int = FULL_PRECISION,
        max_ranges: Optional[int] = None,
        max_recursion: Optional[int] = None,
    ) -> List[ZRange]:
        """Decomposes boxes given in dimension units into key ranges."""
        if max_recursion is None:
            max_recursion = settings.recursion_for(len(self.dimensions))
        code_boxes = [self.code_box(mins, maxs) for mins, maxs in boxes]
        return zranges(self.curve, code_boxes, precision, max_ranges, max_recursion)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({', '.join(repr(d) for d in self.dimensions)})"


class Z2SFC(ZNSFC):
    """Z2 curve over (lon, lat)."""

    def __init__(self, precision: int = 21):
        validate_precision(precision)
        self.lon = normalized_lon(precision)
        self.lat = normalized_lat(precision)
        super().__init__([self.lon, self.lat])

    def ranges(
        self,
        xy: Sequence[Tuple[float, float, float, float]],
        precision: int = FULL_PRECISION,
        max_ranges: Optional[int] = None,
        max_recursion: Optional[int] = None,
    ) -> List[ZRange]:
        """Key ranges covering (xmin, ymin, xmax, ymax) boxes."""
        boxes = [((xmin, ymin), (xmax, ymax)) for xmin, ymin, xmax, ymax in xy]
        return self.ranges_for_boxes(boxes, precision, max_ranges, max_recursion)


class Z3SFC(ZNSFC):
    """Z3 curve over (lon, lat, time offset) for a given time period."""

    def __init__(self, period: Union[str, TimePeriod] = TimePeriod.WEEK, precision: int = 21):
        validate_precision(precision)
        self.period = TimePeriod.parse(period)
        self.lon = normalized_lon(precision)
        self.lat = normalized_lat(precision)
        self.time = normalized_time(precision, max_offset(self.period))
        super().__init__([self.lon, self.lat, self.time])

    @property
    def whole_period(self) -> List[Tuple[int, int]]:
        # the end of the period clamps to the last cell, so a whole bin is a full code box
        return [(int(self.time.min), int(self.time.max))]

    def ranges(
        self,
        xy: Sequence[Tuple[float, float, float, float]],
        t: Sequence[Tuple[int, int]],
        precision: int = FULL_PRECISION,
        max_ranges: Optional[int] = None,
        max_recursion: Optional[int] = None,
    ) -> List[ZRange]:
        """Key ranges covering every combination of (xmin, ymin, xmax, ymax) box and (tmin, tmax) offsets."""
        boxes = [
            ((xmin, ymin, tmin), (xmax, ymax, tmax))
            for xmin, ymin, xmax, ymax in xy
            for tmin, tmax in t
        ]
        return self.ranges_for_boxes(boxes, precision, max_ranges, max_recursion)


@lru_cache(maxsize=None)
def z2_sfc(precision: int = 21) -> Z2SFC:
    return Z2SFC(precision)


@lru_cache(maxsize=None)
def z3_sfc(period: TimePeriod = TimePeriod.WEEK, precision: int = 21) -> Z3SFC:
    return Z3SFC(TimePeriod.parse(period), precision)
