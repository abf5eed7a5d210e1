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
Normalized dimensions.

A normalized dimension maps a bounded continuous domain (longitude, latitude or a
time offset inside a bin) onto a fixed-width integer grid of 2^precision cells.
"""

import math

from dynaindex.exceptions import InvalidPrecisionError, OutOfBoundsError, ConfigurationError

MAX_PRECISION = 21


def validate_precision(precision: int) -> int:
    """Validates the bits used by a single dimension."""
    if isinstance(precision, bool) or not isinstance(precision, int):
        raise InvalidPrecisionError(f"Precision (bits) per dimension must be an integer, got: {precision!r}")
    if precision < 1 or precision > MAX_PRECISION:
        raise InvalidPrecisionError(
            f"Precision (bits) per dimension must be in [1,{MAX_PRECISION}], got: {precision}"
        )
    return precision


class NormalizedDimension:
    """
    Bit-normalized dimension over the closed interval [min, max].

    Values are scaled linearly onto [0, 2^precision - 1]. Denormalizing returns the
    centre of the cell, so round trips are only accurate to half a cell.
    """

    __slots__ = ("min", "max", "precision", "bins", "max_index", "_normalizer", "_denormalizer")

    def __init__(self, min_value: float, max_value: float, precision: int):
        validate_precision(precision)
        if not min_value < max_value:
            raise ConfigurationError(f"Dimension bounds must satisfy min < max, got [{min_value},{max_value}]")
        object.__setattr__(self, "min", float(min_value))
        object.__setattr__(self, "max", float(max_value))
        object.__setattr__(self, "precision", precision)
        object.__setattr__(self, "bins", 1 << precision)
        object.__setattr__(self, "max_index", (1 << precision) - 1)
        object.__setattr__(self, "_normalizer", self.bins / (self.max - self.min))
        object.__setattr__(self, "_denormalizer", (self.max - self.min) / self.bins)

    def __setattr__(self, name, value):
        raise AttributeError(f"{self.__class__.__name__} is immutable")

    def contains(self, x: float) -> bool:
        """True if `x` can be binned without clamping."""
        return self.min <= x < self.max

    def normalize(self, x: float, lenient: bool = False) -> int:
        """
        Normalizes a value to its cell index.

        In strict mode a value that cannot be binned without clamping raises
        OutOfBoundsError. The upper bound itself scales to 2^precision, one past the
        last cell, so it is rejected too. Lenient mode clamps to [0, 2^precision - 1].
        """
        if math.isnan(x):
            raise OutOfBoundsError(f"Cannot normalize NaN in [{self.min},{self.max}]")
        if not self.contains(x):
            if not lenient:
                raise OutOfBoundsError(f"Value out of bounds [{self.min},{self.max}): {x}")
            if x <= self.min:
                return 0
            return self.max_index
        # floating point rounding can land exactly on `bins` for values just under max
        return min(int(math.floor((x - self.min) * self._normalizer)), self.max_index)

    def denormalize(self, code: int) -> float:
        """Returns the centre of the cell `code`; codes outside the grid are clamped."""
        if code <= 0:
            code = 0
        elif code >= self.max_index:
            code = self.max_index
        return self.min + (code + 0.5) * self._denormalizer

    def cell_bounds(self, code: int):
        """Returns the (min, max) edges of the cell `code`."""
        lower = self.min + code * self._denormalizer
        return lower, min(lower + self._denormalizer, self.max)

    @property
    def cell_size(self) -> float:
        return self._denormalizer

    def __eq__(self, other):
        if not isinstance(other, NormalizedDimension):
            return NotImplemented
        return (self.min, self.max, self.precision) == (other.min, other.max, other.precision)

    def __hash__(self):
        return hash((self.min, self.max, self.precision))

    def __repr__(self) -> str:
        return f"NormalizedDimension(min={self.min}, max={self.max}, precision={self.precision})"


def normalized_lon(precision: int) -> NormalizedDimension:
    return NormalizedDimension(-180.0, 180.0, precision)


def normalized_lat(precision: int) -> NormalizedDimension:
    return NormalizedDimension(-90.0, 90.0, precision)


def normalized_time(precision: int, max_offset: float) -> NormalizedDimension:
    """Time offset dimension within a single bin, in the bin's offset units."""
    return NormalizedDimension(0.0, float(max_offset), precision)
