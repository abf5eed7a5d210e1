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
Z-order (Morton) curve codec and range decomposition.

Per-dimension integer codes are bit-interleaved round-robin into one sortable key,
most significant bit of the first dimension first. A key prefix of `n` bits selects
an aligned block of keys which always decodes to an axis-aligned box of codes; the
range decomposer relies on that property to bisect query regions on the curve.
"""

import heapq
import logging
from collections import deque
from enum import Enum
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

from dynaindex.exceptions import ConfigurationError, InvalidPrecisionError

logger = logging.getLogger(__name__)

# keys are stored as signed 64-bit integers, one bit is kept spare
MAX_KEY_BITS = 63

CodeBox = Tuple[Tuple[int, ...], Tuple[int, ...]]


class ZRange(NamedTuple):
    """An inclusive range of curve keys."""
    lower: int
    upper: int
    # True when every key in the range is inside the query region
    contained: bool = False

    def __contains__(self, key: object) -> bool:
        return isinstance(key, int) and self.lower <= key <= self.upper


class _Relation(Enum):
    DISJOINT = 0
    OVERLAPS = 1
    CONTAINED = 2


class ZCurve:
    """
    Bit-interleaving codec for N dimensions.

    Dimensions may use a different number of bits; at each bit level only the
    dimensions that still have bits left take part in the round-robin.
    """

    def __init__(self, bits: Sequence[int]):
        if not bits:
            raise ConfigurationError("A curve needs at least one dimension")
        for b in bits:
            if b < 1:
                raise InvalidPrecisionError(f"Bits per dimension must be positive, got: {list(bits)}")
        total = sum(bits)
        if total > MAX_KEY_BITS:
            raise InvalidPrecisionError(
                f"Total curve bits must be <= {MAX_KEY_BITS}, got {total} from {list(bits)}"
            )
        self.bits: Tuple[int, ...] = tuple(bits)
        self.dimensions = len(self.bits)
        self.total_bits = total
        self.max_key = (1 << total) - 1
        # (dimension, bit) for each key bit, from the most significant key bit down
        layout = []
        for level in range(max(self.bits)):
            for dim, dim_bits in enumerate(self.bits):
                bit = dim_bits - 1 - level
                if bit >= 0:
                    layout.append((dim, bit))
        self._layout: Tuple[Tuple[int, int], ...] = tuple(layout)

    def interleave(self, codes: Sequence[int]) -> int:
        """Builds a key from one code per dimension."""
        key = 0
        for dim, bit in self._layout:
            key = (key << 1) | ((codes[dim] >> bit) & 1)
        return key

    def deinterleave(self, key: int) -> Tuple[int, ...]:
        """Splits a key back into one code per dimension."""
        codes = [0] * self.dimensions
        position = self.total_bits - 1
        for dim, bit in self._layout:
            if (key >> position) & 1:
                codes[dim] |= 1 << bit
            position -= 1
        return tuple(codes)

    def split_bit(self, remaining: int) -> Tuple[int, int]:
        """The (dimension, bit) that is fixed when a block with `remaining` free bits is bisected."""
        return self._layout[self.total_bits - remaining]

    def common_block(self, lower: int, upper: int) -> Tuple[int, int]:
        """
        Smallest aligned block containing both keys.

        Returns (prefix, remaining) where the block covers
        [prefix << remaining, ((prefix + 1) << remaining) - 1].
        """
        remaining = (lower ^ upper).bit_length()
        return lower >> remaining, remaining

    def block_bounds(self, prefix: int, remaining: int) -> CodeBox:
        """Per-dimension (mins, maxs) codes of an aligned block."""
        lower = prefix << remaining
        upper = lower | ((1 << remaining) - 1)
        return self.deinterleave(lower), self.deinterleave(upper)

    def __repr__(self) -> str:
        return f"ZCurve(bits={list(self.bits)})"


def _relation(mins: Sequence[int], maxs: Sequence[int], boxes: Sequence[CodeBox]) -> _Relation:
    result = _Relation.DISJOINT
    for qmins, qmaxs in boxes:
        overlaps = True
        contained = True
        for lo, hi, qlo, qhi in zip(mins, maxs, qmins, qmaxs):
            if lo > qhi or hi < qlo:
                overlaps = False
                break
            if lo < qlo or hi > qhi:
                contained = False
        if overlaps:
            if contained:
                return _Relation.CONTAINED
            result = _Relation.OVERLAPS
    return result


def zranges(
    curve: ZCurve,
    boxes: Iterable[CodeBox],
    precision: int = 64,
    max_ranges: Optional[int] = None,
    max_recursion: Optional[int] = None,
) -> List[ZRange]:
    """
    Decomposes query boxes (in code space) into a sorted list of key ranges.

    Blocks are bisected breadth first at their key midpoint. Children disjoint from
    every box are dropped, children inside a box are emitted as contained ranges, and
    the rest are refined until one of the budgets runs out:

    * `precision`: number of leading key bits that may be resolved,
    * `max_recursion`: bisection steps below each root block,
    * `max_ranges`: emitted plus pending ranges; once a refinement could exceed it,
      pending blocks are emitted as they are (coarse, not contained).

    Every key whose decoded codes fall inside a box is covered by the result, and when
    `max_ranges` is given the result never has more ranges than that.
    """
    if max_ranges is not None and max_ranges < 1:
        raise ConfigurationError(f"max_ranges must be positive, got: {max_ranges}")

    query: List[CodeBox] = []
    for mins, maxs in boxes:
        if len(mins) != curve.dimensions or len(maxs) != curve.dimensions:
            raise ValueError(f"Expected {curve.dimensions} dimensions, got: {mins}, {maxs}")
        lows = tuple(min(a, b) for a, b in zip(mins, maxs))
        highs = tuple(max(a, b) for a, b in zip(mins, maxs))
        query.append((lows, highs))
    if not query:
        return []

    ranges: List[ZRange] = []
    # (prefix, remaining bits, depth below root, block mins, block maxs)
    pending = deque()

    roots = sorted({curve.common_block(curve.interleave(mins), curve.interleave(maxs)) for mins, maxs in query})
    # drop roots nested in another root, they would only be refined twice
    roots = [
        (prefix, remaining) for prefix, remaining in roots
        if not any(r > remaining and (prefix >> (r - remaining)) == p for p, r in roots)
    ]
    for prefix, remaining in roots:
        mins, maxs = curve.block_bounds(prefix, remaining)
        if _relation(mins, maxs, query) is _Relation.CONTAINED:
            lower = prefix << remaining
            ranges.append(ZRange(lower, lower | ((1 << remaining) - 1), True))
        else:
            pending.append((prefix, remaining, 0, mins, maxs))

    while pending:
        prefix, remaining, depth, mins, maxs = pending.popleft()
        lower = prefix << remaining
        upper = lower | ((1 << remaining) - 1)

        exhausted = (
            remaining == 0
            or curve.total_bits - remaining >= precision
            or (max_recursion is not None and depth >= max_recursion)
        )
        over_budget = max_ranges is not None and len(ranges) + len(pending) + 2 > max_ranges
        if exhausted or over_budget:
            ranges.append(ZRange(lower, upper, False))
            continue

        dim, bit = curve.split_bit(remaining)
        child_remaining = remaining - 1
        low_maxs = list(maxs)
        low_maxs[dim] = mins[dim] | ((1 << bit) - 1)
        high_mins = list(mins)
        high_mins[dim] = mins[dim] | (1 << bit)
        children = (
            (prefix << 1, mins, tuple(low_maxs)),
            ((prefix << 1) | 1, tuple(high_mins), maxs),
        )
        for child, child_mins, child_maxs in children:
            relation = _relation(child_mins, child_maxs, query)
            if relation is _Relation.DISJOINT:
                continue
            if relation is _Relation.CONTAINED:
                child_lower = child << child_remaining
                ranges.append(ZRange(child_lower, child_lower | ((1 << child_remaining) - 1), True))
            else:
                pending.append((child, child_remaining, depth + 1, child_mins, child_maxs))

    return coalesce(ranges, max_ranges)


def merge_ranges(ranges: Iterable[ZRange]) -> List[ZRange]:
    """Sorts ranges and merges the ones that overlap or touch."""
    merged: List[ZRange] = []
    for r in sorted(ranges):
        if merged and r.lower <= merged[-1].upper + 1:
            last = merged[-1]
            if r.upper > last.upper:
                merged[-1] = ZRange(last.lower, r.upper, last.contained and r.contained)
        else:
            merged.append(r)
    return merged


def coalesce(ranges: Iterable[ZRange], max_ranges: Optional[int] = None) -> List[ZRange]:
    """
    Merges overlapping ranges, then, if still over `max_ranges`, merges the neighbours
    separated by the smallest gaps until the budget holds. Ranges merged across a gap
    are no longer contained.
    """
    merged = merge_ranges(ranges)
    if max_ranges is None or len(merged) <= max_ranges:
        return merged

    excess = len(merged) - max_ranges
    gaps = [(merged[i + 1].lower - merged[i].upper, i) for i in range(len(merged) - 1)]
    closing = {i for _, i in heapq.nsmallest(excess, gaps)}
    logger.debug(f"Coalescing {len(merged)} ranges into {max_ranges} by closing {excess} gaps.")

    result: List[ZRange] = []
    current = merged[0]
    for i in range(len(merged) - 1):
        following = merged[i + 1]
        if i in closing:
            current = ZRange(current.lower, following.upper, False)
        else:
            result.append(current)
            current = following
    result.append(current)
    return result
