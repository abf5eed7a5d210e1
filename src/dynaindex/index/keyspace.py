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
Index key spaces.

A key space owns the row key layout of one index. On the write path it turns a
feature into a storage key; on the read path it turns the values extracted from a
filter into scan ranges (curve ranges, shard-replicated) and concrete byte ranges.

Row layouts:
    z3:   shard | bin (2 bytes) | z (8 bytes) | id
    z2:   shard | z (8 bytes) | id
    attr: shard | lexicoded value | 0x00 | id
    id:   id
"""

import logging
import struct
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Set, Tuple

from shapely.geometry import Point

from dynaindex.curve.binned_time import TimeBinner, to_datetime, to_millis
from dynaindex.curve.sfc import z2_sfc, z3_sfc
from dynaindex.curve.zorder import ZRange
from dynaindex.exceptions import UnsupportedGeometryError
from dynaindex.filters import ast
from dynaindex.filters.extraction import Bounds, FilterValues, extract_bounds, extract_geometries, extract_ids
from dynaindex.index.sharding import ShardStrategy, shard_strategy
from dynaindex.models.feature import Feature
from dynaindex.models.schema import FeatureSchema, IndexConfig, IndexKind
from dynaindex.tools.geospatial import WHOLE_WORLD, BBox, geometry_bounds

logger = logging.getLogger(__name__)

KeyFilter = Callable[[bytes], bool]


class ScanRange(NamedTuple):
    """A curve range to scan in one shard (and, for z3, one time bin)."""
    shard: bytes
    bin: Optional[int]
    range: ZRange


class ByteRange(NamedTuple):
    """Row key range: `start` inclusive, `end` exclusive (None is unbounded)."""
    start: bytes
    end: Optional[bytes]
    contained: bool = True


class Z3IndexValues(NamedTuple):
    geometries: FilterValues
    spatial_bounds: List[BBox]
    intervals: FilterValues
    partial_bins: Dict[int, List[Tuple[int, int]]]
    whole_bins: Set[int]

    @property
    def disjoint(self) -> bool:
        return self.geometries.disjoint or self.intervals.disjoint or not (self.partial_bins or self.whole_bins)

    @property
    def precise(self) -> bool:
        return self.geometries.precise and self.intervals.precise


class Z2IndexValues(NamedTuple):
    geometries: FilterValues
    spatial_bounds: List[BBox]

    @property
    def disjoint(self) -> bool:
        return self.geometries.disjoint

    @property
    def precise(self) -> bool:
        return self.geometries.precise


def _point(feature: Feature, attribute: str) -> Point:
    geom = feature.geometry
    if geom is None:
        raise UnsupportedGeometryError(f"Feature '{feature.id}' has no geometry in '{attribute}'")
    if not isinstance(geom, Point) or geom.is_empty:
        raise UnsupportedGeometryError(
            f"Only point geometries can be indexed by a z-curve, got {geom.geom_type} for feature '{feature.id}'"
        )
    return geom


def _spatial_bounds(geometries: FilterValues) -> List[BBox]:
    if geometries.unconstrained:
        return [WHOLE_WORLD]
    boxes = []
    for geom in geometries.values:
        boxes.extend(geometry_bounds(geom))
    return boxes


class IndexKeySpace(ABC):
    """Row key layout and range generation of a single index."""

    def __init__(self, schema: FeatureSchema, config: IndexConfig):
        self.schema = schema
        self.config = config
        self.sharding: ShardStrategy = shard_strategy(config.shards, config.shard_mode)

    @property
    def attributes(self) -> List[str]:
        return list(self.config.attributes)

    @abstractmethod
    def to_index_key(self, feature: Feature, lenient: bool = False) -> Optional[bytes]:
        """Storage row key of a feature, or None if the feature is not indexed."""
        ...

    @abstractmethod
    def get_index_values(self, f: Optional[ast.Filter]) -> Any:
        """Values of `f` that this index can use."""
        ...

    @abstractmethod
    def get_byte_ranges(self, values: Any, max_ranges: Optional[int] = None) -> List[ByteRange]:
        ...

    def get_ranges(self, values: Any, max_ranges: Optional[int] = None) -> List[ScanRange]:
        """Curve ranges per shard; empty for key spaces that are not curve based."""
        return []

    def key_filter(self, values: Any) -> Optional[KeyFilter]:
        """Row key check for ranges that are not fully contained, if the index needs one."""
        return None

    def to_byte_ranges(self, ranges: Sequence[ScanRange]) -> List[ByteRange]:
        """Row key ranges of curve scan ranges: the 8-byte curve key follows the shard and bin."""
        byte_ranges = []
        for sr in ranges:
            prefix = sr.shard if sr.bin is None else sr.shard + sr.bin.to_bytes(2, "big")
            byte_ranges.append(ByteRange(
                prefix + sr.range.lower.to_bytes(8, "big"),
                prefix + (sr.range.upper + 1).to_bytes(8, "big"),
                sr.range.contained,
            ))
        return byte_ranges

    def _replicate(self, ranges: Sequence[Tuple[Optional[int], ZRange]]) -> List[ScanRange]:
        return [ScanRange(shard, b, r) for shard in self.sharding.shards for b, r in ranges]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.config.name}, shards={self.sharding.count})"


class Z3KeySpace(IndexKeySpace):
    """Spatio-temporal key space over point geometries and a date attribute."""

    def __init__(self, schema: FeatureSchema, config: IndexConfig):
        super().__init__(schema, config)
        self.geometry_attribute, self.dtg_attribute = config.attributes
        self.sfc = z3_sfc(config.period, config.precision)
        self.binner = TimeBinner(config.period)

    def to_index_key(self, feature: Feature, lenient: bool = False) -> bytes:
        point = _point(feature, self.geometry_attribute)
        dtg = feature.properties.get(self.dtg_attribute)
        # features without a date are indexed at the epoch
        binned = self.binner.to_binned_time(0 if dtg is None else dtg, lenient=lenient)
        z = self.sfc.index(point.x, point.y, binned.offset, lenient=lenient)
        return (
            self.sharding.shard(feature.id)
            + binned.bin.to_bytes(2, "big")
            + z.to_bytes(8, "big")
            + feature.id.encode("utf-8")
        )

    def get_index_values(self, f: Optional[ast.Filter]) -> Z3IndexValues:
        geometries = extract_geometries(f, self.geometry_attribute)
        intervals = extract_bounds(f, self.dtg_attribute)
        if intervals.unconstrained:
            time_bounds = [(None, None)]
        else:
            time_bounds = [_to_inclusive_times(b) for b in intervals.values]
        if geometries.disjoint or intervals.disjoint:
            partial, whole = {}, set()
        else:
            partial, whole = self.binner.bins_for_intervals(time_bounds)
        return Z3IndexValues(geometries, _spatial_bounds(geometries), intervals, partial, whole)

    def get_ranges(self, values: Z3IndexValues, max_ranges: Optional[int] = None) -> List[ScanRange]:
        if values.disjoint:
            return []
        target = max_ranges or self.schema.scan_ranges_target
        bins = len(values.partial_bins) + len(values.whole_bins)
        per_bin = max(1, target // bins)
        ranges: List[Tuple[Optional[int], ZRange]] = []
        if values.whole_bins:
            # every whole bin has the same key ranges
            shared = self.sfc.ranges(values.spatial_bounds, self.sfc.whole_period, max_ranges=per_bin)
            for b in sorted(values.whole_bins):
                ranges.extend((b, r) for r in shared)
        for b in sorted(values.partial_bins):
            offsets = values.partial_bins[b]
            ranges.extend((b, r) for r in self.sfc.ranges(values.spatial_bounds, offsets, max_ranges=per_bin))
        ranges.sort(key=lambda br: (br[0], br[1].lower))
        return self._replicate(ranges)

    def get_byte_ranges(self, values: Z3IndexValues, max_ranges: Optional[int] = None) -> List[ByteRange]:
        return self.to_byte_ranges(self.get_ranges(values, max_ranges))

    def key_filter(self, values: Z3IndexValues) -> KeyFilter:
        xy = [self.sfc.code_box((xmin, ymin, 0), (xmax, ymax, 0)) for xmin, ymin, xmax, ymax in values.spatial_bounds]
        xy = [(lo[0], lo[1], hi[0], hi[1]) for lo, hi in xy]
        whole = frozenset(values.whole_bins)
        time = self.sfc.time
        partial = {
            b: [(time.normalize(lo, lenient=True), time.normalize(hi, lenient=True)) for lo, hi in offsets]
            for b, offsets in values.partial_bins.items()
        }
        shard_length = self.sharding.length
        curve = self.sfc.curve

        def accept(row: bytes) -> bool:
            b = int.from_bytes(row[shard_length:shard_length + 2], "big")
            if b in whole:
                times = None
            elif b in partial:
                times = partial[b]
            else:
                return False
            x, y, t = curve.deinterleave(int.from_bytes(row[shard_length + 2:shard_length + 10], "big"))
            if times is not None and not any(lo <= t <= hi for lo, hi in times):
                return False
            return any(xlo <= x <= xhi and ylo <= y <= yhi for xlo, ylo, xhi, yhi in xy)

        return accept


def _to_inclusive_times(b: Bounds) -> Tuple[Optional[datetime], Optional[datetime]]:
    lower = upper = None
    if b.lower is not None:
        lower = to_datetime(b.lower)
        if not b.lower_inclusive:
            lower += timedelta(milliseconds=1)
    if b.upper is not None:
        upper = to_datetime(b.upper)
        if not b.upper_inclusive:
            upper -= timedelta(milliseconds=1)
    return lower, upper


class Z2KeySpace(IndexKeySpace):
    """Spatial key space over point geometries."""

    def __init__(self, schema: FeatureSchema, config: IndexConfig):
        super().__init__(schema, config)
        self.geometry_attribute = config.attributes[0]
        self.sfc = z2_sfc(config.precision)

    def to_index_key(self, feature: Feature, lenient: bool = False) -> bytes:
        point = _point(feature, self.geometry_attribute)
        z = self.sfc.index(point.x, point.y, lenient=lenient)
        return self.sharding.shard(feature.id) + z.to_bytes(8, "big") + feature.id.encode("utf-8")

    def get_index_values(self, f: Optional[ast.Filter]) -> Z2IndexValues:
        geometries = extract_geometries(f, self.geometry_attribute)
        return Z2IndexValues(geometries, _spatial_bounds(geometries))

    def get_ranges(self, values: Z2IndexValues, max_ranges: Optional[int] = None) -> List[ScanRange]:
        if values.disjoint:
            return []
        target = max_ranges or self.schema.scan_ranges_target
        return self._replicate([(None, r) for r in self.sfc.ranges(values.spatial_bounds, max_ranges=target)])

    def get_byte_ranges(self, values: Z2IndexValues, max_ranges: Optional[int] = None) -> List[ByteRange]:
        return self.to_byte_ranges(self.get_ranges(values, max_ranges))

    def key_filter(self, values: Z2IndexValues) -> KeyFilter:
        boxes = [self.sfc.code_box((xmin, ymin), (xmax, ymax)) for xmin, ymin, xmax, ymax in values.spatial_bounds]
        shard_length = self.sharding.length
        curve = self.sfc.curve

        def accept(row: bytes) -> bool:
            x, y = curve.deinterleave(int.from_bytes(row[shard_length:shard_length + 8], "big"))
            return any(lo[0] <= x <= hi[0] and lo[1] <= y <= hi[1] for lo, hi in boxes)

        return accept


# --- attribute lexicoding ---

_SEPARATOR = b"\x00"


def lexicode(value: Any) -> bytes:
    """
    Encodes an attribute value so that byte order matches value order. Numbers are
    encoded as doubles so ints and floats of one attribute sort together.
    """
    if isinstance(value, bool):
        return b"\x01" if value else b"\x00"
    if isinstance(value, (int, float)):
        packed = bytearray(struct.pack(">d", float(value)))
        if packed[0] & 0x80:
            return bytes(b ^ 0xFF for b in packed)
        packed[0] |= 0x80
        return bytes(packed)
    if isinstance(value, datetime):
        return (to_millis(value) + (1 << 63)).to_bytes(8, "big")
    return str(value).encode("utf-8")


def successor(prefix: bytes) -> Optional[bytes]:
    """Smallest byte string greater than every string starting with `prefix`."""
    stripped = prefix.rstrip(b"\xff")
    if not stripped:
        return None
    return stripped[:-1] + bytes([stripped[-1] + 1])


class AttributeKeySpace(IndexKeySpace):
    """Attribute equality/range key space."""

    def __init__(self, schema: FeatureSchema, config: IndexConfig):
        super().__init__(schema, config)
        self.attribute = config.attributes[0]

    def to_index_key(self, feature: Feature, lenient: bool = False) -> Optional[bytes]:
        value = feature.properties.get(self.attribute)
        if value is None:
            return None
        return self.sharding.shard(feature.id) + lexicode(value) + _SEPARATOR + feature.id.encode("utf-8")

    def get_index_values(self, f: Optional[ast.Filter]) -> FilterValues:
        return extract_bounds(f, self.attribute)

    def get_byte_ranges(self, values: FilterValues, max_ranges: Optional[int] = None) -> List[ByteRange]:
        if values.disjoint:
            return []
        bounds = values.values or (Bounds(),)
        ranges = []
        for shard in self.sharding.shards:
            for b in bounds:
                if b.lower is None:
                    start = shard
                else:
                    start = shard + lexicode(b.lower) + (_SEPARATOR if b.lower_inclusive else b"\x01")
                if b.upper is None:
                    end = successor(shard) if shard else None
                else:
                    end = shard + lexicode(b.upper) + (b"\x01" if b.upper_inclusive else _SEPARATOR)
                ranges.append(ByteRange(start, end, values.precise))
        return ranges


class IdKeySpace(IndexKeySpace):
    """Identifier key space: one row per feature id."""

    def to_index_key(self, feature: Feature, lenient: bool = False) -> bytes:
        return feature.id.encode("utf-8")

    def get_index_values(self, f: Optional[ast.Filter]) -> FilterValues:
        return extract_ids(f)

    def get_byte_ranges(self, values: FilterValues, max_ranges: Optional[int] = None) -> List[ByteRange]:
        rows = sorted(str(i).encode("utf-8") for i in values.values)
        return [ByteRange(row, row + _SEPARATOR) for row in rows]


_KEY_SPACES = {
    IndexKind.Z3: Z3KeySpace,
    IndexKind.Z2: Z2KeySpace,
    IndexKind.ATTRIBUTE: AttributeKeySpace,
    IndexKind.ID: IdKeySpace,
}


def key_space(schema: FeatureSchema, config: IndexConfig) -> IndexKeySpace:
    return _KEY_SPACES[config.kind](schema, config)
