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
Time binning.

Absolute time is partitioned into discrete periods so that the time dimension of a
Z3 curve only has to span a single period. Each bin has its own coordinate space:
keys are comparable only within a bin, so storage keys always carry the bin first.
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple, Union

from dynaindex.exceptions import InvalidTimePeriodError, OutOfBoundsError

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# bins are stored as unsigned 16-bit values
MAX_BIN = (1 << 16) - 1

TimeLike = Union[datetime, int]


class TimePeriod(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @classmethod
    def parse(cls, value: Union[str, "TimePeriod"]) -> "TimePeriod":
        if isinstance(value, TimePeriod):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise InvalidTimePeriodError(
                f"Invalid time period '{value}'. Expected one of: {', '.join(p.value for p in cls)}", e
            ) from e


class BinnedTime(NamedTuple):
    """A time projected through a period: the bin index and the offset inside the bin."""
    bin: int
    offset: int


_MILLIS_PER_DAY = 86_400_000
_SECONDS_PER_DAY = 86_400
_SECONDS_PER_WEEK = 7 * _SECONDS_PER_DAY

# offset units: day -> milliseconds, week/month -> seconds, year -> minutes
_MAX_OFFSETS = {
    TimePeriod.DAY: _MILLIS_PER_DAY,
    TimePeriod.WEEK: _SECONDS_PER_WEEK,
    TimePeriod.MONTH: _SECONDS_PER_DAY * 31,
    TimePeriod.YEAR: 24 * 60 * 366,
}


def max_offset(period: TimePeriod) -> int:
    """Exclusive upper bound of offsets within a bin of `period`."""
    return _MAX_OFFSETS[TimePeriod.parse(period)]


def to_datetime(value: TimeLike) -> datetime:
    """Converts epoch millis or a datetime to an aware UTC datetime (naive values are UTC)."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return EPOCH + timedelta(milliseconds=value)
    raise TypeError(f"Expected datetime or epoch millis, got: {value!r}")


def to_millis(value: TimeLike) -> int:
    dt = to_datetime(value)
    delta = dt - EPOCH
    return (delta.days * _SECONDS_PER_DAY + delta.seconds) * 1000 + delta.microseconds // 1000


def _add_months(year: int, month: int, months: int) -> Tuple[int, int]:
    total = year * 12 + (month - 1) + months
    return total // 12, total % 12 + 1


class TimeBinner:
    """Projects absolute times into (bin, offset) for a fixed period."""

    def __init__(self, period: Union[str, TimePeriod]):
        self.period = TimePeriod.parse(period)
        self.max_offset = _MAX_OFFSETS[self.period]
        # yearly bins would run past datetime.max before exhausting 16 bits
        self.max_bin = MAX_BIN if self.period != TimePeriod.YEAR else 9999 - 1970 - 1

    # --- bin boundaries ---

    def bin_start(self, bin_index: int) -> datetime:
        """First instant of a bin."""
        if self.period == TimePeriod.DAY:
            return EPOCH + timedelta(days=bin_index)
        if self.period == TimePeriod.WEEK:
            return EPOCH + timedelta(weeks=bin_index)
        if self.period == TimePeriod.MONTH:
            year, month = _add_months(1970, 1, bin_index)
            return datetime(year, month, 1, tzinfo=timezone.utc)
        return datetime(1970 + bin_index, 1, 1, tzinfo=timezone.utc)

    def bin_end(self, bin_index: int) -> datetime:
        """First instant after a bin (exclusive end)."""
        return self.bin_start(bin_index + 1)

    @property
    def min_date(self) -> datetime:
        return self.bin_start(0)

    @property
    def max_date(self) -> datetime:
        """Last representable instant (inclusive)."""
        return self.bin_end(self.max_bin) - timedelta(milliseconds=1)

    def last_offset(self, bin_index: int) -> int:
        """Offset of the last instant of a bin (months are shorter than the max offset)."""
        start = self.bin_start(bin_index)
        return self._offset(self.bin_end(bin_index) - timedelta(milliseconds=1), start)

    # --- projection ---

    def _offset(self, dt: datetime, start: datetime) -> int:
        delta = dt - start
        millis = (delta.days * _SECONDS_PER_DAY + delta.seconds) * 1000 + delta.microseconds // 1000
        if self.period == TimePeriod.DAY:
            return millis
        if self.period == TimePeriod.YEAR:
            return millis // 60_000
        return millis // 1000

    def _bin_of(self, dt: datetime) -> int:
        if self.period == TimePeriod.DAY:
            return (dt - EPOCH).days
        if self.period == TimePeriod.WEEK:
            return (dt - EPOCH).days // 7
        if self.period == TimePeriod.MONTH:
            return (dt.year - 1970) * 12 + dt.month - 1
        return dt.year - 1970

    def to_binned_time(self, value: TimeLike, lenient: bool = False) -> BinnedTime:
        """
        Projects a time into its bin.

        Times before the epoch or past the last bin raise OutOfBoundsError, unless
        `lenient` is set, in which case they are clamped to the first/last instant.
        """
        dt = to_datetime(value)
        if dt < self.min_date or dt > self.max_date:
            if not lenient:
                raise OutOfBoundsError(
                    f"Date out of bounds for period {self.period.value} "
                    f"[{self.min_date.isoformat()},{self.max_date.isoformat()}]: {dt.isoformat()}"
                )
            dt = self.min_date if dt < self.min_date else self.max_date
        bin_index = self._bin_of(dt)
        return BinnedTime(bin_index, self._offset(dt, self.bin_start(bin_index)))

    def from_binned_time(self, binned: BinnedTime) -> datetime:
        """Inverse projection; exact up to the offset unit of the period."""
        start = self.bin_start(binned.bin)
        if self.period == TimePeriod.DAY:
            return start + timedelta(milliseconds=binned.offset)
        if self.period == TimePeriod.YEAR:
            return start + timedelta(minutes=binned.offset)
        return start + timedelta(seconds=binned.offset)

    # --- query support ---

    def bins_for_intervals(
        self,
        intervals: Iterable[Tuple[Optional[TimeLike], Optional[TimeLike]]],
    ) -> Tuple[Dict[int, List[Tuple[int, int]]], Set[int]]:
        """
        Splits time intervals into per-bin offset intervals.

        Unbounded sides are clamped to the representable dates. Returns a mapping of
        bin -> sorted offset intervals (inclusive) for partially covered bins, and the
        set of bins covered whole, which share a single whole-period interval.
        """
        partial: Dict[int, List[Tuple[int, int]]] = {}
        whole: Set[int] = set()
        for start, end in intervals:
            lower = self.to_binned_time(self.min_date if start is None else start, lenient=True)
            upper = self.to_binned_time(self.max_date if end is None else end, lenient=True)
            if (lower.bin, lower.offset) > (upper.bin, upper.offset):
                continue
            if lower.bin == upper.bin:
                if lower.offset == 0 and upper.offset >= self.last_offset(upper.bin):
                    whole.add(lower.bin)
                else:
                    partial.setdefault(lower.bin, []).append((lower.offset, upper.offset))
                continue
            if lower.offset == 0:
                whole.add(lower.bin)
            else:
                partial.setdefault(lower.bin, []).append((lower.offset, self.max_offset - 1))
            whole.update(range(lower.bin + 1, upper.bin))
            if upper.offset >= self.last_offset(upper.bin):
                whole.add(upper.bin)
            else:
                partial.setdefault(upper.bin, []).append((0, upper.offset))

        for bin_index in whole:
            partial.pop(bin_index, None)
        for bin_index, offsets in partial.items():
            partial[bin_index] = _merge_offsets(offsets)
        return partial, whole

    def __repr__(self) -> str:
        return f"TimeBinner(period={self.period.value})"


def _merge_offsets(offsets: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    merged: List[Tuple[int, int]] = []
    for lo, hi in sorted(offsets):
        if merged and lo <= merged[-1][1] + 1:
            merged[-1] = (merged[-1][0], max(hi, merged[-1][1]))
        else:
            merged.append((lo, hi))
    return merged
