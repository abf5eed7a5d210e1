import itertools

import pytest

from dynaindex.curve.zorder import ZCurve, ZRange, coalesce, merge_ranges, zranges
from dynaindex.exceptions import ConfigurationError, InvalidPrecisionError


def test_interleave_msb_of_first_dimension_first():
    curve = ZCurve([2, 2])
    # x=0b10, y=0b01 -> x1 y1 x0 y0 = 1 0 0 1
    assert curve.interleave([0b10, 0b01]) == 0b1001
    assert curve.deinterleave(0b1001) == (0b10, 0b01)


def test_interleave_with_unequal_bits():
    curve = ZCurve([3, 1])
    # x2 y0 x1 x0
    assert curve.interleave([0b101, 1]) == 0b1101
    assert curve.deinterleave(0b1101) == (0b101, 1)
    assert curve.total_bits == 4


def test_round_trip_over_every_key():
    curve = ZCurve([3, 2, 2])
    for key in range(curve.max_key + 1):
        assert curve.interleave(curve.deinterleave(key)) == key


def test_interleave_preserves_order_along_each_dimension():
    curve = ZCurve([21, 21, 21])
    assert curve.interleave([5, 7, 9]) < curve.interleave([6, 7, 9])
    assert curve.interleave([5, 7, 9]) < curve.interleave([5, 7, 10])


def test_too_many_bits():
    with pytest.raises(InvalidPrecisionError):
        ZCurve([21, 21, 22])
    with pytest.raises(InvalidPrecisionError):
        ZCurve([0, 4])
    with pytest.raises(ConfigurationError):
        ZCurve([])


def _keys_in_box(curve, mins, maxs):
    return {
        curve.interleave(codes)
        for codes in itertools.product(*[range(lo, hi + 1) for lo, hi in zip(mins, maxs)])
    }


def _covered(ranges, key):
    return any(key in r for r in ranges)


def test_exact_decomposition_without_budgets():
    curve = ZCurve([4, 4])
    box = ((3, 5), (9, 12))
    ranges = zranges(curve, [box])
    inside = _keys_in_box(curve, *box)
    for key in range(curve.max_key + 1):
        assert _covered(ranges, key) == (key in inside)
    assert all(r.contained for r in ranges)
    # sorted and non overlapping
    assert all(a.upper < b.lower for a, b in zip(ranges, ranges[1:]))


@pytest.mark.parametrize("max_ranges", [1, 3, 7])
def test_max_ranges_is_respected_and_still_covers(max_ranges):
    curve = ZCurve([4, 4])
    boxes = [((3, 5), (9, 12)), ((13, 0), (15, 2))]
    ranges = zranges(curve, boxes, max_ranges=max_ranges)
    assert 1 <= len(ranges) <= max_ranges
    for box in boxes:
        for key in _keys_in_box(curve, *box):
            assert _covered(ranges, key)


def test_recursion_limit_still_covers():
    curve = ZCurve([5, 5, 5])
    box = ((1, 2, 3), (20, 17, 30))
    ranges = zranges(curve, [box], max_recursion=2)
    for key in _keys_in_box(curve, *box):
        assert _covered(ranges, key)
    assert any(not r.contained for r in ranges)


def test_precision_limits_resolved_bits():
    curve = ZCurve([4, 4])
    ranges = zranges(curve, [((3, 5), (9, 12))], precision=2)
    # only the two leading bits are resolved, so every range spans whole 6-bit blocks
    for r in ranges:
        assert r.lower % 64 == 0
        assert (r.upper + 1) % 64 == 0


def test_single_point_box():
    curve = ZCurve([4, 4])
    key = curve.interleave([7, 7])
    assert zranges(curve, [((7, 7), (7, 7))]) == [ZRange(key, key, True)]


@pytest.mark.parametrize("budgets", [{}, {"max_ranges": 1}, {"max_recursion": 0}, {"max_ranges": 5, "max_recursion": 3}])
def test_full_domain_terminates_with_one_range(budgets):
    curve = ZCurve([4, 4, 4])
    ranges = zranges(curve, [((0, 0, 0), (15, 15, 15))], **budgets)
    assert ranges == [ZRange(0, curve.max_key, True)]
    assert _covered(ranges, 0) and _covered(ranges, curve.max_key)


def test_no_boxes_and_invalid_budget():
    curve = ZCurve([4, 4])
    assert zranges(curve, []) == []
    with pytest.raises(ConfigurationError):
        zranges(curve, [((0, 0), (1, 1))], max_ranges=0)


def test_merge_ranges():
    ranges = [ZRange(10, 12, True), ZRange(0, 3, True), ZRange(4, 6, False), ZRange(5, 6, True)]
    assert merge_ranges(ranges) == [ZRange(0, 6, False), ZRange(10, 12, True)]


def test_coalesce_closes_smallest_gaps_first():
    ranges = [ZRange(0, 1, True), ZRange(3, 4, True), ZRange(100, 101, True)]
    assert coalesce(ranges, 2) == [ZRange(0, 4, False), ZRange(100, 101, True)]
    assert coalesce(ranges, 1) == [ZRange(0, 101, False)]
    assert coalesce(ranges) == ranges


if __name__ == "__main__":
    pytest.main([__file__])
