import math

import pytest

from dynaindex.curve.dimensions import NormalizedDimension, normalized_lat, normalized_lon, normalized_time
from dynaindex.exceptions import ConfigurationError, InvalidPrecisionError, OutOfBoundsError


def test_lon_bounds_normalize_to_grid_edges():
    lon = normalized_lon(21)
    assert lon.normalize(-180.0) == 0
    assert lon.normalize(180.0, lenient=True) == (1 << 21) - 1
    assert lon.normalize(179.9999999) == (1 << 21) - 1


def test_upper_bound_is_rejected_in_strict_mode():
    lon = normalized_lon(21)
    with pytest.raises(OutOfBoundsError):
        lon.normalize(180.0)
    with pytest.raises(OutOfBoundsError):
        lon.normalize(-180.0001)


def test_lenient_mode_clamps():
    lat = normalized_lat(10)
    assert lat.normalize(-1000.0, lenient=True) == 0
    assert lat.normalize(1000.0, lenient=True) == lat.max_index


def test_nan_is_rejected_even_when_lenient():
    lat = normalized_lat(21)
    with pytest.raises(OutOfBoundsError):
        lat.normalize(float("nan"))
    with pytest.raises(OutOfBoundsError):
        lat.normalize(float("nan"), lenient=True)


@pytest.mark.parametrize("precision", [1, 8, 16, 21])
def test_round_trip_is_within_one_cell(precision):
    lon = normalized_lon(precision)
    cell = 360.0 / (1 << precision)
    for x in [-180.0, -179.5, -45.25, 0.0, 12.3456, 90.0, 179.99]:
        assert abs(lon.denormalize(lon.normalize(x)) - x) <= cell


def test_denormalize_returns_cell_centre_and_clamps():
    time = normalized_time(2, 100)
    assert time.denormalize(0) == 12.5
    assert time.denormalize(3) == 87.5
    assert time.denormalize(-4) == time.denormalize(0)
    assert time.denormalize(99) == time.denormalize(3)


def test_cell_bounds_contain_the_value():
    lat = normalized_lat(21)
    code = lat.normalize(50.0)
    lower, upper = lat.cell_bounds(code)
    assert lower <= 50.0 < upper
    assert math.isclose(upper - lower, lat.cell_size)


@pytest.mark.parametrize("precision", [0, 22, -1])
def test_invalid_precision(precision):
    with pytest.raises(InvalidPrecisionError):
        normalized_lon(precision)


def test_invalid_precision_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        normalized_lat(99)


def test_empty_domain_is_rejected():
    with pytest.raises(ConfigurationError):
        NormalizedDimension(10.0, 10.0, 8)


def test_dimensions_are_immutable():
    lon = normalized_lon(21)
    with pytest.raises(AttributeError):
        lon.precision = 10
    assert lon == normalized_lon(21)
    assert lon != normalized_lon(20)


if __name__ == "__main__":
    pytest.main([__file__])
