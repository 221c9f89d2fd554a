# tests/utils/test_units.py
from decimal import Decimal

import pytest

from shareswap.exceptions import InvalidAmountError
from shareswap.utils.units import (
    ceil_int,
    floor_int,
    format_units,
    from_base_units,
    to_base_units,
    to_decimal,
)


class TestToDecimal:
    @pytest.mark.parametrize("raw,expected", [
        ("10.5", Decimal("10.5")),
        (" 3 ", Decimal(3)),
        (7, Decimal(7)),
        (0.1, Decimal("0.1")),
        (Decimal("2.25"), Decimal("2.25")),
    ])
    def test_parses(self, raw, expected):
        assert to_decimal(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", "", "NaN", "Infinity", True, None, [1]])
    def test_rejects(self, raw):
        with pytest.raises(InvalidAmountError):
            to_decimal(raw)


def test_base_unit_scaling():
    assert to_base_units(Decimal("10.05"), 6) == Decimal(10_050_000)
    assert from_base_units(10_050_000, 6) == Decimal("10.05")
    assert to_base_units(Decimal("0.0000001"), 6) == Decimal("0.1")


def test_rounding_helpers():
    assert floor_int(Decimal("9.99")) == 9
    assert ceil_int(Decimal("9.01")) == 10
    assert floor_int(Decimal(4)) == ceil_int(Decimal(4)) == 4


def test_format_units_truncates():
    assert format_units(10_050_000, 6) == "10.05"
    assert format_units(5 * 10**18, 18) == "5"
    assert format_units(1_234_567_891, 9, places=3) == "1.234"
