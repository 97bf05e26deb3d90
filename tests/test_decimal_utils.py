# tests/test_decimal_utils.py
from decimal import Decimal

import pytest

from libs.decimal_utils import format_swift_decimal, parse_swift_decimal

CASES = [
    ("123456,78", Decimal("123456.78")),
    ("999999999,99", Decimal("999999999.99")),
    ("999999999999,99", Decimal("999999999999.99")),
    ("1000,", Decimal("1000")),
    ("15", Decimal("15")),
    ("0,01", Decimal("0.01")),
    (" 42,5 ", Decimal("42.5")),
]


@pytest.mark.parametrize("raw, expected", CASES)
def test_parse_swift_decimal(raw: str, expected: Decimal):
    assert parse_swift_decimal(raw) == expected


def test_no_binary_float_rounding():
    # 0.1 + 0.2 style errors must not appear
    assert parse_swift_decimal("0,10") + parse_swift_decimal("0,20") == Decimal("0.30")


@pytest.mark.parametrize(
    "raw, reason",
    [
        ("", "empty"),
        ("12.50", "comma"),
        ("1.000,00", "comma"),
        ("1,000,00", "not numeric"),
        ("ABC", "not numeric"),
        ("-1,00", "negative"),
    ],
)
def test_parse_swift_decimal_rejects(raw: str, reason: str):
    with pytest.raises(ValueError, match=reason):
        parse_swift_decimal(raw)


@pytest.mark.parametrize(
    "value, expected",
    [
        (Decimal("1000.00"), "1000,00"),
        (Decimal("1000"), "1000,"),
        (Decimal("0.5"), "0,5"),
    ],
)
def test_format_swift_decimal(value: Decimal, expected: str):
    assert format_swift_decimal(value) == expected
