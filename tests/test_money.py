from decimal import Decimal

import pytest

from money import MAX_AMOUNT_CENTS, cents_to_decimal, parse_amount, percentage


@pytest.mark.parametrize(
    ("raw", "cents"),
    [
        ("42.80", 4280),
        ("4,50", 450),
        ("$1,234.50", 123450),
        (" 3200 ", 320000),
        (7, 700),
        (Decimal("0.01"), 1),
    ],
)
def test_parse_amount_accepts_common_formats(raw, cents) -> None:
    assert parse_amount(raw) == cents


@pytest.mark.parametrize(
    "raw", ["0", "-5", "", "abc", "1.005", "NaN", "Infinity", True]
)
def test_parse_amount_rejects_invalid(raw) -> None:
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_parse_amount_rejects_too_large() -> None:
    assert parse_amount(str(cents_to_decimal(MAX_AMOUNT_CENTS))) == MAX_AMOUNT_CENTS
    with pytest.raises(ValueError, match="too large"):
        parse_amount("100000000.00")


def test_cents_sum_is_exact() -> None:
    assert cents_to_decimal(parse_amount("0.10") + parse_amount("0.20")) == Decimal(
        "0.30"
    )


def test_percentage_rounds_half_up_and_handles_zero_total() -> None:
    assert percentage(1, 8) == Decimal("12.50")
    assert percentage(1, 3) == Decimal("33.33")
    assert percentage(2, 3) == Decimal("66.67")
    assert percentage(5, 0) == Decimal("0.00")
