from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
# Largest value a NUMERIC(10, 2) column can hold.
MAX_AMOUNT_CENTS = 9_999_999_999


def parse_amount(value: Union[str, int, Decimal]) -> int:
    """Parse a user supplied amount into positive integer cents.

    Accepts plain decimal strings ("42.80"), strings with a currency sign or
    thousands separators ("$1,234.50"), and comma decimals ("4,50"). More than
    two decimal places is rejected instead of silently rounded.
    """
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, (int, Decimal)):
        clean = str(value)
    else:
        clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
    if not clean:
        raise ValueError("Amount is required")
    try:
        amount = Decimal(clean)
        if not amount.is_finite():
            raise ValueError("Invalid amount")
        rounded = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if amount != rounded:
        raise ValueError("Amount cannot have more than two decimal places")
    cents = int(amount * 100)
    if cents <= 0:
        raise ValueError("Amount must be a positive number")
    if cents > MAX_AMOUNT_CENTS:
        raise ValueError("Amount is too large")
    return cents


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def percentage(part_cents: int, total_cents: int) -> Decimal:
    if not total_cents:
        return Decimal("0.00")
    share = Decimal(part_cents) * 100 / Decimal(total_cents)
    return share.quantize(CENT, rounding=ROUND_HALF_UP)
