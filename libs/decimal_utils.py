from decimal import Decimal, InvalidOperation
import re

# SWIFT "d" format: digits, exactly one comma as decimal mark, no sign,
# no thousands separators.  A leading minus is accepted here only so that it
# can be reported as a negative amount instead of a generic format error.
_SWIFT_AMOUNT_RE = re.compile(r"^-?\d+(?:\.\d*)?$")


def parse_swift_decimal(num_str: str) -> Decimal:
    """
    Converts a SWIFT amount ("123456,78", "1000,", "15") into Decimal.

    - The comma is the decimal separator; it is swapped for a period before
      numeric parsing, so no precision is lost.
    - Non-numeric input or a negative result raises ValueError.
    """
    if not isinstance(num_str, str):
        raise ValueError(f"Amount must be a string, got {type(num_str).__name__}")

    cleaned_str = num_str.strip()
    if not cleaned_str:
        raise ValueError("Amount cannot be empty")
    if "." in cleaned_str:
        raise ValueError(f"Amount '{num_str}' must use a comma as decimal separator")

    final_str = cleaned_str.replace(",", ".")
    if not _SWIFT_AMOUNT_RE.match(final_str):
        raise ValueError(f"Amount '{num_str}' is not numeric")
    try:
        value = Decimal(final_str)
    except InvalidOperation:
        raise ValueError(f"Amount '{num_str}' is not numeric after normalisation to '{final_str}'")
    if value < 0:
        raise ValueError(f"Amount '{num_str}' is negative")
    return value


def format_swift_decimal(value: Decimal) -> str:
    """Inverse of :func:`parse_swift_decimal`: ``Decimal("1000.00") -> "1000,00"``."""
    text = format(value, "f")
    if "." not in text:
        return text + ","
    return text.replace(".", ",")
