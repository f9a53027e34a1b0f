"""
Lossless parsing of the broker's textual fixed-point numbers.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

_DECIMAL_RE = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")


class DecimalParseError(ValueError):
    pass


def parse_decimal(text: Optional[str]) -> Decimal:
    """
    Parse `text` into a Decimal without going through float.

    Accepts signed fixed-point and exponent notation. Empty input,
    surrounding whitespace, NaN and infinities are rejected.
    """
    if not isinstance(text, str) or not _DECIMAL_RE.fullmatch(text):
        raise DecimalParseError(f"invalid decimal {text!r}")
    try:
        return Decimal(text)
    except InvalidOperation as e:
        raise DecimalParseError(f"invalid decimal {text!r}") from e


def parse_decimal_or_zero(text: Optional[str]) -> Decimal:
    try:
        return parse_decimal(text)
    except DecimalParseError:
        return Decimal(0)
