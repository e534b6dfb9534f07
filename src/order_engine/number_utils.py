"""
Locale tolerant number parsing and the wire formats used for money and quantities.

Operators type amounts either as ``1234.56`` or in the Brazilian style
``1.234,56``. The rules are:

- both ``,`` and ``.`` present: ``.`` is a thousands separator and ``,`` the decimal one;
- only ``,`` present: a single ``,`` is the decimal separator, several are thousands separators;
- only ``.`` present: a single ``.`` is the decimal separator, several are thousands separators.
"""

from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any, Optional, Union
import math
import re

TWO_PLACES = Decimal("0.01")
_NUMBER_RX = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")

Number = Union[int, float]


def parse_number_universal(value: Any) -> Optional[Decimal]:
    """Parse a user supplied number. Returns None when the value is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return Decimal(str(value))

    text = str(value).strip().replace(" ", "")
    if not text:
        return None

    if "," in text and "." in text:
        text = text.replace(".", "").replace(",", ".")
    elif "," in text:
        text = text.replace(",", ".") if text.count(",") == 1 else text.replace(",", "")
    elif text.count(".") > 1:
        text = text.replace(".", "")

    if not _NUMBER_RX.match(text):
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def format_money(value: Any) -> str:
    """Two decimal places, half up. Unparseable values become ``0.00``."""
    number = parse_number_universal(value)
    if number is None:
        number = Decimal(0)
    return str(number.quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def floor_quantity(value: Any) -> int:
    number = parse_number_universal(value)
    if number is None:
        return 0
    return int(number.to_integral_value(rounding=ROUND_FLOOR))


def format_quantity(value: Any) -> str:
    """Integer valued string (floored), ``0`` when not numeric."""
    return str(floor_quantity(value))


def line_total(unit_price: Any, quantity: Any) -> str:
    """``unit_price x quantity`` with the quantity floored, formatted as money."""
    unit = parse_number_universal(unit_price)
    if unit is None:
        unit = Decimal(0)
    return format_money(unit * floor_quantity(quantity))


def to_finite_number(value: Any) -> Optional[Number]:
    """Plain int/float for count style leaves, None when not a finite number."""
    number = parse_number_universal(value)
    if number is None:
        return None
    if number == number.to_integral_value():
        return int(number)
    return float(number)
