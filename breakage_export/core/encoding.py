"""
Fixed-format line encoding for the inventory export files.

Pure functions, no I/O. Each consolidated record becomes one line:

    Inventario <13-digit zero-padded code> <quantity with 3 decimals>

Rounding rules:
1. UNIT quantities are floored to an integer and written as ``<int>.000``
2. WEIGHT quantities are rounded half-even to 3 decimals (1.2345 -> 1.234)
"""

from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_EVEN
from typing import Iterable, Optional

from breakage_export.storage.models import ConsolidatedRecord, UnitType

from .errors import FormatError

PRODUCT_CODE_WIDTH = 13
LINE_PREFIX = "Inventario"

_THREE_PLACES = Decimal("0.001")


def format_product_code(code: str) -> str:
    """Left-pad a product code with zeros to exactly 13 characters.
    
    Raises:
        FormatError: If the code is longer than 13 characters
    """
    if len(code) > PRODUCT_CODE_WIDTH:
        raise FormatError(
            f"Product code {code!r} exceeds {PRODUCT_CODE_WIDTH} characters"
        )
    return code.rjust(PRODUCT_CODE_WIDTH, "0")


def format_quantity(quantity, unit_type: Optional[UnitType]) -> str:
    """Render a quantity with exactly three fractional digits.
    
    Args:
        quantity: Decimal, int, float or numeric string
        unit_type: UnitType, or its stored value ("UN"/"KG") or name
        
    Returns:
        "10.000" style string
        
    Raises:
        FormatError: If the unit type is unknown or the quantity is not
            numeric or too large for three decimals
    """
    unit = _coerce_unit_type(unit_type)
    try:
        value = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
    except ArithmeticError:
        raise FormatError(f"Invalid quantity: {quantity!r}")
    if not value.is_finite():
        raise FormatError(f"Invalid quantity: {quantity!r}")

    if unit is UnitType.UNIT:
        whole = value.to_integral_value(rounding=ROUND_FLOOR)
        return f"{whole:f}.000"
    try:
        rounded = value.quantize(_THREE_PLACES, rounding=ROUND_HALF_EVEN)
    except InvalidOperation:
        # More digits than the decimal context precision allows
        raise FormatError(f"Quantity too large to format: {quantity!r}")
    return f"{rounded:f}"


def _coerce_unit_type(unit_type) -> UnitType:
    if isinstance(unit_type, UnitType):
        return unit_type
    if isinstance(unit_type, str):
        key = unit_type.strip().upper()
        for unit in UnitType:
            if key in (unit.value, unit.name):
                return unit
    raise FormatError(f"Unknown unit type: {unit_type!r}")


def encode_line(record: ConsolidatedRecord) -> str:
    """Render one consolidated record as an export line."""
    code = format_product_code(record.product_code)
    quantity = format_quantity(record.total_quantity, record.unit_type)
    return f"{LINE_PREFIX} {code} {quantity}"


def encode_file(records: Iterable[ConsolidatedRecord]) -> str:
    """Render records as file content with a single trailing newline.
    
    Empty input yields an empty string; callers skip writing in that case.
    """
    lines = [encode_line(record) for record in records]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
