"""
Module: mfg_kernel.db.types
Responsibility: Annotated column type aliases and the single sanctioned money
    rounding function.
Architecture position: Kernel > DB.  Imported by engines, models and orm.

Invariants enforced:
    - No floats for money.  Amounts are Decimal, rounded HALF_UP to
      MONEY_DECIMAL_PLACES for every stored or reported monetary output.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# Monetary amount, 38 digits total, 9 stored decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Quantities share money precision (fractional metres of fabric etc.)
Quantity = Annotated[Decimal, Numeric(38, 9)]

# ISO 4217 currency code
Currency = Annotated[str, String(3)]

# Status / enum values
ShortCode = Annotated[str, String(50)]

# Free text
LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0")


def round_money(value: Decimal | int | str, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Round a monetary amount HALF_UP to ``decimal_places``."""
    quantizer = Decimal(10) ** -decimal_places
    return Decimal(value).quantize(quantizer, rounding=DEFAULT_ROUNDING)


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    """Coerce caller input to Decimal without going through binary float."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)
