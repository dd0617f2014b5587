"""
Module: production_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers for stock
    quantities.  Centralizes precision so that every model and service uses
    identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    No floats anywhere in the ledger.  Quantities and usage rates use Decimal
    with QUANTITY_DECIMAL_PLACES of storage precision; round_quantity() is
    the only sanctioned rounding function and is applied once, at the
    storage boundary, after exact aggregation.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Annotated

from sqlalchemy import Numeric, String

from production_kernel.exceptions import QuantityOutOfRangeError

# Stock quantity / usage rate: 38 digits total, 9 decimal places
QUANTITY_PRECISION = 38
# Enough digits that products and sums of storable quantities never round
EXACT_PRECISION = 2 * QUANTITY_PRECISION
Quantity = Annotated[Decimal, Numeric(QUANTITY_PRECISION, 9)]

# External board identifiers (Trello ids are 24 hex chars)
ExternalId = Annotated[str, String(64)]

# Stage slugs and other short codes
ShortCode = Annotated[str, String(100)]

# Free text notes
LongText = Annotated[str, String(4000)]

QUANTITY_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

_QUANTUM = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)


def round_quantity(value: Decimal) -> Decimal:
    """
    Round a quantity to storage precision.

    Preconditions: value is a finite Decimal.
    Postconditions: Returns value quantized to QUANTITY_DECIMAL_PLACES
        using ROUND_HALF_UP.

    Raises:
        QuantityOutOfRangeError: The rounded value needs more than
            QUANTITY_PRECISION digits and cannot be stored.
    """
    with localcontext() as ctx:
        ctx.prec = QUANTITY_PRECISION
        try:
            return value.quantize(_QUANTUM, rounding=DEFAULT_ROUNDING)
        except InvalidOperation:
            raise QuantityOutOfRangeError(value)


def quantity_fits(value: Decimal) -> bool:
    """True when value can be stored as a Quantity."""
    try:
        round_quantity(value)
    except QuantityOutOfRangeError:
        return False
    return True


def quantity_from_str(value: str) -> Decimal | None:
    """
    Parse a quantity string, returning None when it is not a finite number.

    Args:
        value: Text such as "4", "2.5" or "-1".

    Returns:
        The Decimal value, or None for non-numeric, NaN or infinite input.
    """
    try:
        parsed = Decimal(value.strip())
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite():
        return None
    return parsed
