"""
Deduction policy -- the configurable decisions of the stock ledger.

Responsibility:
    Carries the product decisions the ledger must not assume: which stage
    triggers deduction, whether a sized line item may fall back to the
    generic (size-less) usage rate, and whether stock may go negative.

Architecture position:
    Kernel > Domain -- pure value objects.  production_config builds a
    DeductionPolicy from YAML; the kernel never reads configuration itself.
"""

from dataclasses import dataclass
from enum import Enum

DEFAULT_DEDUCTION_STAGE = "printing"


class SizeFallback(str, Enum):
    """How a sized line item resolves when no exact-size rate exists."""

    # Use the product's size-less rates when no rate exists for the exact size
    GENERIC_WHEN_NO_EXACT = "generic_when_no_exact"
    # Only an exact (product_type, size) match counts
    EXACT_ONLY = "exact_only"


@dataclass(frozen=True)
class DeductionPolicy:
    """
    Ledger behaviour switches.

    Guarantees:
        - Defaults reproduce the established workshop behaviour: deduct on
          entering "printing", fall back to generic rates, and let stock go
          below zero (logged as stock_below_zero).  allow_negative_stock=False
          is opt-in.
    """

    deduction_stage: str = DEFAULT_DEDUCTION_STAGE
    size_fallback: SizeFallback = SizeFallback.GENERIC_WHEN_NO_EXACT
    allow_negative_stock: bool = True
