"""
Requirements -- per-material aggregation of resolved line items.

Responsibility:
    Sums, for every material, quantity x qty_per_unit over all resolved line
    items and all of their matched rates.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Exact Decimal arithmetic (EXACT_PRECISION digits, so nothing rounds);
      rounding to storage precision happens once, on the per-material total.
    - A total beyond storage precision raises QuantityOutOfRangeError.
    - Materials whose total is zero are omitted (a zero rate consumes
      nothing and produces no movement).
    - Output is ordered by material id so row locks are always taken in the
      same order.
"""

from decimal import Decimal, localcontext
from uuid import UUID

from production_kernel.db.types import EXACT_PRECISION, round_quantity
from production_kernel.domain.dtos import MaterialRequirement, ResolvedLineItem


def aggregate_requirements(
    resolved: list[ResolvedLineItem] | tuple[ResolvedLineItem, ...],
) -> list[MaterialRequirement]:
    """
    Aggregate required quantities per material.

    Args:
        resolved: Line items with their matched usage rates.

    Returns:
        One MaterialRequirement per material with a non-zero total, sorted by
        material id.
    """
    totals: dict[UUID, Decimal] = {}
    names: dict[UUID, tuple[str, str]] = {}

    with localcontext() as ctx:
        ctx.prec = EXACT_PRECISION
        for line in resolved:
            for rate, required in line.required_per_material():
                totals[rate.material_id] = totals.get(rate.material_id, Decimal("0")) + required
                names.setdefault(rate.material_id, (rate.material_name, rate.unit))

    requirements = []
    for material_id in sorted(totals, key=str):
        total = round_quantity(totals[material_id])
        if total == 0:
            continue
        name, unit = names[material_id]
        requirements.append(
            MaterialRequirement(
                material_id=material_id,
                material_name=name,
                unit=unit,
                required_qty=total,
            )
        )
    return requirements
