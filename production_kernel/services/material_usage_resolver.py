"""
MaterialUsageResolver -- BOM line items to configured material usage rates.

Responsibility:
    For each parsed line item, finds the usage rate rows for its
    (product_type, size) in product_material_usage, together with the
    material each rate consumes.

Architecture position:
    Kernel > Services -- read-only, but lives beside the ledger that is its
    only caller.

Invariants enforced:
    - All or nothing: if any line item resolves to zero rates, the whole
      batch fails with BOMResolutionError ("bom_missing") listing every
      unresolved item.  A partial resolution would understate consumption.
    - A line item with no size only matches size-less (generic) rates.
    - A sized line item falls back to generic rates only when the policy is
      SizeFallback.GENERIC_WHEN_NO_EXACT and no exact-size rate exists.

Failure modes:
    - BOMResolutionError when one or more line items are unresolved.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from production_kernel.domain.dtos import BOMLineItem, ResolvedLineItem, UsageRate
from production_kernel.domain.policy import SizeFallback
from production_kernel.exceptions import BOMResolutionError
from production_kernel.logging_config import get_logger
from production_kernel.models.inventory import Material, MaterialUsageRate

logger = get_logger("services.material_usage_resolver")


class MaterialUsageResolver:
    """
    Resolves line items against the BOM table.

    Contract:
        resolve() returns one ResolvedLineItem per input item, in input
        order, or raises BOMResolutionError.
    """

    def __init__(
        self,
        session: Session,
        size_fallback: SizeFallback = SizeFallback.GENERIC_WHEN_NO_EXACT,
    ):
        self.session = session
        self._size_fallback = size_fallback

    def resolve(self, line_items: list[BOMLineItem]) -> list[ResolvedLineItem]:
        rates = self._load_rates({item.product_type for item in line_items})

        resolved: list[ResolvedLineItem] = []
        missing: list[tuple[str, str | None]] = []

        for item in line_items:
            matched = rates.get((item.product_type, item.size), [])
            if (
                not matched
                and item.size is not None
                and self._size_fallback == SizeFallback.GENERIC_WHEN_NO_EXACT
            ):
                matched = rates.get((item.product_type, None), [])

            if not matched:
                key = (item.product_type, item.size)
                if key not in missing:
                    missing.append(key)
                continue
            resolved.append(ResolvedLineItem(item=item, rates=tuple(matched)))

        if missing:
            logger.warning(
                "bom_resolution_failed",
                extra={
                    "missing": [f"{p}/{s}" if s else p for p, s in missing],
                    "line_item_count": len(line_items),
                },
            )
            raise BOMResolutionError(missing)

        return resolved

    def _load_rates(
        self, product_types: set[str],
    ) -> dict[tuple[str, str | None], list[UsageRate]]:
        if not product_types:
            return {}

        rows = self.session.execute(
            select(MaterialUsageRate, Material)
            .join(Material, MaterialUsageRate.material_id == Material.id)
            .where(MaterialUsageRate.product_type.in_(product_types))
            .order_by(MaterialUsageRate.product_type, Material.name)
        ).all()

        index: dict[tuple[str, str | None], list[UsageRate]] = {}
        for rate, material in rows:
            index.setdefault((rate.product_type, rate.size), []).append(
                UsageRate(
                    material_id=material.id,
                    material_name=material.name,
                    unit=material.unit,
                    qty_per_unit=rate.qty_per_unit,
                    size=rate.size,
                )
            )
        return index
