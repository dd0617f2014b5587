"""
Module: production_kernel.selectors.inventory_selector
Responsibility: Read access to materials, stock movements and deduction
    transactions: the low-stock report, a deduction's movements, and the
    movement-derived balance used to audit the on-hand counter.
Architecture position: Kernel > Selectors.

Audit relevance:
    material_balance_from_movements() recomputes stock from the append-only
    ledger; it must always equal Material.qty_on_hand.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from production_kernel.domain.dtos import MaterialStockView, StockMovementView
from production_kernel.models.inventory import DeductionTransaction, Material, StockMovement
from production_kernel.selectors.base import BaseSelector


def _material_view(material: Material) -> MaterialStockView:
    return MaterialStockView(
        id=material.id,
        name=material.name,
        unit=material.unit,
        qty_on_hand=material.qty_on_hand,
        minimum_level=material.minimum_level,
    )


def _movement_view(movement: StockMovement) -> StockMovementView:
    movement_type = movement.movement_type
    return StockMovementView(
        id=movement.id,
        material_id=movement.material_id,
        delta_qty=movement.delta_qty,
        movement_type=getattr(movement_type, "value", movement_type),
        reference=movement.reference,
        deduction_transaction_id=movement.deduction_transaction_id,
        notes=movement.notes,
        created_at=movement.created_at,
    )


class InventorySelector(BaseSelector[Material]):
    """Queries over materials, stock_movements and deduction_transactions."""

    def material(self, material_id: UUID) -> MaterialStockView | None:
        material = self.session.get(Material, material_id)
        return _material_view(material) if material is not None else None

    def low_stock(self) -> list[MaterialStockView]:
        """Materials at or below their minimum level, by name."""
        materials = self.session.execute(
            select(Material)
            .where(Material.qty_on_hand <= Material.minimum_level)
            .order_by(Material.name)
        ).scalars().all()
        return [_material_view(m) for m in materials]

    def deduction_for_job(self, job_id: UUID) -> DeductionTransaction | None:
        return self.session.execute(
            select(DeductionTransaction).where(DeductionTransaction.job_id == job_id)
        ).scalar_one_or_none()

    def movements_for_deduction(self, job_id: UUID) -> list[StockMovementView]:
        """Consumed movements caused by the job's deduction transaction."""
        movements = self.session.execute(
            select(StockMovement)
            .join(
                DeductionTransaction,
                StockMovement.deduction_transaction_id == DeductionTransaction.id,
            )
            .where(DeductionTransaction.job_id == job_id)
            .order_by(StockMovement.material_id)
        ).scalars().all()
        return [_movement_view(m) for m in movements]

    def movements_for_material(self, material_id: UUID) -> list[StockMovementView]:
        movements = self.session.execute(
            select(StockMovement)
            .where(StockMovement.material_id == material_id)
            .order_by(StockMovement.created_at)
        ).scalars().all()
        return [_movement_view(m) for m in movements]

    def material_balance_from_movements(self, material_id: UUID) -> Decimal:
        """Sum of the material's movement deltas."""
        total = self.session.execute(
            select(func.coalesce(func.sum(StockMovement.delta_qty), 0))
            .where(StockMovement.material_id == material_id)
        ).scalar_one()
        return Decimal(str(total))
