"""
StockMovementService -- the only writer of Material.qty_on_hand.

Responsibility:
    Inserts one StockMovement and applies its delta to the material's
    on-hand counter in the same flush.  Used by the deduction ledger for
    consumed movements and by operator stock actions for restocks and
    adjustments.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Counter consistency: qty_on_hand changes only here, only together
      with the movement row, and as an SQL-side increment
      (qty_on_hand = qty_on_hand + delta) so concurrent writers cannot lose
      an update.
    - Sign discipline: consumed < 0, restocked > 0, adjustment != 0.
    - Non-negative stock only when allow_negative_stock is off; otherwise a
      consumption that takes the balance below zero is applied and logged
      as stock_below_zero so the operator can restock.

Failure modes:
    - MaterialNotFoundError: unknown material id.
    - InvalidMovementError: delta sign contradicts the movement type.
    - InsufficientStockError: the movement would take stock below zero and
      negative stock is not allowed.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from production_kernel.db.types import round_quantity
from production_kernel.exceptions import (
    InsufficientStockError,
    InvalidMovementError,
    MaterialNotFoundError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.inventory import Material, MovementType, StockMovement
from production_kernel.services.base import BaseService

logger = get_logger("services.stock_movement")


class StockMovementService(BaseService[StockMovement]):
    """
    Records stock movements.

    Contract:
        record_movement() flushes exactly one StockMovement and one
        qty_on_hand update, or raises without writing either.
    """

    def __init__(self, session: Session, allow_negative_stock: bool = False):
        super().__init__(session)
        self._allow_negative_stock = allow_negative_stock

    def record_movement(
        self,
        material_id: UUID,
        delta_qty: Decimal,
        movement_type: MovementType,
        *,
        reference: str | None = None,
        notes: str | None = None,
        deduction_transaction_id: UUID | None = None,
    ) -> StockMovement:
        """
        Append a movement and apply it to the material's counter.

        Returns:
            The flushed StockMovement.
        """
        delta = round_quantity(Decimal(delta_qty))
        self._check_sign(movement_type, delta)

        material = self.session.execute(
            select(Material)
            .where(Material.id == material_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if material is None:
            raise MaterialNotFoundError(material_id)

        on_hand = material.qty_on_hand
        goes_negative = delta < 0 and on_hand + delta < 0
        if goes_negative and not self._allow_negative_stock:
            raise InsufficientStockError(
                material_id=material.id,
                material_name=material.name,
                on_hand=on_hand,
                required=-delta,
            )

        movement = StockMovement(
            material_id=material.id,
            delta_qty=delta,
            movement_type=movement_type,
            reference=reference,
            notes=notes,
            deduction_transaction_id=deduction_transaction_id,
        )
        self.session.add(movement)
        material.qty_on_hand = Material.qty_on_hand + delta
        self.session.flush()

        logger.info(
            "stock_movement_recorded",
            extra={
                "material_id": str(material.id),
                "material": material.name,
                "movement_type": movement_type.value,
                "delta_qty": delta,
                "reference": reference,
            },
        )
        if goes_negative:
            logger.warning(
                "stock_below_zero",
                extra={
                    "material_id": str(material.id),
                    "material": material.name,
                    "qty_on_hand": on_hand + delta,
                    "minimum_level": material.minimum_level,
                },
            )
        return movement

    def restock(
        self,
        material_id: UUID,
        quantity: Decimal,
        *,
        reference: str | None = None,
        notes: str | None = None,
    ) -> StockMovement:
        """Receive stock (purchase order, return to stock)."""
        return self.record_movement(
            material_id, quantity, MovementType.RESTOCKED, reference=reference, notes=notes,
        )

    def adjust(
        self,
        material_id: UUID,
        delta_qty: Decimal,
        *,
        notes: str | None = None,
        reference: str | None = None,
    ) -> StockMovement:
        """Correct the counter after a stock count; either sign."""
        return self.record_movement(
            material_id, delta_qty, MovementType.ADJUSTMENT, reference=reference, notes=notes,
        )

    @staticmethod
    def _check_sign(movement_type: MovementType, delta: Decimal) -> None:
        if delta == 0:
            raise InvalidMovementError(movement_type.value, delta, "delta must be non-zero")
        if movement_type == MovementType.CONSUMED and delta > 0:
            raise InvalidMovementError(movement_type.value, delta, "consumption must be negative")
        if movement_type == MovementType.RESTOCKED and delta < 0:
            raise InvalidMovementError(movement_type.value, delta, "restock must be positive")
