"""
Module: production_kernel.models.inventory
Responsibility: ORM persistence for raw materials, per-product usage rates
    (the BOM table), the append-only stock movement ledger, and the per-job
    deduction marker.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions.py only.

Invariants enforced:
    - Single-flight deduction: UNIQUE(deduction_transactions.job_id).  The
      marker's successful insert is the commit point of a deduction; a
      racing second insert fails and is reported as already_deducted.
    - Append-only ledger: StockMovement and DeductionTransaction rows are
      never updated or deleted (ORM before_update / before_delete listeners).
    - Counter consistency: Material.qty_on_hand changes only together with a
      StockMovement insert in the same flush (StockMovementService).

Failure modes:
    - IntegrityError on a second DeductionTransaction for the same job.
    - ImmutabilityViolationError on UPDATE/DELETE of a ledger row.

Audit relevance:
    For every material, qty_on_hand equals the sum of its movements' delta_qty
    (InventorySelector.material_balance_from_movements verifies it).  Every
    consumed movement references the DeductionTransaction that caused it.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import Base, TrackedBase, UUIDString
from production_kernel.exceptions import ImmutabilityViolationError


class MovementType(str, Enum):
    """Kind of stock change.

    Contract: consumed deltas are negative, restocked deltas positive,
        adjustments either sign (never zero).
    """

    CONSUMED = "consumed"
    RESTOCKED = "restocked"
    ADJUSTMENT = "adjustment"


class Material(TrackedBase):
    """
    A raw material held in stock (blank garments, ink, film, ...).

    Guarantees:
        - name is unique.
        - qty_on_hand is the denormalized running total of this material's
          stock movements.
    """

    __tablename__ = "materials"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    unit: Mapped[str] = mapped_column(String(32), nullable=False, default="unit")

    qty_on_hand: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    # Low-stock threshold
    minimum_level: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    def __repr__(self) -> str:
        return f"<Material {self.name} on_hand={self.qty_on_hand} {self.unit}>"


class MaterialUsageRate(TrackedBase):
    """
    How much of one material one unit of a product (in one size) consumes.

    Contract:
        A (product_type, size) pair maps to one row per material; composite
        products have two.  size NULL is the generic, size-independent rate.

    Non-goals:
        - Rates are maintained by the BOM settings screen; this system only
          reads them.
    """

    __tablename__ = "product_material_usage"

    __table_args__ = (
        UniqueConstraint(
            "product_type", "size", "material_id",
            name="uq_product_material_usage",
        ),
        Index("idx_product_material_usage_lookup", "product_type", "size"),
    )

    product_type: Mapped[str] = mapped_column(String(255), nullable=False)

    size: Mapped[str | None] = mapped_column(String(64), nullable=True)

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("materials.id"),
        nullable=False,
    )

    qty_per_unit: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    def __repr__(self) -> str:
        size = self.size or "*"
        return f"<MaterialUsageRate {self.product_type}/{size} -> {self.material_id} x{self.qty_per_unit}>"


class DeductionTransaction(Base):
    """
    Idempotency marker and audit anchor for a job's one-time stock deduction.

    Contract:
        Inserted before any movement of the deduction; its unique job_id is
        the concurrency guard.  Never updated or deleted.

    Guarantees:
        - At most one row per job, ever.
        - line_items holds the resolved, aggregated items that were deducted,
          so repeated triggers can report them without touching materials.
    """

    __tablename__ = "deduction_transactions"

    __table_args__ = (
        UniqueConstraint("job_id", name="uq_deduction_transaction_job"),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("jobs.id"),
        nullable=False,
    )

    line_items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<DeductionTransaction {self.id} job={self.job_id}>"


class StockMovement(Base):
    """
    One immutable quantity change to one material.

    Contract:
        Inserted together with the matching qty_on_hand update.  Never
        updated or deleted; corrections are new adjustment movements.

    Guarantees:
        - delta_qty sign agrees with movement_type.
        - consumed movements carry deduction_transaction_id and
          reference = str(deduction_transaction_id).
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_stock_movement_material", "material_id", "created_at"),
        Index("idx_stock_movement_deduction", "deduction_transaction_id"),
    )

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("materials.id"),
        nullable=False,
    )

    delta_qty: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    movement_type: Mapped[MovementType] = mapped_column(String(20), nullable=False)

    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    deduction_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("deduction_transactions.id"),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<StockMovement {self.movement_type} {self.delta_qty} material={self.material_id}>"


# =============================================================================
# ORM-Level Immutability Protection
# =============================================================================


@event.listens_for(StockMovement, "before_update")
def prevent_movement_update(mapper, connection, target):
    raise ImmutabilityViolationError("StockMovement", target.id)


@event.listens_for(StockMovement, "before_delete")
def prevent_movement_delete(mapper, connection, target):
    raise ImmutabilityViolationError("StockMovement", target.id)


@event.listens_for(DeductionTransaction, "before_update")
def prevent_deduction_update(mapper, connection, target):
    raise ImmutabilityViolationError("DeductionTransaction", target.id)


@event.listens_for(DeductionTransaction, "before_delete")
def prevent_deduction_delete(mapper, connection, target):
    raise ImmutabilityViolationError("DeductionTransaction", target.id)
