"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through the stage and
    deduction pipeline: BOMLineItem (parser output), UsageRate and
    ResolvedLineItem (resolver output), MaterialRequirement (aggregation
    output), DeductionResult and TransitionResult (service results), and the
    read-side views returned by selectors.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies; services convert models to these DTOs at the
    boundary.

Invariants enforced:
    - BOMLineItem.quantity is a finite Decimal > 0.
    - UsageRate.qty_per_unit is a finite Decimal >= 0.
    - No floats: every quantity is a Decimal, serialized as a string.

Data flow:
    card text -> BOMLineItem -> ResolvedLineItem -> MaterialRequirement
              -> DeductionResult
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, localcontext
from enum import Enum
from typing import Any
from uuid import UUID

from production_kernel.db.types import EXACT_PRECISION


@dataclass(frozen=True)
class BOMLineItem:
    """
    One "quantity, size" row of a card's product list, under its header.

    Guarantees:
        - quantity is finite and strictly positive (validated in __post_init__).
        - size is None when the row named no size.
    """

    product_type: str
    size: str | None
    quantity: Decimal

    def __post_init__(self) -> None:
        if not self.quantity.is_finite() or self.quantity <= 0:
            raise ValueError(f"Line item quantity must be a positive number, got {self.quantity}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_type": self.product_type,
            "size": self.size,
            "quantity": str(self.quantity),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BOMLineItem:
        return cls(
            product_type=data["product_type"],
            size=data.get("size"),
            quantity=Decimal(data["quantity"]),
        )


@dataclass(frozen=True)
class UsageRate:
    """A configured per-unit consumption of one material by one product/size."""

    material_id: UUID
    material_name: str
    unit: str
    qty_per_unit: Decimal
    size: str | None  # size of the matched rate row; None for the generic rate

    def __post_init__(self) -> None:
        if not self.qty_per_unit.is_finite() or self.qty_per_unit < 0:
            raise ValueError(f"qty_per_unit must be non-negative, got {self.qty_per_unit}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "material_id": str(self.material_id),
            "material_name": self.material_name,
            "unit": self.unit,
            "qty_per_unit": str(self.qty_per_unit),
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageRate:
        return cls(
            material_id=UUID(data["material_id"]),
            material_name=data["material_name"],
            unit=data["unit"],
            qty_per_unit=Decimal(data["qty_per_unit"]),
            size=data.get("size"),
        )


@dataclass(frozen=True)
class ResolvedLineItem:
    """
    A line item together with every usage rate it resolved to.

    Contract:
        rates is non-empty; one entry per material (two for composites).
    """

    item: BOMLineItem
    rates: tuple[UsageRate, ...]

    def __post_init__(self) -> None:
        if not self.rates:
            raise ValueError(f"ResolvedLineItem for {self.item.product_type} has no rates")

    @property
    def used_generic_rate(self) -> bool:
        return self.item.size is not None and all(r.size is None for r in self.rates)

    def required_per_material(self) -> list[tuple[UsageRate, Decimal]]:
        """Exact quantity this line item consumes from each matched material."""
        with localcontext() as ctx:
            ctx.prec = EXACT_PRECISION
            return [(rate, self.item.quantity * rate.qty_per_unit) for rate in self.rates]

    def to_dict(self) -> dict[str, Any]:
        data = self.item.to_dict()
        data["materials"] = [
            {**rate.to_dict(), "required_qty": str(required)}
            for rate, required in self.required_per_material()
        ]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResolvedLineItem:
        return cls(
            item=BOMLineItem.from_dict(data),
            rates=tuple(UsageRate.from_dict(m) for m in data["materials"]),
        )


@dataclass(frozen=True)
class MaterialRequirement:
    """Total quantity of one material a deduction consumes."""

    material_id: UUID
    material_name: str
    unit: str
    required_qty: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "material_id": str(self.material_id),
            "material_name": self.material_name,
            "unit": self.unit,
            "required_qty": str(self.required_qty),
        }


class DeductionStatus(str, Enum):
    """Outcome of a deduction request."""

    DEDUCTED = "deducted"
    ALREADY_DEDUCTED = "already_deducted"


@dataclass(frozen=True)
class DeductionResult:
    """
    Result of DeductionLedger.deduct_for_job.

    Guarantees:
        - DEDUCTED: this call created the transaction and its movements.
        - ALREADY_DEDUCTED: an earlier call did; nothing was written now.
    """

    status: DeductionStatus
    job_id: UUID
    transaction_id: UUID
    line_items: tuple[ResolvedLineItem, ...] = ()
    requirements: tuple[MaterialRequirement, ...] = ()

    @property
    def is_new(self) -> bool:
        return self.status == DeductionStatus.DEDUCTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "transactionId": str(self.transaction_id),
            "lineItems": [item.to_dict() for item in self.line_items],
            "materials": [req.to_dict() for req in self.requirements],
        }


@dataclass(frozen=True)
class TransitionResult:
    """Result of StageTransitionService.apply_transition."""

    changed: bool
    job_id: UUID
    from_stage: str | None
    to_stage: str
    history_entry_id: UUID | None = None


@dataclass(frozen=True)
class StageHistoryView:
    """Read-side view of one stage history row."""

    id: UUID
    job_id: UUID
    stage: str
    from_stage: str | None
    entered_at: datetime
    exited_at: datetime | None
    source: str

    @property
    def is_open(self) -> bool:
        return self.exited_at is None


@dataclass(frozen=True)
class JobView:
    """Read-side view of a job."""

    id: UUID
    lead_id: UUID | None
    trello_card_id: str | None
    trello_list_id: str | None
    production_stage: str
    title: str | None = None


@dataclass(frozen=True)
class MaterialStockView:
    """Read-side view of a material's stock position."""

    id: UUID
    name: str
    unit: str
    qty_on_hand: Decimal
    minimum_level: Decimal

    @property
    def shortfall(self) -> Decimal:
        return max(self.minimum_level - self.qty_on_hand, Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "unit": self.unit,
            "qty_on_hand": str(self.qty_on_hand),
            "minimum_level": str(self.minimum_level),
        }


@dataclass(frozen=True)
class StockMovementView:
    """Read-side view of a stock movement."""

    id: UUID
    material_id: UUID
    delta_qty: Decimal
    movement_type: str
    reference: str | None
    deduction_transaction_id: UUID | None
    notes: str | None = None
    created_at: datetime | None = field(default=None, compare=False)
