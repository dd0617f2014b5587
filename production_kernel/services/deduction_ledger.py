"""
DeductionLedger -- idempotent, all-or-nothing stock deduction per job.

Responsibility:
    Deducts the raw materials a job consumes, exactly once per job: reads
    the job's product list, resolves usage rates, aggregates per material,
    writes the DeductionTransaction marker and one consumed StockMovement
    per material.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the webhook pipeline when a job enters the deduction stage,
    by the manual re-sync action, and by the operator's manual trigger.

Invariants enforced:
    - Single flight: an existing DeductionTransaction short-circuits to
      ALREADY_DEDUCTED before any material or movement is read.
    - Optimistic insert: the marker is inserted (and flushed) before any
      movement.  A UNIQUE(job_id) violation means another request won the
      race; this one rolls back and reports ALREADY_DEDUCTED.
    - All or nothing: BOM resolution happens before the first write, and
      marker, movements and counters share the caller's transaction, so a
      failure part-way leaves no trace.
    - Exact arithmetic: Decimal throughout (domain.requirements).

Failure modes:
    - JobNotFoundError: no such job.
    - ProductListMissingError: the card has no product list, or no valid rows.
    - BOMResolutionError ("bom_missing"): a line item has no usage rate, or
      every matched rate is zero so nothing would be consumed.
    - QuantityOutOfRangeError: a per-material total cannot be stored.
    - InsufficientStockError: stock would go negative and the policy
      disallows it.
    - IntegrityError re-raised if a constraint other than the job marker
      fails (the marker is then absent after rollback).

Audit relevance:
    Each consumed movement carries reference = str(transaction.id) and the
    transaction FK; the transaction row stores the resolved line items.
    Together they explain every unit taken out of stock.
"""

from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.dtos import (
    BOMLineItem,
    DeductionResult,
    DeductionStatus,
    JobView,
    ResolvedLineItem,
)
from production_kernel.domain.policy import DeductionPolicy
from production_kernel.domain.requirements import aggregate_requirements
from production_kernel.exceptions import (
    BOMResolutionError,
    JobNotFoundError,
    ProductListMissingError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.inventory import DeductionTransaction, MovementType
from production_kernel.models.job import Job
from production_kernel.services.base import BaseService
from production_kernel.services.material_usage_resolver import MaterialUsageResolver
from production_kernel.services.stock_movement_service import StockMovementService

logger = get_logger("services.deduction_ledger")


class LineItemSource(Protocol):
    """Supplies a job's BOM line items (usually by fetching its card)."""

    def line_items_for(self, job: JobView) -> list[BOMLineItem] | None:
        """Return the job's line items, or None when it has no product list."""
        ...


class StaticLineItemSource:
    """LineItemSource over line items that are already known."""

    def __init__(self, line_items: list[BOMLineItem] | None):
        self._line_items = line_items

    def line_items_for(self, job: JobView) -> list[BOMLineItem] | None:
        return self._line_items


class DeductionLedger(BaseService[DeductionTransaction]):
    """
    Stock deduction per job.

    Contract:
        deduct_for_job() returns DEDUCTED exactly once per job over the life
        of the system; every other successful call returns ALREADY_DEDUCTED.

    Guarantees:
        - N calls (sequential or concurrent) produce one transaction and one
          set of movements.
        - BOM failures write nothing.

    Non-goals:
        - Does NOT commit.  Does NOT decide whether the job's stage warrants
          a deduction; callers check DeductionPolicy.deduction_stage.
    """

    def __init__(
        self,
        session: Session,
        line_item_source: LineItemSource,
        policy: DeductionPolicy | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._source = line_item_source
        self._policy = policy or DeductionPolicy()
        self._clock = clock or SystemClock()

    def find_transaction(self, job_id: UUID) -> DeductionTransaction | None:
        return self.session.execute(
            select(DeductionTransaction).where(DeductionTransaction.job_id == job_id)
        ).scalar_one_or_none()

    def deduct_for_job(self, job_id: UUID) -> DeductionResult:
        """
        Deduct the job's materials unless already done.

        Preconditions:
            - The session holds no other pending work (it is rolled back
              when this call loses the marker insert race).

        Returns:
            DeductionResult with status DEDUCTED or ALREADY_DEDUCTED.

        Raises:
            JobNotFoundError, ProductListMissingError, BOMResolutionError,
            QuantityOutOfRangeError, InsufficientStockError.
        """
        existing = self.find_transaction(job_id)
        if existing is not None:
            logger.info(
                "deduction_already_applied",
                extra={"job_id": str(job_id), "transaction_id": str(existing.id)},
            )
            return self._already_deducted(existing)

        job = self.session.get(Job, job_id)
        if job is None:
            raise JobNotFoundError(job_id=job_id)
        job_view = JobView(
            id=job.id,
            lead_id=job.lead_id,
            trello_card_id=job.trello_card_id,
            trello_list_id=job.trello_list_id,
            production_stage=job.production_stage,
            title=job.title,
        )

        line_items = self._source.line_items_for(job_view)
        if not line_items:
            raise ProductListMissingError(job.id, job.trello_card_id)

        resolver = MaterialUsageResolver(self.session, self._policy.size_fallback)
        resolved = resolver.resolve(line_items)
        requirements = aggregate_requirements(resolved)
        if not requirements:
            # Every matched rate is zero, so nothing would be consumed
            raise BOMResolutionError(
                [(line.item.product_type, line.item.size) for line in resolved]
            )

        # Commit point and concurrency guard
        transaction = DeductionTransaction(
            job_id=job.id,
            line_items=[line.to_dict() for line in resolved],
            created_at=self._clock.now(),
        )
        self.session.add(transaction)
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            logger.warning(
                "concurrent_deduction_conflict",
                extra={"job_id": str(job_id)},
            )
            existing = self.find_transaction(job_id)
            if existing is None:
                raise
            return self._already_deducted(existing)

        movements = StockMovementService(self.session, self._policy.allow_negative_stock)
        notes = f"Auto deduction at {self._policy.deduction_stage} stage"
        for requirement in requirements:
            movements.record_movement(
                requirement.material_id,
                -requirement.required_qty,
                MovementType.CONSUMED,
                reference=str(transaction.id),
                notes=notes,
                deduction_transaction_id=transaction.id,
            )

        logger.info(
            "deduction_applied",
            extra={
                "job_id": str(job_id),
                "transaction_id": str(transaction.id),
                "line_item_count": len(resolved),
                "material_count": len(requirements),
                "generic_rate_items": sum(1 for line in resolved if line.used_generic_rate),
            },
        )
        return DeductionResult(
            status=DeductionStatus.DEDUCTED,
            job_id=job.id,
            transaction_id=transaction.id,
            line_items=tuple(resolved),
            requirements=tuple(requirements),
        )

    def _already_deducted(self, transaction: DeductionTransaction) -> DeductionResult:
        resolved = tuple(ResolvedLineItem.from_dict(data) for data in transaction.line_items or [])
        return DeductionResult(
            status=DeductionStatus.ALREADY_DEDUCTED,
            job_id=transaction.job_id,
            transaction_id=transaction.id,
            line_items=resolved,
            requirements=tuple(aggregate_requirements(resolved)),
        )
