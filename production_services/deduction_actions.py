"""
Manual stock deduction trigger.

The operator can deduct a job's materials from the job screen, either from
the product list on the job's card or from line items supplied with the
request.  The call shares the webhook's idempotency: if the webhook (or an
earlier click) already deducted the job, the result is ``already_deducted``
with the original transaction, and nothing is written.

Result shape (never raises):

    {"result": {"status": "deducted" | "already_deducted",
                "transactionId": ..., "lineItems": [...], "materials": [...]}}
    {"error": "<code>", "message": "...", ...details}
"""

from __future__ import annotations

from typing import Any, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from production_config import ProductionConfig, get_active_config
from production_ingestion.board_client import (
    BoardClient,
    BoardLineItemSource,
    board_client_scope,
)
from production_kernel.db.engine import get_session_factory, session_scope
from production_kernel.domain.clock import Clock
from production_kernel.domain.dtos import BOMLineItem, DeductionResult
from production_kernel.exceptions import (
    BOMResolutionError,
    InsufficientStockError,
    JobNotFoundError,
    ProductionKernelError,
    QuantityOutOfRangeError,
    StoreError,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.services.deduction_ledger import (
    DeductionLedger,
    LineItemSource,
    StaticLineItemSource,
)

logger = get_logger("services.deduction_actions")

ERROR_MESSAGES: dict[str, str] = {
    "bom_missing": "BOM is missing or incomplete for this job.",
    "already_deducted": "Stock already deducted for this job",
    "job_not_found": "Job not found.",
    "product_list_missing": "The job's card has no product list.",
    "insufficient_stock": "Not enough stock on hand to deduct this job.",
    "material_not_found": "A BOM entry points at a material that no longer exists.",
    "card_not_found": "The job's card no longer exists on the board.",
    "board_unavailable": "The board could not be reached. Try again.",
    "board_not_configured": "Board API credentials are not configured.",
    "store_error": "The database is unavailable. Try again.",
    "unknown_stage": "That stage does not exist.",
    "invalid_movement": "Stock movement rejected.",
    "quantity_out_of_range": "A quantity is too large to record.",
}

DEFAULT_ERROR_MESSAGE = "Stock deduction failed."


def describe_error(code: str) -> str:
    """Operator-facing message for an error code."""
    return ERROR_MESSAGES.get(code, DEFAULT_ERROR_MESSAGE)


def coerce_job_id(job_id: UUID | str) -> UUID:
    """Parse a job id from the UI, raising JobNotFoundError when malformed."""
    if isinstance(job_id, UUID):
        return job_id
    try:
        return UUID(str(job_id))
    except ValueError:
        raise JobNotFoundError(job_id=job_id)


def error_result(exc: ProductionKernelError) -> dict[str, Any]:
    """Structured failure dict for an operator action."""
    result: dict[str, Any] = {"error": exc.code, "message": describe_error(exc.code)}
    if isinstance(exc, BOMResolutionError):
        result["missing"] = exc.missing
    elif isinstance(exc, InsufficientStockError):
        result["material"] = exc.material_name
        result["on_hand"] = str(exc.on_hand)
        result["required"] = str(exc.required)
    return result


def _deduct(
    job_id: UUID | str,
    source: LineItemSource,
    config: ProductionConfig,
    factory: sessionmaker[Session],
    clock: Clock | None,
) -> DeductionResult:
    with session_scope(factory) as session:
        return DeductionLedger(
            session, source, config.policy, clock
        ).deduct_for_job(coerce_job_id(job_id))


def deduct_stock_for_job(
    job_id: UUID | str,
    *,
    line_items: Sequence[BOMLineItem] | None = None,
    config: ProductionConfig | None = None,
    session_factory: sessionmaker[Session] | None = None,
    board_client: BoardClient | None = None,
    clock: Clock | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """
    Deduct a job's materials once.

    Args:
        job_id: Job to deduct for.
        line_items: Explicit line items; when omitted they are read from
            the job's card.
        config: Runtime configuration (policy, board settings).
        session_factory: Session factory; the engine's when omitted.
        board_client: Board client used when reading the card.
        clock: Clock for the transaction timestamp.
        actor_id: Operator id, for the logs.

    Returns:
        ``{"result": {...}}`` or ``{"error": code, "message": ...}``.
    """
    with LogContext.bind(actor_id=actor_id, job_id=job_id):
        try:
            config = config or get_active_config()
            factory = session_factory or get_session_factory()
            if line_items is not None:
                source = StaticLineItemSource(list(line_items))
                result = _deduct(job_id, source, config, factory, clock)
            else:
                with board_client_scope(config.board, board_client) as board:
                    source = BoardLineItemSource(board)
                    result = _deduct(job_id, source, config, factory, clock)
        except ProductionKernelError as exc:
            logger.warning(
                "manual_deduction_failed",
                extra={"error_code": exc.code, "error": str(exc)},
            )
            return error_result(exc)
        except SQLAlchemyError as exc:
            store_error = StoreError("manual_deduction", type(exc).__name__)
            logger.error("manual_deduction_failed", extra={"error_code": store_error.code})
            return error_result(store_error)
        except ArithmeticError as exc:
            quantity_error = QuantityOutOfRangeError(type(exc).__name__)
            logger.warning("manual_deduction_failed", extra={"error_code": quantity_error.code})
            return error_result(quantity_error)

        logger.info(
            "manual_deduction_completed",
            extra={"status": result.status.value, "transaction_id": str(result.transaction_id)},
        )
        return {"result": result.to_dict()}
