"""
Manual job stage actions.

sync_job_from_board
    Re-reads the card from the board and applies its current list, the same
    way a webhook delivery would (source ``board_sync``).  Used when a
    delivery was lost or the webhook was down.  At the deduction stage the
    deduction is re-checked from the card text just fetched.

set_job_stage
    Operator moves a job on the in-app board (source ``manual``).  Does not
    touch the card and does not deduct stock; the board stays the trigger
    for deductions.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from production_config import ProductionConfig, get_active_config
from production_ingestion.board_client import BoardClient, board_client_scope
from production_kernel.db.engine import get_session_factory, session_scope
from production_kernel.domain.bom_parser import parse_card_description
from production_kernel.domain.clock import Clock
from production_kernel.exceptions import (
    JobNotFoundError,
    ProductionKernelError,
    QuantityOutOfRangeError,
    StoreError,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.models.job import StageChangeSource
from production_kernel.selectors.job_selector import JobSelector
from production_kernel.services.deduction_ledger import DeductionLedger, StaticLineItemSource
from production_kernel.services.stage_transition_service import StageTransitionService
from production_services.deduction_actions import coerce_job_id, error_result

logger = get_logger("services.job_sync")


def _transition_result(stage: str, changed: bool) -> dict[str, Any]:
    return {"ok": True, "stage": stage, "changed": changed}


def sync_job_from_board(
    job_id: UUID | str,
    *,
    config: ProductionConfig | None = None,
    session_factory: sessionmaker[Session] | None = None,
    board_client: BoardClient | None = None,
    clock: Clock | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """
    Apply the card's current board list to the job.

    Returns:
        ``{"ok": True, "stage": ..., "changed": ...}`` plus ``"deduction"``
        (a deduction result or error dict) at the deduction stage, or
        ``{"error": code, "message": ...}``.
    """
    with LogContext.bind(actor_id=actor_id, job_id=job_id):
        try:
            return _sync(
                coerce_job_id(job_id),
                config or get_active_config(),
                session_factory or get_session_factory(),
                board_client,
                clock,
            )
        except ProductionKernelError as exc:
            logger.warning("board_sync_failed", extra={"error_code": exc.code, "error": str(exc)})
            return error_result(exc)
        except SQLAlchemyError as exc:
            store_error = StoreError("board_sync", type(exc).__name__)
            logger.error("board_sync_failed", extra={"error_code": store_error.code})
            return error_result(store_error)


def _sync(
    job_id: UUID,
    config: ProductionConfig,
    factory: sessionmaker[Session],
    board_client: BoardClient | None,
    clock: Clock | None,
) -> dict[str, Any]:
    with session_scope(factory) as session:
        job = JobSelector(session).get(job_id)
    if job is None:
        raise JobNotFoundError(job_id=job_id)
    if not job.trello_card_id:
        return {"error": "card_not_linked", "message": "This job has no board card."}

    stage_map = config.stage_map
    with board_client_scope(config.board, board_client) as board:
        card = board.get_card(job.trello_card_id, fields=("idList", "desc"))
        list_id = card.get("idList")
        stage = stage_map.resolve(list_id)
        if stage is None and stage_map.resolve_by_name and list_id:
            stage = stage_map.resolve(list_id, board.get_list_name(list_id))
    if stage is None:
        logger.warning("board_sync_list_unmapped", extra={"list_id": list_id})
        return {
            "error": "list_not_mapped",
            "message": "The card's board list is not mapped to a production stage.",
            "list_id": list_id,
        }

    with session_scope(factory) as session:
        transition = StageTransitionService(session, stage_map, clock).apply_transition(
            job.id,
            stage,
            list_id,
            source=StageChangeSource.BOARD_SYNC,
            card_id=job.trello_card_id,
        )
    result = _transition_result(stage, transition.changed)
    logger.info("board_sync_completed", extra={"stage": stage, "changed": transition.changed})

    if stage == config.policy.deduction_stage:
        line_items = parse_card_description(card.get("desc"))
        try:
            with session_scope(factory) as session:
                deduction = DeductionLedger(
                    session, StaticLineItemSource(line_items), config.policy, clock
                ).deduct_for_job(job.id)
        except ProductionKernelError as exc:
            logger.warning(
                "board_sync_deduction_failed",
                extra={"error_code": exc.code, "error": str(exc)},
            )
            result["deduction"] = error_result(exc)
        except ArithmeticError as exc:
            quantity_error = QuantityOutOfRangeError(type(exc).__name__)
            logger.warning(
                "board_sync_deduction_failed",
                extra={"error_code": quantity_error.code},
            )
            result["deduction"] = error_result(quantity_error)
        else:
            result["deduction"] = deduction.to_dict()
    return result


def set_job_stage(
    job_id: UUID | str,
    stage: str,
    *,
    config: ProductionConfig | None = None,
    session_factory: sessionmaker[Session] | None = None,
    clock: Clock | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """
    Move a job to a stage from the operator UI.

    No-op (``changed: False``) when the job is already at the stage.
    """
    with LogContext.bind(actor_id=actor_id, job_id=job_id):
        try:
            config = config or get_active_config()
            with session_scope(session_factory or get_session_factory()) as session:
                transition = StageTransitionService(
                    session, config.stage_map, clock
                ).apply_transition(
                    coerce_job_id(job_id),
                    stage,
                    source=StageChangeSource.MANUAL,
                )
        except ProductionKernelError as exc:
            logger.warning("manual_stage_update_failed", extra={"error_code": exc.code})
            return error_result(exc)
        except SQLAlchemyError as exc:
            store_error = StoreError("manual_stage_update", type(exc).__name__)
            logger.error("manual_stage_update_failed", extra={"error_code": store_error.code})
            return error_result(store_error)

        logger.info(
            "manual_stage_update_completed",
            extra={"from_stage": transition.from_stage, "to_stage": stage, "changed": transition.changed},
        )
        return _transition_result(stage, transition.changed)
