"""
WebhookPipeline -- one board delivery, end to end.

Responsibility:
    Authenticates, classifies and applies a board webhook delivery:

        verify signature -> classify -> resolve list to stage
        -> find job by card -> stage transition (own transaction)
        -> if the target is the deduction stage: deduct (own transaction)

    and turns the outcome into the HTTP answer for the sender.

Architecture position:
    Ingestion -- the only caller of the kernel services on the webhook
    path.  The FastAPI app in production_ingestion.app is a thin adapter
    over handle().

Invariants enforced:
    - Nothing is parsed or written before the signature is verified.
    - The stage transition commits before the board is asked for the card
      text, so a slow board never holds row locks.
    - The deduction is re-checked whenever the target is the deduction
      stage, even when the transition was a no-op: a delivery that failed
      after the stage commit is completed by the sender's retry, and the
      ledger's single-flight guard makes the re-check harmless.
    - Answer table (sender retries on non-2xx):
        401  AuthError
        400  malformed body
        500  ConfigError, StoreError, ConcurrencyError,
             BoardUnavailableError, any other unexpected kernel error
        200  irrelevant event, unmapped list, untracked card, success,
             and permanent business failures, including quantities beyond
             storage precision (logged for the operator)

Audit relevance:
    Every delivery logs webhook_received and exactly one terminal event
    (webhook_processed, webhook_ignored or webhook_failed), all carrying
    the correlation id, board action id and card id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from production_config.schema import ProductionConfig
from production_ingestion.board_client import BoardClient, BoardLineItemSource
from production_ingestion.classifier import (
    BadRequestEvent,
    IrrelevantEvent,
    RelevantEvent,
    classify_body,
)
from production_ingestion.verification import verify_signature
from production_kernel.db.engine import session_scope
from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.dtos import DeductionResult, TransitionResult
from production_kernel.exceptions import (
    AuthError,
    BOMError,
    CardNotFoundError,
    InsufficientStockError,
    JobNotFoundError,
    MalformedPayloadError,
    ProductionKernelError,
    QuantityOutOfRangeError,
    StoreError,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.models.job import StageChangeSource
from production_kernel.selectors.job_selector import JobSelector
from production_kernel.services.deduction_ledger import DeductionLedger
from production_kernel.services.stage_transition_service import StageTransitionService

logger = get_logger("ingestion.pipeline")

# Errors a retry cannot fix; acknowledged so the sender stops redelivering.
ACKNOWLEDGED_ERRORS: tuple[type[ProductionKernelError], ...] = (
    JobNotFoundError,
    BOMError,
    InsufficientStockError,
    QuantityOutOfRangeError,
    CardNotFoundError,
)


@dataclass(frozen=True)
class WebhookOutcome:
    """HTTP answer for one delivery plus what happened, for logs and tests."""

    status_code: int
    body: dict[str, Any]
    disposition: str
    transition: TransitionResult | None = None
    deduction: DeductionResult | None = None
    error_code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def status_for_error(exc: ProductionKernelError) -> int:
    """HTTP status the webhook answers for a kernel error."""
    if isinstance(exc, AuthError):
        return 401
    if isinstance(exc, MalformedPayloadError):
        return 400
    if isinstance(exc, ACKNOWLEDGED_ERRORS):
        return 200
    return 500


class WebhookPipeline:
    """
    Applies board deliveries to the kernel.

    Contract:
        handle() never raises for a kernel, store or quantity arithmetic
        failure; it returns the WebhookOutcome that encodes the answer.

    Non-goals:
        - Does NOT deduplicate deliveries by action id; idempotency comes
          from the stage no-op check and the deduction marker.
    """

    def __init__(
        self,
        config: ProductionConfig,
        session_factory: sessionmaker[Session],
        board_client: BoardClient | None = None,
        clock: Clock | None = None,
    ):
        self._config = config
        self._session_factory = session_factory
        self._board_client = board_client or BoardClient(config.board)
        self._clock = clock or SystemClock()

    def handle(self, raw_body: bytes, signature: str | None) -> WebhookOutcome:
        """
        Process one delivery.

        Args:
            raw_body: Request body exactly as received.
            signature: Value of the signature header, or None.

        Returns:
            The WebhookOutcome to answer with.
        """
        with LogContext.bind(correlation_id=str(uuid4())):
            logger.info("webhook_received", extra={"body_bytes": len(raw_body)})
            try:
                outcome = self._handle(raw_body, signature)
            except ProductionKernelError as exc:
                outcome = self._failed(exc)
            except SQLAlchemyError as exc:
                outcome = self._failed(StoreError("webhook", type(exc).__name__))
            except ArithmeticError as exc:
                outcome = self._failed(QuantityOutOfRangeError(type(exc).__name__))
            return outcome

    def _handle(self, raw_body: bytes, signature: str | None) -> WebhookOutcome:
        webhook = self._config.webhook
        verify_signature(
            raw_body,
            signature,
            webhook.secret,
            webhook.callback_url,
            header_name=webhook.signature_header,
        )

        event = classify_body(raw_body)
        if isinstance(event, BadRequestEvent):
            raise MalformedPayloadError(event.reason)
        if isinstance(event, IrrelevantEvent):
            return self._ignored("irrelevant_event", reason=event.reason)

        with LogContext.bind(action_id=event.action_id, card_id=event.card_id):
            return self._apply(event)

    def _apply(self, event: RelevantEvent) -> WebhookOutcome:
        stage_map = self._config.stage_map
        stage = stage_map.resolve(event.list_after_id, event.list_after_name)
        if stage is None:
            return self._ignored(
                "unmapped_list",
                list_id=event.list_after_id,
                list_name=event.list_after_name,
            )

        with session_scope(self._session_factory) as session:
            job = JobSelector(session).get_by_card_id(event.card_id)
            if job is None:
                return self._ignored("untracked_card", stage=stage)
            transition = StageTransitionService(
                session, stage_map, self._clock
            ).apply_transition(
                job.id,
                stage,
                event.list_after_id,
                source=StageChangeSource.BOARD_WEBHOOK,
                card_id=event.card_id,
            )

        with LogContext.bind(job_id=job.id):
            if stage != self._config.policy.deduction_stage:
                return self._processed(transition)

            try:
                with session_scope(self._session_factory) as session:
                    deduction = DeductionLedger(
                        session,
                        BoardLineItemSource(self._board_client),
                        self._config.policy,
                        self._clock,
                    ).deduct_for_job(job.id)
            except ACKNOWLEDGED_ERRORS as exc:
                return self._failed(exc, transition=transition)
            except ArithmeticError as exc:
                return self._failed(
                    QuantityOutOfRangeError(type(exc).__name__), transition=transition
                )
            return self._processed(transition, deduction)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _ignored(self, disposition: str, **details: Any) -> WebhookOutcome:
        logger.info("webhook_ignored", extra={"disposition": disposition, **details})
        return WebhookOutcome(200, {"ok": True}, disposition, details=details)

    def _processed(
        self,
        transition: TransitionResult,
        deduction: DeductionResult | None = None,
    ) -> WebhookOutcome:
        if deduction is not None:
            disposition = deduction.status.value
        else:
            disposition = "transitioned" if transition.changed else "noop"
        logger.info(
            "webhook_processed",
            extra={
                "disposition": disposition,
                "from_stage": transition.from_stage,
                "to_stage": transition.to_stage,
                "changed": transition.changed,
                "transaction_id": str(deduction.transaction_id) if deduction else None,
            },
        )
        return WebhookOutcome(
            200,
            {"ok": True},
            disposition,
            transition=transition,
            deduction=deduction,
        )

    def _failed(
        self,
        exc: ProductionKernelError,
        transition: TransitionResult | None = None,
    ) -> WebhookOutcome:
        status = status_for_error(exc)
        extra = {"error_code": exc.code, "status_code": status, "error": str(exc)}
        if status == 401:
            logger.warning("webhook_signature_rejected", extra=extra)
        elif status == 200:
            # Permanent: the operator has to fix the card, BOM or stock
            logger.warning("webhook_failed", extra=extra)
        else:
            logger.error("webhook_failed", extra=extra)

        body: dict[str, Any] = {"ok": True} if status == 200 else {"error": exc.code}
        return WebhookOutcome(
            status,
            body,
            "rejected" if status == 401 else "failed",
            transition=transition,
            error_code=exc.code,
        )
