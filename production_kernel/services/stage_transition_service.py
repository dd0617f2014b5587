"""
StageTransitionService -- the job stage state machine.

Responsibility:
    Moves a job to a target stage: decides whether the move is a no-op, and
    otherwise updates the job, mirrors the stage onto the linked lead,
    closes the open stage history entry and opens a new one.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the webhook pipeline (board moves), the manual re-sync action
    and the manual stage update action.

Invariants enforced:
    - Idempotency: a transition whose (stage, list id) equals the job's
      current (stage, list id) changes nothing.  Duplicate deliveries of the
      same board move are absorbed here.
    - Atomicity: job, lead and history are written in one flush inside the
      caller's transaction.  A crash leaves either the old state or the new
      state, never a job/lead mismatch or two open entries.
    - One open entry per job: the partial unique index on
      job_stage_history rejects a second open entry.  The losing
      transaction rolls back and re-runs the read-compare-write, which
      normally sees the winner's state and becomes a no-op.

Failure modes:
    - JobNotFoundError: no job with the given id.
    - UnknownStageError: target stage is not in the stage catalog.
    - StageTransitionConflictError: still conflicting after
      MAX_TRANSITION_ATTEMPTS read-compare-write attempts.

Audit relevance:
    Every applied transition logs job_id, from_stage, to_stage and source,
    and the history row records the same plus the board card and list ids.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.dtos import TransitionResult
from production_kernel.domain.stage_map import StageMap
from production_kernel.exceptions import (
    JobNotFoundError,
    StageTransitionConflictError,
    UnknownStageError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.job import Job, StageChangeSource, StageHistoryEntry
from production_kernel.models.lead import Lead
from production_kernel.services.base import BaseService

logger = get_logger("services.stage_transition")

MAX_TRANSITION_ATTEMPTS = 3


class StageTransitionService(BaseService[Job]):
    """
    Applies stage transitions to jobs.

    Contract:
        apply_transition() either returns changed=False without writing, or
        flushes the complete transition (job + lead + history) into the
        caller's transaction.

    Guarantees:
        - Same (job, stage, list) applied twice creates exactly one history
          entry.
        - A list-only change (another board list mapped to the same stage)
          updates the job's list id without touching the history.

    Non-goals:
        - Does NOT commit.  Does NOT trigger stock deduction; the caller
          decides that from the target stage.
    """

    def __init__(
        self,
        session: Session,
        stage_map: StageMap,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._stage_map = stage_map
        self._clock = clock or SystemClock()

    def apply_transition(
        self,
        job_id: UUID,
        target_stage: str,
        target_list_id: str | None = None,
        *,
        source: StageChangeSource = StageChangeSource.BOARD_WEBHOOK,
        card_id: str | None = None,
    ) -> TransitionResult:
        """
        Move a job to target_stage.

        Preconditions:
            - The session holds no other pending work (it is rolled back on
              a uniqueness conflict).

        Args:
            job_id: Job to move.
            target_stage: Canonical stage slug.
            target_list_id: Board list the card now sits in; None keeps the
                job's current list id (manual moves).
            source: Channel that requested the move.
            card_id: Board card id, recorded on the history row.

        Returns:
            TransitionResult with changed=False for a no-op.

        Raises:
            UnknownStageError, JobNotFoundError, StageTransitionConflictError.
        """
        if not self._stage_map.is_known_stage(target_stage):
            raise UnknownStageError(target_stage)

        for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
            try:
                return self._apply_once(job_id, target_stage, target_list_id, source, card_id)
            except IntegrityError:
                # Another transaction opened a history entry for this job first
                self.session.rollback()
                logger.warning(
                    "concurrent_stage_transition_conflict",
                    extra={
                        "job_id": str(job_id),
                        "target_stage": target_stage,
                        "attempt": attempt,
                    },
                )

        raise StageTransitionConflictError(job_id, MAX_TRANSITION_ATTEMPTS)

    def _apply_once(
        self,
        job_id: UUID,
        target_stage: str,
        target_list_id: str | None,
        source: StageChangeSource,
        card_id: str | None,
    ) -> TransitionResult:
        job = self.session.execute(
            select(Job)
            .where(Job.id == job_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(job_id=job_id)

        from_stage = job.production_stage
        new_list_id = target_list_id if target_list_id is not None else job.trello_list_id

        if (from_stage, job.trello_list_id) == (target_stage, new_list_id):
            logger.info(
                "stage_transition_noop",
                extra={"job_id": str(job.id), "stage": target_stage, "source": source.value},
            )
            return TransitionResult(
                changed=False,
                job_id=job.id,
                from_stage=from_stage,
                to_stage=target_stage,
            )

        if from_stage == target_stage:
            job.trello_list_id = new_list_id
            self.session.flush()
            logger.info(
                "job_list_updated",
                extra={"job_id": str(job.id), "stage": target_stage, "list_id": new_list_id},
            )
            return TransitionResult(
                changed=True,
                job_id=job.id,
                from_stage=from_stage,
                to_stage=target_stage,
            )

        now = self._clock.now()

        job.production_stage = target_stage
        job.trello_list_id = new_list_id
        self._mirror_to_lead(job, target_stage)

        open_entry = self.session.execute(
            select(StageHistoryEntry)
            .where(
                StageHistoryEntry.job_id == job.id,
                StageHistoryEntry.exited_at.is_(None),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if open_entry is not None:
            open_entry.exited_at = now
            # The close must reach the store before the new open entry
            self.session.flush()

        entry = StageHistoryEntry(
            job_id=job.id,
            stage=target_stage,
            from_stage=from_stage,
            entered_at=now,
            source=source,
            trello_card_id=card_id or job.trello_card_id,
            trello_list_id=new_list_id,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "stage_transition_applied",
            extra={
                "job_id": str(job.id),
                "from_stage": from_stage,
                "to_stage": target_stage,
                "source": source.value,
                "list_id": new_list_id,
            },
        )
        return TransitionResult(
            changed=True,
            job_id=job.id,
            from_stage=from_stage,
            to_stage=target_stage,
            history_entry_id=entry.id,
        )

    def _mirror_to_lead(self, job: Job, stage: str) -> None:
        if job.lead_id is None:
            return
        lead = self.session.get(Lead, job.lead_id, with_for_update=True)
        if lead is None:
            logger.warning(
                "lead_missing_for_job",
                extra={"job_id": str(job.id), "lead_id": str(job.lead_id)},
            )
            return
        lead.production_stage = stage
