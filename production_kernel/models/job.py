"""
Module: production_kernel.models.job
Responsibility: ORM persistence for production jobs and their append-only
    stage history.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions.py only.

Invariants enforced:
    - One open stage per job: the partial unique index
      uq_job_stage_history_open allows at most one StageHistoryEntry per job
      with exited_at IS NULL.  Two racing transitions cannot both insert an
      open entry; the loser gets an IntegrityError and re-evaluates.
    - One job per board card (UNIQUE trello_card_id).
    - History rows are never deleted; only exited_at may be set, once.

Failure modes:
    - IntegrityError on a second open history entry for the same job.
    - ImmutabilityViolationError when a flush would change a history row's
      job, stage or entered_at, or reopen a closed entry.

Audit relevance:
    job_stage_history is the timeline of where a physical order was and for
    how long; source/from_stage record which channel moved it.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, event, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.orm.attributes import get_history

from production_kernel.db.base import TrackedBase, UUIDString
from production_kernel.exceptions import ImmutabilityViolationError

DEFAULT_PRODUCTION_STAGE = "orders_awaiting_confirmation"


class StageChangeSource(str, Enum):
    """Channel that moved a job between stages."""

    BOARD_WEBHOOK = "board_webhook"
    BOARD_SYNC = "board_sync"
    MANUAL = "manual"


class Job(TrackedBase):
    """
    A production order tracked on the board.

    Contract:
        production_stage and trello_list_id are written only by
        StageTransitionService, together with the linked lead and the stage
        history, in one transaction.

    Guarantees:
        - trello_card_id is unique when present.
        - production_stage is an open vocabulary slug from the stage catalog.
    """

    __tablename__ = "jobs"

    __table_args__ = (
        Index("idx_job_stage", "production_stage"),
    )

    lead_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("leads.id"),
        nullable=True,
    )

    title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    trello_card_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
    )

    trello_list_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    production_stage: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=DEFAULT_PRODUCTION_STAGE,
    )

    def __repr__(self) -> str:
        return f"<Job {self.id} stage={self.production_stage}>"


class StageHistoryEntry(TrackedBase):
    """
    One stay of a job in one stage.

    Contract:
        Created open (exited_at NULL) when a job enters a stage; closed once,
        when the job leaves it.

    Guarantees:
        - At most one open entry per job (partial unique index).
        - job_id, stage and entered_at never change after insert.
    """

    __tablename__ = "job_stage_history"

    __table_args__ = (
        Index(
            "uq_job_stage_history_open",
            "job_id",
            unique=True,
            postgresql_where=text("exited_at IS NULL"),
            sqlite_where=text("exited_at IS NULL"),
        ),
        Index("idx_job_stage_history_job_entered", "job_id", "entered_at"),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("jobs.id"),
        nullable=False,
    )

    stage: Mapped[str] = mapped_column(String(100), nullable=False)

    from_stage: Mapped[str | None] = mapped_column(String(100), nullable=True)

    entered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    exited_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    source: Mapped[StageChangeSource] = mapped_column(
        String(20),
        nullable=False,
        default=StageChangeSource.BOARD_WEBHOOK,
    )

    trello_card_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    trello_list_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.exited_at is None

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<StageHistoryEntry job={self.job_id} stage={self.stage} {state}>"


_HISTORY_FROZEN_FIELDS = ("job_id", "stage", "from_stage", "entered_at", "source")


@event.listens_for(StageHistoryEntry, "before_update")
def prevent_history_rewrite(mapper, connection, target):
    """Only closing an open entry is allowed.

    Raises: ImmutabilityViolationError if a frozen column changed or a
        closed entry is being reopened or re-closed.
    """
    for field in _HISTORY_FROZEN_FIELDS:
        if get_history(target, field).has_changes():
            raise ImmutabilityViolationError("StageHistoryEntry", target.id)

    exited = get_history(target, "exited_at")
    if exited.has_changes() and exited.deleted and exited.deleted[0] is not None:
        raise ImmutabilityViolationError("StageHistoryEntry", target.id)


@event.listens_for(StageHistoryEntry, "before_delete")
def prevent_history_delete(mapper, connection, target):
    raise ImmutabilityViolationError("StageHistoryEntry", target.id)
