"""
Module: production_kernel.selectors.job_selector
Responsibility: Read access to jobs and their stage history.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select

from production_kernel.domain.dtos import JobView, StageHistoryView
from production_kernel.models.job import Job, StageHistoryEntry
from production_kernel.selectors.base import BaseSelector


def _job_view(job: Job) -> JobView:
    return JobView(
        id=job.id,
        lead_id=job.lead_id,
        trello_card_id=job.trello_card_id,
        trello_list_id=job.trello_list_id,
        production_stage=job.production_stage,
        title=job.title,
    )


def _history_view(entry: StageHistoryEntry) -> StageHistoryView:
    return StageHistoryView(
        id=entry.id,
        job_id=entry.job_id,
        stage=entry.stage,
        from_stage=entry.from_stage,
        entered_at=entry.entered_at,
        exited_at=entry.exited_at,
        source=getattr(entry.source, "value", entry.source),
    )


class JobSelector(BaseSelector[Job]):
    """Queries over jobs and job_stage_history."""

    def get(self, job_id: UUID) -> JobView | None:
        job = self.session.get(Job, job_id)
        return _job_view(job) if job is not None else None

    def get_by_card_id(self, card_id: str) -> JobView | None:
        """Find the job tracked by a board card."""
        job = self.session.execute(
            select(Job).where(Job.trello_card_id == card_id)
        ).scalar_one_or_none()
        return _job_view(job) if job is not None else None

    def open_stage_entry(self, job_id: UUID) -> StageHistoryView | None:
        """The job's current stage history entry, if any."""
        entry = self.session.execute(
            select(StageHistoryEntry).where(
                StageHistoryEntry.job_id == job_id,
                StageHistoryEntry.exited_at.is_(None),
            )
        ).scalar_one_or_none()
        return _history_view(entry) if entry is not None else None

    def stage_history(self, job_id: UUID) -> list[StageHistoryView]:
        """All stage history entries of a job, oldest first."""
        entries = self.session.execute(
            select(StageHistoryEntry)
            .where(StageHistoryEntry.job_id == job_id)
            .order_by(StageHistoryEntry.entered_at, StageHistoryEntry.created_at)
        ).scalars().all()
        return [_history_view(entry) for entry in entries]

    def jobs_in_stage(self, stage: str) -> list[JobView]:
        jobs = self.session.execute(
            select(Job).where(Job.production_stage == stage).order_by(Job.created_at)
        ).scalars().all()
        return [_job_view(job) for job in jobs]
