"""
Module: production_kernel.models.lead
Responsibility: ORM persistence for the sales lead a production job was
    converted from.  Only the production_stage column is owned by this system;
    the remaining lead lifecycle is managed by the CRM screens.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A lead linked to a job carries the same production_stage as that job
      after every committed stage transition (written in the same
      transaction as the job by StageTransitionService).
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import TrackedBase


class Lead(TrackedBase):
    """
    Sales lead mirror of the job's production stage.

    Non-goals:
        - Lead CRUD, status workflow and contact details live outside this
          system; only the fields needed to keep the stage in sync exist here.
    """

    __tablename__ = "leads"

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    production_stage: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Lead {self.id} stage={self.production_stage}>"
