"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services receive a
    SQLAlchemy ``Session`` that they use via ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit.  The caller (webhook pipeline, operator
      action, or test) owns the commit through ``session_scope()``.
    - Conflict recovery: the two services guarded by a uniqueness
      constraint (stage transitions, deductions) roll the session back when
      they lose an insert race, then re-read.  They must therefore be given
      a session whose transaction holds no other pending work.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from production_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT provide query-only (read) methods -- those belong
          in ``production_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
