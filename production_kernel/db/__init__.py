"""Database layer - engine, base classes, and column types."""

from production_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from production_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from production_kernel.db.types import ExternalId, Quantity, ShortCode, round_quantity

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Quantity",
    "ExternalId",
    "ShortCode",
    "round_quantity",
]
