"""
Operator stock actions: restock, count adjustment, low-stock report.

Quantities arrive from forms as text or numbers; they are parsed to Decimal
here and never pass through float.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from production_kernel.db.engine import get_session_factory, session_scope
from production_kernel.db.types import quantity_from_str
from production_kernel.exceptions import MaterialNotFoundError, ProductionKernelError, StoreError
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.selectors.inventory_selector import InventorySelector
from production_kernel.services.stock_movement_service import StockMovementService
from production_services.deduction_actions import error_result

logger = get_logger("services.stock_actions")

INVALID_QUANTITY = {"error": "invalid_quantity", "message": "Quantity must be a number."}


def _parse_quantity(value: Decimal | int | str) -> Decimal | None:
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        return quantity_from_str(value)
    return None


def _material_id(value: UUID | str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise MaterialNotFoundError(value)


def _record(
    operation: str,
    material_id: UUID | str,
    quantity: Decimal | int | str,
    session_factory: sessionmaker[Session] | None,
    actor_id: str | None,
    **kwargs: Any,
) -> dict[str, Any]:
    delta = _parse_quantity(quantity)
    if delta is None:
        return dict(INVALID_QUANTITY)

    with LogContext.bind(actor_id=actor_id):
        try:
            with session_scope(session_factory or get_session_factory()) as session:
                service = StockMovementService(session)
                target = _material_id(material_id)
                if operation == "restock":
                    movement = service.restock(target, delta, **kwargs)
                else:
                    movement = service.adjust(target, delta, **kwargs)
                material = InventorySelector(session).material(target)
        except ProductionKernelError as exc:
            logger.warning(
                "stock_action_failed",
                extra={"operation": operation, "error_code": exc.code, "error": str(exc)},
            )
            return error_result(exc)
        except SQLAlchemyError as exc:
            store_error = StoreError(operation, type(exc).__name__)
            logger.error("stock_action_failed", extra={"operation": operation})
            return error_result(store_error)

    return {
        "ok": True,
        "movementId": str(movement.id),
        "material": material.to_dict(),
    }


def restock_material(
    material_id: UUID | str,
    quantity: Decimal | int | str,
    *,
    reference: str | None = None,
    notes: str | None = None,
    session_factory: sessionmaker[Session] | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Receive stock.  quantity must be positive."""
    return _record(
        "restock", material_id, quantity, session_factory, actor_id,
        reference=reference, notes=notes,
    )


def adjust_material(
    material_id: UUID | str,
    delta_qty: Decimal | int | str,
    *,
    notes: str | None = None,
    session_factory: sessionmaker[Session] | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Correct the on-hand counter after a stock count.  delta_qty may be negative."""
    return _record(
        "adjust", material_id, delta_qty, session_factory, actor_id, notes=notes,
    )


def low_stock_report(
    *,
    session_factory: sessionmaker[Session] | None = None,
) -> dict[str, Any]:
    """Materials at or below their minimum level, with the shortfall."""
    try:
        with session_scope(session_factory or get_session_factory()) as session:
            materials = InventorySelector(session).low_stock()
    except SQLAlchemyError as exc:
        return error_result(StoreError("low_stock_report", type(exc).__name__))

    return {
        "ok": True,
        "materials": [
            {**material.to_dict(), "shortfall": str(material.shortfall)}
            for material in materials
        ],
    }
