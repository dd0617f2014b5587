"""ORM models for the production kernel."""

from production_kernel.models.inventory import (
    DeductionTransaction,
    Material,
    MaterialUsageRate,
    MovementType,
    StockMovement,
)
from production_kernel.models.job import (
    DEFAULT_PRODUCTION_STAGE,
    Job,
    StageChangeSource,
    StageHistoryEntry,
)
from production_kernel.models.lead import Lead

__all__ = [
    "DEFAULT_PRODUCTION_STAGE",
    "DeductionTransaction",
    "Job",
    "Lead",
    "Material",
    "MaterialUsageRate",
    "MovementType",
    "StageChangeSource",
    "StageHistoryEntry",
    "StockMovement",
]
