"""
Manufacturing Module (``mfg_modules.manufacturing``).

Responsibility
--------------
Manufacturing order lifecycle: draft creation from a design hand-over,
material reservation at approval, production stage tracking, consumption,
quality checks, hold / resume and cancellation.

Architecture position
---------------------
**Modules layer** -- domain models, ORM persistence, the MO workflow, a
config schema, and ``ManufacturingOrderService`` which owns the
transaction boundary and all inventory side effects.

Invariants enforced
-------------------
* Status changes only along ``MANUFACTURING_ORDER_WORKFLOW``.
* Stages advance one step at a time through ``STAGE_SEQUENCE``.
* Every write is version-checked (optimistic locking).
"""

from mfg_modules.manufacturing.config import ManufacturingConfig
from mfg_modules.manufacturing.models import (
    STAGE_SEQUENCE,
    TERMINAL_STAGE,
    ApprovalOutcome,
    BOMEntry,
    CancellationOutcome,
    ConsumptionInput,
    CostSummary,
    ManufacturingOrder,
    MaterialConsumption,
    MaterialReservation,
    MaterialShortage,
    MOPriority,
    MOStage,
    MOStatus,
    QualityCheck,
    ReservationStatus,
    StageTransition,
)
from mfg_modules.manufacturing.workflows import MANUFACTURING_ORDER_WORKFLOW

__all__ = [
    "ManufacturingConfig",
    "ManufacturingOrder",
    "BOMEntry",
    "MaterialReservation",
    "MaterialConsumption",
    "MaterialShortage",
    "ConsumptionInput",
    "StageTransition",
    "QualityCheck",
    "CostSummary",
    "ApprovalOutcome",
    "CancellationOutcome",
    "MOStatus",
    "MOStage",
    "MOPriority",
    "ReservationStatus",
    "STAGE_SEQUENCE",
    "TERMINAL_STAGE",
    "MANUFACTURING_ORDER_WORKFLOW",
]
