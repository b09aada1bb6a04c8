"""
Manufacturing Order Domain Models (``mfg_modules.manufacturing.models``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of production: manufacturing
orders, bill-of-materials entries, material reservations and consumptions,
the stage transition log, quality checks and cost summaries.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Returned by
``ManufacturingOrderService``; built from ORM rows via ``to_dto()``.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* ``STAGE_SEQUENCE`` is the single source of stage ordering.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from mfg_kernel.db.types import ZERO, round_money
from mfg_kernel.logging_config import get_logger

logger = get_logger("modules.manufacturing.models")

SPECIAL_CATEGORY = "special"


class MOStatus(str, Enum):
    """Manufacturing order lifecycle states."""
    DRAFT = "draft"
    APPROVED = "approved"
    IN_PROGRESS = "in-progress"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MOStage(str, Enum):
    """Production pipeline position."""
    QUEUED = "queued"
    CUTTING = "cutting"
    ASSEMBLY = "assembly"
    FINISHING = "finishing"
    QC = "qc"
    READY = "ready"


STAGE_SEQUENCE: tuple[MOStage, ...] = (
    MOStage.QUEUED,
    MOStage.CUTTING,
    MOStage.ASSEMBLY,
    MOStage.FINISHING,
    MOStage.QC,
    MOStage.READY,
)

TERMINAL_STAGE = STAGE_SEQUENCE[-1]


def next_stage(stage: MOStage) -> MOStage | None:
    """The stage after ``stage``, or None at the terminal stage."""
    idx = STAGE_SEQUENCE.index(stage)
    if idx + 1 >= len(STAGE_SEQUENCE):
        return None
    return STAGE_SEQUENCE[idx + 1]


class MOPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"
    RELEASED = "released"


@dataclass(frozen=True)
class BOMEntry:
    """One input line of an order's bill of materials."""
    item_name: str
    quantity_required: Decimal
    unit_cost: Decimal
    unit: str = "pcs"
    sku: str | None = None
    category: str = "standard"
    inventory_item_id: str | None = None
    warehouse_id: str | None = None
    supplier_id: str | None = None
    supplier_name: str | None = None
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self):
        if self.quantity_required <= 0:
            raise ValueError(f"BOM entry {self.item_name}: quantity_required must be positive")
        if self.unit_cost < 0:
            raise ValueError(f"BOM entry {self.item_name}: unit_cost cannot be negative")

    @property
    def total_cost(self) -> Decimal:
        return round_money(self.quantity_required * self.unit_cost)

    @property
    def is_outsourced(self) -> bool:
        """Bought in for this order rather than drawn from stock."""
        return self.supplier_id is not None or self.category == SPECIAL_CATEGORY


@dataclass(frozen=True)
class MaterialReservation:
    id: UUID
    bom_entry_id: UUID
    inventory_item_id: str
    warehouse_id: str
    quantity: Decimal
    status: ReservationStatus
    reserved_at: datetime
    stock_level_id: str | None = None
    released_at: datetime | None = None


@dataclass(frozen=True)
class ConsumptionInput:
    """Caller request to consume material against an order."""
    inventory_item_id: str
    warehouse_id: str
    quantity: Decimal

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValueError("consumption quantity must be positive")


@dataclass(frozen=True)
class MaterialConsumption:
    id: UUID
    inventory_item_id: str
    warehouse_id: str
    quantity: Decimal
    stage: MOStage
    consumed_at: datetime
    consumed_by: str


@dataclass(frozen=True)
class StageTransition:
    from_stage: MOStage | None
    to_stage: MOStage
    transitioned_at: datetime
    transitioned_by: str
    notes: str | None = None


@dataclass(frozen=True)
class QualityCheck:
    passed: bool
    inspector_id: str
    inspected_at: datetime
    notes: str | None = None
    defects: tuple[str, ...] = ()


@dataclass(frozen=True)
class CostSummary:
    material_cost: Decimal
    labor_cost: Decimal = ZERO
    currency: str = "UGX"

    @property
    def total_cost(self) -> Decimal:
        return self.material_cost + self.labor_cost


@dataclass(frozen=True)
class MaterialShortage:
    bom_entry_id: UUID
    item_name: str
    inventory_item_id: str
    warehouse_id: str
    required: Decimal
    available: Decimal

    @property
    def shortfall(self) -> Decimal:
        return max(self.required - self.available, ZERO)


@dataclass(frozen=True)
class ManufacturingOrder:
    """A production run for one design item."""
    id: UUID
    mo_number: str
    subsidiary: str
    design_name: str
    quantity: Decimal
    status: MOStatus
    current_stage: MOStage
    priority: MOPriority
    bom: tuple[BOMEntry, ...]
    cost_summary: CostSummary
    created_by: str
    created_at: datetime | None = None
    design_id: str | None = None
    project_id: str | None = None
    project_type: str | None = None
    customer_name: str | None = None
    is_repeat_order: bool = False
    estimated_labor_cost: Decimal = ZERO
    material_reservations: tuple[MaterialReservation, ...] = ()
    material_consumptions: tuple[MaterialConsumption, ...] = ()
    stage_history: tuple[StageTransition, ...] = ()
    quality_check: QualityCheck | None = None
    linked_po_ids: tuple[UUID, ...] = ()
    target_completion_date: date | None = None
    actual_start_date: datetime | None = None
    actual_end_date: datetime | None = None
    hold_reason: str | None = None
    cancellation_reason: str | None = None
    version: int = 1

    @property
    def active_reservations(self) -> tuple[MaterialReservation, ...]:
        return tuple(
            r for r in self.material_reservations if r.status == ReservationStatus.ACTIVE
        )

    def bom_entry(self, entry_id: UUID) -> BOMEntry | None:
        for entry in self.bom:
            if entry.id == entry_id:
                return entry
        return None


@dataclass(frozen=True)
class ApprovalOutcome:
    """Result of reserving materials for approval.

    ``success=False`` with shortages is a normal outcome: the order stays in
    draft and keeps whatever reservations were made.
    """
    success: bool
    order: ManufacturingOrder
    shortages: tuple[MaterialShortage, ...] = ()
    reservations_created: int = 0


@dataclass(frozen=True)
class CancellationOutcome:
    order: ManufacturingOrder
    reservations_released: int
    release_failures: int = 0
