"""
Procurement Domain Models.

The nouns of procurement: purchase orders and their lines, landed costs,
goods receipts, and the procurement requirements that link outsourced BOM
entries to suppliers.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from mfg_engines.landed_cost import DistributionMethod, LandedCostComponents
from mfg_kernel.db.types import ZERO, round_money
from mfg_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.models")


class POStatus(str, Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending-approval"
    APPROVED = "approved"
    SENT = "sent"
    PARTIALLY_RECEIVED = "partially-received"
    RECEIVED = "received"
    CLOSED = "closed"
    CANCELLED = "cancelled"


EDITABLE_PO_STATUSES: frozenset[POStatus] = frozenset({
    POStatus.DRAFT,
    POStatus.PENDING_APPROVAL,
})


class POApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequirementStatus(str, Enum):
    """Procurement requirement lifecycle.  Forward-only except cancel."""
    PENDING = "pending"
    ADDED_TO_PO = "added-to-po"
    ORDERED = "ordered"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class RequirementSource(str, Enum):
    BOM_SCAN = "bom_scan"
    SHORTAGE_AUTO = "shortage_auto"
    REORDER_ALERT = "reorder_alert"
    MANUAL = "manual"


@dataclass(frozen=True)
class POLineInput:
    """Caller-supplied PO line.  Derived cost fields are computed on save."""
    description: str
    quantity: Decimal
    unit_cost: Decimal
    unit: str = "pcs"
    inventory_item_id: str | None = None
    sku: str | None = None
    weight: Decimal | None = None
    requirement_id: UUID | None = None
    mo_id: UUID | None = None

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValueError(f"PO line '{self.description}': quantity must be positive")
        if self.unit_cost < 0:
            raise ValueError(f"PO line '{self.description}': unit_cost cannot be negative")


@dataclass(frozen=True)
class POLineItem:
    """A persisted PO line with its landed cost share."""
    id: UUID
    description: str
    quantity: Decimal
    unit: str
    unit_cost: Decimal
    total_cost: Decimal
    quantity_received: Decimal = ZERO
    landed_cost_allocation: Decimal = ZERO
    effective_unit_cost: Decimal = ZERO
    inventory_item_id: str | None = None
    sku: str | None = None
    weight: Decimal | None = None
    requirement_id: UUID | None = None
    mo_id: UUID | None = None

    @property
    def outstanding(self) -> Decimal:
        return max(self.quantity - self.quantity_received, ZERO)

    @property
    def is_fully_received(self) -> bool:
        return self.quantity_received >= self.quantity


@dataclass(frozen=True)
class LandedCosts:
    """Raw landed cost components and the chosen distribution method."""
    shipping: Decimal = ZERO
    customs: Decimal = ZERO
    duties: Decimal = ZERO
    insurance: Decimal = ZERO
    handling: Decimal = ZERO
    other: Decimal = ZERO
    distribution_method: DistributionMethod = DistributionMethod.PROPORTIONAL_VALUE

    @property
    def total(self) -> Decimal:
        return self.as_components().total

    def as_components(self) -> LandedCostComponents:
        return LandedCostComponents(
            shipping=self.shipping,
            customs=self.customs,
            duties=self.duties,
            insurance=self.insurance,
            handling=self.handling,
            other=self.other,
            method=self.distribution_method,
        )


@dataclass(frozen=True)
class POTotals:
    subtotal: Decimal
    landed_cost_total: Decimal
    grand_total: Decimal
    currency: str = "UGX"


@dataclass(frozen=True)
class POApproval:
    level: int
    status: POApprovalStatus
    approver_id: str | None = None
    acted_at: datetime | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ReceiptLine:
    """Quantity received against one PO line."""
    line_item_id: UUID
    quantity_received: Decimal

    def __post_init__(self):
        if self.quantity_received < 0:
            raise ValueError("quantity_received cannot be negative")


@dataclass(frozen=True)
class GoodsReceiptInput:
    lines: tuple[ReceiptLine, ...]
    warehouse_id: str
    notes: str | None = None


@dataclass(frozen=True)
class GoodsReceipt:
    """Append-only receiving history entry (``GR-...``)."""
    id: str
    received_at: datetime
    received_by: str
    warehouse_id: str
    lines: tuple[ReceiptLine, ...]
    notes: str | None = None


@dataclass(frozen=True)
class PurchaseOrder:
    """A supplier order, possibly consolidating needs from several MOs."""
    id: UUID
    po_number: str
    subsidiary: str
    supplier_name: str
    status: POStatus
    line_items: tuple[POLineItem, ...]
    landed_costs: LandedCosts
    totals: POTotals
    created_by: str
    supplier_id: str | None = None
    supplier_contact: str | None = None
    approvals: tuple[POApproval, ...] = ()
    receiving_history: tuple[GoodsReceipt, ...] = ()
    linked_mo_ids: tuple[UUID, ...] = ()
    linked_requirement_ids: tuple[UUID, ...] = ()
    linked_project_id: str | None = None
    expected_delivery_date: date | None = None
    notes: str | None = None
    created_at: datetime | None = None
    version: int = 1

    def line_item(self, line_id: UUID) -> POLineItem | None:
        for line in self.line_items:
            if line.id == line_id:
                return line
        return None

    @property
    def is_fully_received(self) -> bool:
        return bool(self.line_items) and all(l.is_fully_received for l in self.line_items)


@dataclass(frozen=True)
class ProcurementRequirement:
    """A pending need for an outsourced item, the unit of consolidation.

    Reorder-alert requirements replenish stock and carry no MO or BOM entry.
    """
    id: UUID
    mo_id: UUID | None
    mo_number: str | None
    bom_entry_id: UUID | None
    item_description: str
    quantity: Decimal
    unit: str
    estimated_unit_cost: Decimal
    estimated_total_cost: Decimal
    source: RequirementSource
    status: RequirementStatus
    subsidiary: str
    sku: str | None = None
    inventory_item_id: str | None = None
    supplier_id: str | None = None
    supplier_name: str | None = None
    purchase_order_id: UUID | None = None
    po_line_item_id: UUID | None = None
    urgency: str | None = None
    created_at: datetime | None = None
    version: int = 1


@dataclass(frozen=True)
class StockReplenishment:
    """Stock to buy in because an item fell below its reorder point."""
    inventory_item_id: str
    item_description: str
    quantity: Decimal
    estimated_unit_cost: Decimal = ZERO
    urgency: str | None = None
    supplier_id: str | None = None
    supplier_name: str | None = None
    sku: str | None = None
    unit: str = "pcs"


@dataclass(frozen=True)
class SupplierGroup:
    """Pending requirements sharing a supplier (None = unassigned)."""
    supplier_id: str | None
    supplier_name: str | None
    requirements: tuple[ProcurementRequirement, ...]
    mo_ids: tuple[UUID, ...]
    total_estimated_cost: Decimal

    @property
    def requirement_count(self) -> int:
        return len(self.requirements)


@dataclass(frozen=True)
class ConsolidationSuggestion:
    """Another MO with pending requirements for the chosen supplier."""
    mo_id: UUID
    mo_number: str
    requirement_ids: tuple[UUID, ...]
    total_estimated_cost: Decimal
    item_count: int = field(default=0)


def line_total(quantity: Decimal, unit_cost: Decimal) -> Decimal:
    return round_money(quantity * unit_cost)
