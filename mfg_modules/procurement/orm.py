"""
Module: mfg_modules.procurement.orm
Responsibility: SQLAlchemy ORM persistence for purchase orders (with line
    items, approvals and goods receipts) and procurement requirements.

Architecture position: Modules > Procurement > ORM.  Inherits from
    TrackedBase (mfg_kernel.db.base).  Requirements reference their MO by id
    only; the PO <-> MO and PO <-> requirement links are id lists held on
    both sides, not foreign keys.

Invariants enforced:
    - po_number is unique per subsidiary (uq_mfg_po_number).
    - Landed cost components and totals are flattened columns; totals are
      written only from an allocator result.
    - Receiving history rows are only ever appended.
    - ``version`` is the optimistic lock counter on both aggregates.

Failure modes:
    - IntegrityError on duplicate po_number.
    - StaleDataError on flush if the row changed since it was read.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mfg_engines.landed_cost import DistributionMethod
from mfg_kernel.db.base import Base, TrackedBase, version_column
from mfg_modules.procurement.models import (
    GoodsReceipt,
    LandedCosts,
    POApproval,
    POApprovalStatus,
    POLineItem,
    POStatus,
    POTotals,
    ProcurementRequirement,
    PurchaseOrder,
    ReceiptLine,
    RequirementSource,
    RequirementStatus,
)


class PurchaseOrderModel(TrackedBase):
    """
    ORM model for purchase orders.

    Maps to: mfg_modules.procurement.models.PurchaseOrder.
    """

    __tablename__ = "mfg_purchase_orders"

    __table_args__ = (
        UniqueConstraint("subsidiary", "po_number", name="uq_mfg_po_number"),
        Index("idx_mfg_po_status", "status"),
        Index("idx_mfg_po_supplier", "supplier_id"),
    )

    po_number: Mapped[str] = mapped_column(String(50))
    subsidiary: Mapped[str] = mapped_column(String(50))
    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier_name: Mapped[str] = mapped_column(String(255))
    supplier_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), default=POStatus.DRAFT.value)

    # Landed cost components
    shipping: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    customs: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    duties: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    insurance: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    handling: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    other_costs: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    distribution_method: Mapped[str] = mapped_column(
        String(30), default=DistributionMethod.PROPORTIONAL_VALUE.value,
    )

    # Derived totals
    subtotal: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    landed_cost_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="UGX")

    linked_mo_ids: Mapped[list] = mapped_column(JSON, default=list)
    linked_requirement_ids: Mapped[list] = mapped_column(JSON, default=list)
    linked_project_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = version_column()

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    line_items: Mapped[list["POLineItemModel"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="POLineItemModel.line_number",
        lazy="selectin",
    )
    approvals: Mapped[list["POApprovalModel"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="POApprovalModel.position",
        lazy="selectin",
    )
    receipts: Mapped[list["GoodsReceiptModel"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="GoodsReceiptModel.position",
        lazy="selectin",
    )

    def line_item(self, line_id: UUID) -> "POLineItemModel | None":
        for line in self.line_items:
            if line.id == line_id:
                return line
        return None

    def landed_costs(self) -> LandedCosts:
        return LandedCosts(
            shipping=self.shipping,
            customs=self.customs,
            duties=self.duties,
            insurance=self.insurance,
            handling=self.handling,
            other=self.other_costs,
            distribution_method=DistributionMethod(self.distribution_method),
        )

    def set_landed_costs(self, costs: LandedCosts) -> None:
        self.shipping = costs.shipping
        self.customs = costs.customs
        self.duties = costs.duties
        self.insurance = costs.insurance
        self.handling = costs.handling
        self.other_costs = costs.other
        self.distribution_method = costs.distribution_method.value

    def to_dto(self) -> PurchaseOrder:
        return PurchaseOrder(
            id=self.id,
            po_number=self.po_number,
            subsidiary=self.subsidiary,
            supplier_id=self.supplier_id,
            supplier_name=self.supplier_name,
            supplier_contact=self.supplier_contact,
            status=POStatus(self.status),
            line_items=tuple(l.to_dto() for l in self.line_items),
            landed_costs=self.landed_costs(),
            totals=POTotals(
                subtotal=self.subtotal,
                landed_cost_total=self.landed_cost_total,
                grand_total=self.grand_total,
                currency=self.currency,
            ),
            approvals=tuple(a.to_dto() for a in self.approvals),
            receiving_history=tuple(r.to_dto() for r in self.receipts),
            linked_mo_ids=tuple(UUID(v) for v in (self.linked_mo_ids or [])),
            linked_requirement_ids=tuple(UUID(v) for v in (self.linked_requirement_ids or [])),
            linked_project_id=self.linked_project_id,
            expected_delivery_date=self.expected_delivery_date,
            notes=self.notes,
            created_by=self.created_by,
            created_at=self.created_at,
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number} [{self.status}]>"


class POLineItemModel(Base):
    """ORM model for a PO line.  Maps to POLineItem."""

    __tablename__ = "mfg_po_line_items"

    __table_args__ = (
        Index("idx_mfg_po_line_po", "purchase_order_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(ForeignKey("mfg_purchase_orders.id"))
    line_number: Mapped[int] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(String(500))
    inventory_item_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[Decimal] = mapped_column()
    unit: Mapped[str] = mapped_column(String(20), default="pcs")
    unit_cost: Mapped[Decimal] = mapped_column()
    total_cost: Mapped[Decimal] = mapped_column()
    weight: Mapped[Decimal | None] = mapped_column(nullable=True)
    quantity_received: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    landed_cost_allocation: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    effective_unit_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    requirement_id: Mapped[UUID | None] = mapped_column(nullable=True)
    mo_id: Mapped[UUID | None] = mapped_column(nullable=True)

    purchase_order: Mapped[PurchaseOrderModel] = relationship(back_populates="line_items")

    def to_dto(self) -> POLineItem:
        return POLineItem(
            id=self.id,
            description=self.description,
            quantity=self.quantity,
            unit=self.unit,
            unit_cost=self.unit_cost,
            total_cost=self.total_cost,
            quantity_received=self.quantity_received,
            landed_cost_allocation=self.landed_cost_allocation,
            effective_unit_cost=self.effective_unit_cost,
            inventory_item_id=self.inventory_item_id,
            sku=self.sku,
            weight=self.weight,
            requirement_id=self.requirement_id,
            mo_id=self.mo_id,
        )


class POApprovalModel(Base):
    """Append-only PO approval step."""

    __tablename__ = "mfg_po_approvals"

    purchase_order_id: Mapped[UUID] = mapped_column(ForeignKey("mfg_purchase_orders.id"))
    position: Mapped[int] = mapped_column(Integer)
    level: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(20), default=POApprovalStatus.PENDING.value)
    approver_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    acted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    purchase_order: Mapped[PurchaseOrderModel] = relationship(back_populates="approvals")

    def to_dto(self) -> POApproval:
        return POApproval(
            level=self.level,
            status=POApprovalStatus(self.status),
            approver_id=self.approver_id,
            acted_at=self.acted_at,
            notes=self.notes,
        )


class GoodsReceiptModel(Base):
    """Append-only goods receipt; received lines are stored as JSON."""

    __tablename__ = "mfg_goods_receipts"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "receipt_number", name="uq_mfg_receipt_number"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(ForeignKey("mfg_purchase_orders.id"))
    position: Mapped[int] = mapped_column(Integer)
    receipt_number: Mapped[str] = mapped_column(String(50))
    received_at: Mapped[datetime] = mapped_column()
    received_by: Mapped[str] = mapped_column(String(100))
    warehouse_id: Mapped[str] = mapped_column(String(100))
    lines: Mapped[list] = mapped_column(JSON, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    purchase_order: Mapped[PurchaseOrderModel] = relationship(back_populates="receipts")

    def to_dto(self) -> GoodsReceipt:
        return GoodsReceipt(
            id=self.receipt_number,
            received_at=self.received_at,
            received_by=self.received_by,
            warehouse_id=self.warehouse_id,
            lines=tuple(
                ReceiptLine(
                    line_item_id=UUID(l["line_item_id"]),
                    quantity_received=Decimal(l["quantity_received"]),
                )
                for l in (self.lines or [])
            ),
            notes=self.notes,
        )


class ProcurementRequirementModel(TrackedBase):
    """
    ORM model for procurement requirements.

    Maps to: mfg_modules.procurement.models.ProcurementRequirement.
    """

    __tablename__ = "mfg_procurement_requirements"

    __table_args__ = (
        Index("idx_mfg_req_status", "status"),
        Index("idx_mfg_req_mo", "mo_id"),
        Index("idx_mfg_req_supplier", "supplier_id"),
        Index("idx_mfg_req_po", "purchase_order_id"),
    )

    mo_id: Mapped[UUID | None] = mapped_column(nullable=True)
    mo_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bom_entry_id: Mapped[UUID | None] = mapped_column(nullable=True)
    item_description: Mapped[str] = mapped_column(String(500))
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    inventory_item_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[Decimal] = mapped_column()
    unit: Mapped[str] = mapped_column(String(20), default="pcs")
    estimated_unit_cost: Mapped[Decimal] = mapped_column()
    estimated_total_cost: Mapped[Decimal] = mapped_column()
    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str] = mapped_column(String(20), default=RequirementSource.BOM_SCAN.value)
    status: Mapped[str] = mapped_column(String(20), default=RequirementStatus.PENDING.value)
    purchase_order_id: Mapped[UUID | None] = mapped_column(nullable=True)
    po_line_item_id: Mapped[UUID | None] = mapped_column(nullable=True)
    urgency: Mapped[str | None] = mapped_column(String(20), nullable=True)
    subsidiary: Mapped[str] = mapped_column(String(50))

    version: Mapped[int] = version_column()

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    def to_dto(self) -> ProcurementRequirement:
        return ProcurementRequirement(
            id=self.id,
            mo_id=self.mo_id,
            mo_number=self.mo_number,
            bom_entry_id=self.bom_entry_id,
            item_description=self.item_description,
            quantity=self.quantity,
            unit=self.unit,
            estimated_unit_cost=self.estimated_unit_cost,
            estimated_total_cost=self.estimated_total_cost,
            source=RequirementSource(self.source),
            status=RequirementStatus(self.status),
            subsidiary=self.subsidiary,
            sku=self.sku,
            inventory_item_id=self.inventory_item_id,
            supplier_id=self.supplier_id,
            supplier_name=self.supplier_name,
            purchase_order_id=self.purchase_order_id,
            po_line_item_id=self.po_line_item_id,
            urgency=self.urgency,
            created_at=self.created_at,
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<ProcurementRequirementModel {self.mo_number}:{self.item_description} [{self.status}]>"
