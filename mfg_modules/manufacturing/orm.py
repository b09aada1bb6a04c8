"""
Module: mfg_modules.manufacturing.orm
Responsibility: SQLAlchemy ORM persistence for manufacturing orders and their
    owned child records: BOM entries, material reservations, material
    consumptions and the stage transition log.

Architecture position: Modules > Manufacturing > ORM.  Inherits from
    TrackedBase (mfg_kernel.db.base).  Inventory items, warehouses and
    suppliers are external references held as plain strings, no FK.

Invariants enforced:
    - mo_number is unique per subsidiary (uq_mfg_mo_number).
    - Monetary and quantity fields are Decimal (Numeric(38, 9)).
    - Child collections are ordered by an explicit position column so the
      BOM, reservation and history order is the insertion order.
    - ``version`` is the optimistic lock counter (version_id_col).
    - Stage history rows are only ever appended.

Failure modes:
    - IntegrityError on a duplicate mo_number within a subsidiary.
    - StaleDataError on flush if the order changed since it was read.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mfg_kernel.db.base import Base, TrackedBase, version_column
from mfg_modules.manufacturing.models import (
    BOMEntry,
    CostSummary,
    ManufacturingOrder,
    MaterialConsumption,
    MaterialReservation,
    MOPriority,
    MOStage,
    MOStatus,
    QualityCheck,
    ReservationStatus,
    StageTransition,
)


class ManufacturingOrderModel(TrackedBase):
    """
    ORM model for manufacturing orders.

    Maps to: mfg_modules.manufacturing.models.ManufacturingOrder.
    The single quality check is flattened into qc_* columns; a new check
    overwrites the previous one.
    """

    __tablename__ = "mfg_manufacturing_orders"

    __table_args__ = (
        UniqueConstraint("subsidiary", "mo_number", name="uq_mfg_mo_number"),
        Index("idx_mfg_mo_status", "status"),
        Index("idx_mfg_mo_subsidiary", "subsidiary"),
        Index("idx_mfg_mo_design", "design_id"),
    )

    mo_number: Mapped[str] = mapped_column(String(50))
    subsidiary: Mapped[str] = mapped_column(String(50))
    design_name: Mapped[str] = mapped_column(String(255))
    design_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    project_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    project_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_repeat_order: Mapped[bool] = mapped_column(default=False)
    quantity: Mapped[Decimal] = mapped_column()

    status: Mapped[str] = mapped_column(String(50), default=MOStatus.DRAFT.value)
    status_before_hold: Mapped[str | None] = mapped_column(String(50), nullable=True)
    current_stage: Mapped[str] = mapped_column(String(50), default=MOStage.QUEUED.value)
    priority: Mapped[str] = mapped_column(String(50), default=MOPriority.NORMAL.value)

    # Cost summary
    material_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    labor_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    estimated_labor_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="UGX")

    linked_po_ids: Mapped[list] = mapped_column(JSON, default=list)

    target_completion_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_start_date: Mapped[datetime | None] = mapped_column(nullable=True)
    actual_end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    hold_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Latest quality check
    qc_passed: Mapped[bool | None] = mapped_column(nullable=True)
    qc_inspector_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    qc_inspected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    qc_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    qc_defects: Mapped[list | None] = mapped_column(JSON, nullable=True)

    version: Mapped[int] = version_column()

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    bom_entries: Mapped[list["BOMEntryModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="BOMEntryModel.position",
        lazy="selectin",
    )
    reservations: Mapped[list["MaterialReservationModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="MaterialReservationModel.position",
        lazy="selectin",
    )
    consumptions: Mapped[list["MaterialConsumptionModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="MaterialConsumptionModel.position",
        lazy="selectin",
    )
    stage_history: Mapped[list["StageTransitionModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="StageTransitionModel.sequence",
        lazy="selectin",
    )

    def bom_entry(self, entry_id: UUID) -> "BOMEntryModel | None":
        for entry in self.bom_entries:
            if entry.id == entry_id:
                return entry
        return None

    def active_reservations(self) -> list["MaterialReservationModel"]:
        return [r for r in self.reservations if r.status == ReservationStatus.ACTIVE.value]

    def to_dto(self) -> ManufacturingOrder:
        quality_check = None
        if self.qc_passed is not None:
            quality_check = QualityCheck(
                passed=self.qc_passed,
                inspector_id=self.qc_inspector_id or "",
                inspected_at=self.qc_inspected_at,
                notes=self.qc_notes,
                defects=tuple(self.qc_defects or ()),
            )
        return ManufacturingOrder(
            id=self.id,
            mo_number=self.mo_number,
            subsidiary=self.subsidiary,
            design_name=self.design_name,
            quantity=self.quantity,
            status=MOStatus(self.status),
            current_stage=MOStage(self.current_stage),
            priority=MOPriority(self.priority),
            bom=tuple(e.to_dto() for e in self.bom_entries),
            cost_summary=CostSummary(
                material_cost=self.material_cost,
                labor_cost=self.labor_cost,
                currency=self.currency,
            ),
            created_by=self.created_by,
            created_at=self.created_at,
            design_id=self.design_id,
            project_id=self.project_id,
            project_type=self.project_type,
            customer_name=self.customer_name,
            is_repeat_order=self.is_repeat_order,
            estimated_labor_cost=self.estimated_labor_cost,
            material_reservations=tuple(r.to_dto() for r in self.reservations),
            material_consumptions=tuple(c.to_dto() for c in self.consumptions),
            stage_history=tuple(t.to_dto() for t in self.stage_history),
            quality_check=quality_check,
            linked_po_ids=tuple(UUID(v) for v in (self.linked_po_ids or [])),
            target_completion_date=self.target_completion_date,
            actual_start_date=self.actual_start_date,
            actual_end_date=self.actual_end_date,
            hold_reason=self.hold_reason,
            cancellation_reason=self.cancellation_reason,
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<ManufacturingOrderModel {self.mo_number} [{self.status}/{self.current_stage}]>"


class BOMEntryModel(Base):
    """ORM model for one bill-of-materials line.  Maps to BOMEntry."""

    __tablename__ = "mfg_bom_entries"

    __table_args__ = (
        Index("idx_mfg_bom_order", "order_id"),
        Index("idx_mfg_bom_item", "inventory_item_id"),
    )

    order_id: Mapped[UUID] = mapped_column(ForeignKey("mfg_manufacturing_orders.id"))
    position: Mapped[int] = mapped_column(Integer)
    item_name: Mapped[str] = mapped_column(String(255))
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str] = mapped_column(String(50), default="standard")
    quantity_required: Mapped[Decimal] = mapped_column()
    unit: Mapped[str] = mapped_column(String(20), default="pcs")
    unit_cost: Mapped[Decimal] = mapped_column()
    inventory_item_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    warehouse_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    order: Mapped[ManufacturingOrderModel] = relationship(back_populates="bom_entries")

    def to_dto(self) -> BOMEntry:
        return BOMEntry(
            id=self.id,
            item_name=self.item_name,
            sku=self.sku,
            category=self.category,
            quantity_required=self.quantity_required,
            unit=self.unit,
            unit_cost=self.unit_cost,
            inventory_item_id=self.inventory_item_id,
            warehouse_id=self.warehouse_id,
            supplier_id=self.supplier_id,
            supplier_name=self.supplier_name,
        )

    @classmethod
    def from_dto(cls, dto: BOMEntry, position: int) -> "BOMEntryModel":
        return cls(
            id=dto.id,
            position=position,
            item_name=dto.item_name,
            sku=dto.sku,
            category=dto.category,
            quantity_required=dto.quantity_required,
            unit=dto.unit,
            unit_cost=dto.unit_cost,
            inventory_item_id=dto.inventory_item_id,
            warehouse_id=dto.warehouse_id,
            supplier_id=dto.supplier_id,
            supplier_name=dto.supplier_name,
        )


class MaterialReservationModel(Base):
    """ORM model for a soft inventory hold against an order."""

    __tablename__ = "mfg_material_reservations"

    __table_args__ = (
        Index("idx_mfg_res_order", "order_id"),
        Index("idx_mfg_res_status", "status"),
    )

    order_id: Mapped[UUID] = mapped_column(ForeignKey("mfg_manufacturing_orders.id"))
    position: Mapped[int] = mapped_column(Integer)
    bom_entry_id: Mapped[UUID] = mapped_column()
    inventory_item_id: Mapped[str] = mapped_column(String(100))
    warehouse_id: Mapped[str] = mapped_column(String(100))
    quantity: Mapped[Decimal] = mapped_column()
    status: Mapped[str] = mapped_column(String(20), default=ReservationStatus.ACTIVE.value)
    stock_level_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reserved_at: Mapped[datetime] = mapped_column()
    reserved_by: Mapped[str] = mapped_column(String(100))
    released_at: Mapped[datetime | None] = mapped_column(nullable=True)

    order: Mapped[ManufacturingOrderModel] = relationship(back_populates="reservations")

    def to_dto(self) -> MaterialReservation:
        return MaterialReservation(
            id=self.id,
            bom_entry_id=self.bom_entry_id,
            inventory_item_id=self.inventory_item_id,
            warehouse_id=self.warehouse_id,
            quantity=self.quantity,
            status=ReservationStatus(self.status),
            reserved_at=self.reserved_at,
            stock_level_id=self.stock_level_id,
            released_at=self.released_at,
        )


class MaterialConsumptionModel(Base):
    """ORM model for material drawn into production, tagged with the stage."""

    __tablename__ = "mfg_material_consumptions"

    __table_args__ = (
        Index("idx_mfg_con_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(ForeignKey("mfg_manufacturing_orders.id"))
    position: Mapped[int] = mapped_column(Integer)
    inventory_item_id: Mapped[str] = mapped_column(String(100))
    warehouse_id: Mapped[str] = mapped_column(String(100))
    quantity: Mapped[Decimal] = mapped_column()
    stage: Mapped[str] = mapped_column(String(50))
    consumed_at: Mapped[datetime] = mapped_column()
    consumed_by: Mapped[str] = mapped_column(String(100))

    order: Mapped[ManufacturingOrderModel] = relationship(back_populates="consumptions")

    def to_dto(self) -> MaterialConsumption:
        return MaterialConsumption(
            id=self.id,
            inventory_item_id=self.inventory_item_id,
            warehouse_id=self.warehouse_id,
            quantity=self.quantity,
            stage=MOStage(self.stage),
            consumed_at=self.consumed_at,
            consumed_by=self.consumed_by,
        )


class StageTransitionModel(Base):
    """Append-only stage log entry."""

    __tablename__ = "mfg_stage_transitions"

    __table_args__ = (
        Index("idx_mfg_stage_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(ForeignKey("mfg_manufacturing_orders.id"))
    sequence: Mapped[int] = mapped_column(Integer)
    from_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_stage: Mapped[str] = mapped_column(String(50))
    transitioned_at: Mapped[datetime] = mapped_column()
    transitioned_by: Mapped[str] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    order: Mapped[ManufacturingOrderModel] = relationship(back_populates="stage_history")

    def to_dto(self) -> StageTransition:
        return StageTransition(
            from_stage=MOStage(self.from_stage) if self.from_stage else None,
            to_stage=MOStage(self.to_stage),
            transitioned_at=self.transitioned_at,
            transitioned_by=self.transitioned_by,
            notes=self.notes,
        )
