"""
Module: mfg_modules.costing.orm
Responsibility: SQLAlchemy ORM persistence for labor time entries and the
    per-order cost variance record.

Architecture position: Modules > Costing > ORM.  Inherits from TrackedBase.

Invariants enforced:
    - One variance record per MO (uq_mfg_variance_mo); recalculation
      overwrites it in place.
    - Labor entries are append-only.
    - The per-stage breakdown is stored as a JSON list in stage order.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mfg_engines.variance import CostVarianceBreakdown, StageCost, VarianceStatus
from mfg_kernel.db.base import TrackedBase, version_column
from mfg_modules.costing.models import CostVarianceRecord, LaborTimeEntry, LaborType
from mfg_modules.manufacturing.models import MOStage


def _dec(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def stage_costs_to_json(stages: tuple[StageCost, ...]) -> list[dict]:
    return [
        {
            "stage": s.stage,
            "material_cost": str(s.material_cost),
            "labor_cost": str(s.labor_cost),
            "labor_hours": str(s.labor_hours),
            "overhead_cost": str(s.overhead_cost),
            "total_cost": str(s.total_cost),
            "started_at": s.started_at.isoformat() if s.started_at else None,
            "completed_at": s.completed_at.isoformat() if s.completed_at else None,
            "duration_hours": str(s.duration_hours) if s.duration_hours is not None else None,
        }
        for s in stages
    ]


def stage_costs_from_json(data: list[dict]) -> tuple[StageCost, ...]:
    return tuple(
        StageCost(
            stage=d["stage"],
            material_cost=Decimal(d["material_cost"]),
            labor_cost=Decimal(d["labor_cost"]),
            labor_hours=Decimal(d["labor_hours"]),
            overhead_cost=Decimal(d["overhead_cost"]),
            total_cost=Decimal(d["total_cost"]),
            started_at=_dt(d.get("started_at")),
            completed_at=_dt(d.get("completed_at")),
            duration_hours=_dec(d.get("duration_hours")),
        )
        for d in data
    )


class LaborTimeEntryModel(TrackedBase):
    """ORM model for labor booked against an MO.  Maps to LaborTimeEntry."""

    __tablename__ = "mfg_labor_time_entries"

    __table_args__ = (
        Index("idx_mfg_labor_mo", "mo_id"),
    )

    mo_id: Mapped[UUID] = mapped_column()
    mo_number: Mapped[str] = mapped_column(String(50))
    stage: Mapped[str] = mapped_column(String(50))
    worker_id: Mapped[str] = mapped_column(String(100))
    worker_name: Mapped[str] = mapped_column(String(255))
    labor_type: Mapped[str] = mapped_column(String(20), default=LaborType.DIRECT.value)
    start_time: Mapped[datetime] = mapped_column()
    end_time: Mapped[datetime | None] = mapped_column(nullable=True)
    duration_hours: Mapped[Decimal] = mapped_column()
    hourly_rate: Mapped[Decimal] = mapped_column()
    total_cost: Mapped[Decimal] = mapped_column()
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> LaborTimeEntry:
        return LaborTimeEntry(
            id=self.id,
            mo_id=self.mo_id,
            mo_number=self.mo_number,
            stage=MOStage(self.stage),
            worker_id=self.worker_id,
            worker_name=self.worker_name,
            labor_type=LaborType(self.labor_type),
            start_time=self.start_time,
            end_time=self.end_time,
            duration_hours=self.duration_hours,
            hourly_rate=self.hourly_rate,
            total_cost=self.total_cost,
            notes=self.notes,
            created_by=self.created_by,
            created_at=self.created_at,
        )


class CostVarianceRecordModel(TrackedBase):
    """ORM model for the latest cost variance of an MO."""

    __tablename__ = "mfg_cost_variance_records"

    __table_args__ = (
        UniqueConstraint("mo_id", name="uq_mfg_variance_mo"),
        Index("idx_mfg_variance_status", "variance_status"),
    )

    mo_id: Mapped[UUID] = mapped_column()
    mo_number: Mapped[str] = mapped_column(String(50))
    subsidiary: Mapped[str] = mapped_column(String(50))
    currency: Mapped[str] = mapped_column(String(3), default="UGX")

    estimated_material_cost: Mapped[Decimal] = mapped_column()
    estimated_labor_cost: Mapped[Decimal] = mapped_column()
    estimated_overhead_cost: Mapped[Decimal] = mapped_column()
    estimated_total_cost: Mapped[Decimal] = mapped_column()
    actual_material_cost: Mapped[Decimal] = mapped_column()
    actual_labor_cost: Mapped[Decimal] = mapped_column()
    actual_overhead_cost: Mapped[Decimal] = mapped_column()
    actual_total_cost: Mapped[Decimal] = mapped_column()
    material_variance: Mapped[Decimal] = mapped_column()
    material_variance_percent: Mapped[Decimal] = mapped_column()
    labor_variance: Mapped[Decimal] = mapped_column()
    labor_variance_percent: Mapped[Decimal] = mapped_column()
    overhead_variance: Mapped[Decimal] = mapped_column()
    total_variance: Mapped[Decimal] = mapped_column()
    total_variance_percent: Mapped[Decimal] = mapped_column()
    variance_status: Mapped[str] = mapped_column(String(20))
    tolerance_percent: Mapped[Decimal] = mapped_column()

    cost_by_stage: Mapped[list] = mapped_column(JSON, default=list)
    unmatched_consumptions: Mapped[list] = mapped_column(JSON, default=list)
    calculated_at: Mapped[datetime] = mapped_column()
    version: Mapped[int] = version_column()

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    def apply(self, breakdown: CostVarianceBreakdown, calculated_at: datetime) -> None:
        """Overwrite every calculated column from ``breakdown``."""
        self.estimated_material_cost = breakdown.estimated_material_cost
        self.estimated_labor_cost = breakdown.estimated_labor_cost
        self.estimated_overhead_cost = breakdown.estimated_overhead_cost
        self.estimated_total_cost = breakdown.estimated_total_cost
        self.actual_material_cost = breakdown.actual_material_cost
        self.actual_labor_cost = breakdown.actual_labor_cost
        self.actual_overhead_cost = breakdown.actual_overhead_cost
        self.actual_total_cost = breakdown.actual_total_cost
        self.material_variance = breakdown.material_variance
        self.material_variance_percent = breakdown.material_variance_percent
        self.labor_variance = breakdown.labor_variance
        self.labor_variance_percent = breakdown.labor_variance_percent
        self.overhead_variance = breakdown.overhead_variance
        self.total_variance = breakdown.total_variance
        self.total_variance_percent = breakdown.total_variance_percent
        self.variance_status = breakdown.variance_status.value
        self.tolerance_percent = breakdown.tolerance_percent
        self.cost_by_stage = stage_costs_to_json(breakdown.cost_by_stage)
        self.unmatched_consumptions = list(breakdown.unmatched_consumptions)
        self.calculated_at = calculated_at

    def breakdown(self) -> CostVarianceBreakdown:
        return CostVarianceBreakdown(
            estimated_material_cost=self.estimated_material_cost,
            estimated_labor_cost=self.estimated_labor_cost,
            estimated_overhead_cost=self.estimated_overhead_cost,
            estimated_total_cost=self.estimated_total_cost,
            actual_material_cost=self.actual_material_cost,
            actual_labor_cost=self.actual_labor_cost,
            actual_overhead_cost=self.actual_overhead_cost,
            actual_total_cost=self.actual_total_cost,
            material_variance=self.material_variance,
            material_variance_percent=self.material_variance_percent,
            labor_variance=self.labor_variance,
            labor_variance_percent=self.labor_variance_percent,
            overhead_variance=self.overhead_variance,
            total_variance=self.total_variance,
            total_variance_percent=self.total_variance_percent,
            variance_status=VarianceStatus(self.variance_status),
            tolerance_percent=self.tolerance_percent,
            cost_by_stage=stage_costs_from_json(self.cost_by_stage or []),
            unmatched_consumptions=tuple(self.unmatched_consumptions or ()),
        )

    def to_dto(self) -> CostVarianceRecord:
        return CostVarianceRecord(
            id=self.id,
            mo_id=self.mo_id,
            mo_number=self.mo_number,
            subsidiary=self.subsidiary,
            currency=self.currency,
            breakdown=self.breakdown(),
            calculated_at=self.calculated_at,
        )
