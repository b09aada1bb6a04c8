"""
Cost Variance Service (``mfg_modules.costing.service``).

Responsibility
--------------
Books labor time against manufacturing orders and compares each order's
BOM estimate with what was actually consumed and worked, per order and per
production stage.  The arithmetic lives in ``mfg_engines.variance``; this
service gathers its inputs, persists the latest result and reports
portfolio summaries and alerts.

Architecture position
---------------------
**Modules layer**.  Labor entries fold into the MO cost summary through
``ManufacturingOrderService.add_labor_cost`` inside the same unit of work.

Invariants enforced
-------------------
* Labor is never booked on a cancelled order.
* One variance record per MO; recalculation overwrites it.
* A critical variance emits ``cost_variance_critical`` at high severity.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from mfg_engines.variance import (
    ConsumedMaterial,
    CostVarianceCalculator,
    EstimatedMaterial,
    LaborCharge,
    StageMark,
    VarianceStatus,
)
from mfg_kernel.db.base import bump_version
from mfg_kernel.db.types import ZERO, round_money
from mfg_kernel.db.unit_of_work import after_commit, unit_of_work
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.events import EventSink, LoggingEventSink, Severity, emit_event
from mfg_kernel.exceptions import InvalidStateError
from mfg_kernel.logging_config import LogContext, get_logger
from mfg_modules.costing.config import CostingConfig
from mfg_modules.costing.models import (
    CostVarianceRecord,
    CostVarianceSummary,
    LaborEntryInput,
    LaborTimeEntry,
    StageVariance,
    VarianceAlert,
    VarianceOverrun,
)
from mfg_modules.costing.orm import CostVarianceRecordModel, LaborTimeEntryModel
from mfg_modules.manufacturing.models import STAGE_SEQUENCE, ManufacturingOrder, MOStatus
from mfg_modules.manufacturing.service import ManufacturingOrderService, coerce_id

logger = get_logger("modules.costing.service")

STAGE_NAMES = tuple(stage.value for stage in STAGE_SEQUENCE)


def _variance_inputs(order: ManufacturingOrder, labor: Sequence[LaborTimeEntry]) -> dict:
    return {
        "bom": [
            EstimatedMaterial(
                inventory_item_id=entry.inventory_item_id,
                unit_cost=entry.unit_cost,
                total_cost=entry.total_cost,
            )
            for entry in order.bom
        ],
        "consumptions": [
            ConsumedMaterial(
                inventory_item_id=c.inventory_item_id,
                quantity=c.quantity,
                stage=c.stage.value,
                consumption_id=str(c.id),
            )
            for c in order.material_consumptions
        ],
        "labor": [
            LaborCharge(
                stage=entry.stage.value,
                duration_hours=entry.duration_hours,
                total_cost=entry.total_cost,
            )
            for entry in labor
        ],
        "stage_history": [
            StageMark(
                from_stage=t.from_stage.value if t.from_stage else None,
                to_stage=t.to_stage.value,
                at=t.transitioned_at,
            )
            for t in order.stage_history
        ],
        "stages": STAGE_NAMES,
        "estimated_labor_cost": order.estimated_labor_cost,
    }


class CostVarianceService:
    """Labor booking and estimated-versus-actual cost tracking."""

    def __init__(
        self,
        session: Session,
        manufacturing: ManufacturingOrderService,
        events: EventSink | None = None,
        clock: Clock | None = None,
        config: CostingConfig | None = None,
        calculator: CostVarianceCalculator | None = None,
    ):
        self._session = session
        self._manufacturing = manufacturing
        self._events = events or LoggingEventSink()
        self._clock = clock or SystemClock()
        self._config = config or CostingConfig.with_defaults()
        self._calculator = calculator or CostVarianceCalculator()

    def _record_for(self, mo_id: UUID) -> CostVarianceRecordModel | None:
        stmt = select(CostVarianceRecordModel).where(CostVarianceRecordModel.mo_id == mo_id)
        return self._session.scalars(stmt).first()

    def _records(self, mo_ids: Sequence[UUID | str] | None) -> list[CostVarianceRecord]:
        stmt = select(CostVarianceRecordModel).order_by(CostVarianceRecordModel.mo_number)
        if mo_ids is not None:
            keys = [k for k in (coerce_id(m) for m in mo_ids) if k is not None]
            if not keys:
                return []
            stmt = stmt.where(CostVarianceRecordModel.mo_id.in_(keys))
        return [row.to_dto() for row in self._session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Labor
    # ------------------------------------------------------------------

    def record_labor_entry(
        self,
        mo_id: UUID | str,
        entry: LaborEntryInput,
        *,
        actor_id: str,
    ) -> LaborTimeEntry:
        """Book labor on an order and add its cost to the order's labor total."""
        with LogContext.bind(entity_id=str(mo_id), actor_id=actor_id, operation="record_labor"):
            with unit_of_work(self._session, "LaborTimeEntry", mo_id):
                order = self._manufacturing.get_order(mo_id)
                if order.status == MOStatus.CANCELLED:
                    raise InvalidStateError(
                        "ManufacturingOrder", order.id, order.status.value, "record_labor",
                    )
                row = LaborTimeEntryModel(
                    mo_id=order.id,
                    mo_number=order.mo_number,
                    stage=entry.stage.value,
                    worker_id=entry.worker_id,
                    worker_name=entry.worker_name,
                    labor_type=entry.labor_type.value,
                    start_time=entry.start_time,
                    end_time=entry.end_time,
                    duration_hours=entry.hours,
                    hourly_rate=entry.hourly_rate,
                    total_cost=entry.total_cost,
                    notes=entry.notes,
                    created_by=actor_id,
                )
                self._session.add(row)
                self._manufacturing.add_labor_cost(order.id, entry.total_cost, actor_id=actor_id)
                self._session.flush()

            logger.info(
                "labor_entry_recorded",
                extra={
                    "mo_number": order.mo_number,
                    "stage": entry.stage.value,
                    "worker_id": entry.worker_id,
                    "hours": str(entry.hours),
                    "total_cost": str(entry.total_cost),
                },
            )
            return row.to_dto()

    def get_labor_entries(self, mo_id: UUID | str) -> list[LaborTimeEntry]:
        key = coerce_id(mo_id)
        if key is None:
            return []
        stmt = (
            select(LaborTimeEntryModel)
            .where(LaborTimeEntryModel.mo_id == key)
            .order_by(LaborTimeEntryModel.start_time)
        )
        return [row.to_dto() for row in self._session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Variance
    # ------------------------------------------------------------------

    def calculate_variance(
        self,
        mo_id: UUID | str,
        *,
        actor_id: str,
        tolerance_percent: Decimal | None = None,
    ) -> CostVarianceRecord:
        """Recompute and store the variance of one order."""
        tolerance = (
            tolerance_percent if tolerance_percent is not None
            else self._config.tolerance_percent
        )
        with LogContext.bind(entity_id=str(mo_id), actor_id=actor_id, operation="calculate_variance"):
            with unit_of_work(self._session, "CostVarianceRecord", mo_id):
                order = self._manufacturing.get_order(mo_id)
                breakdown = self._calculator.calculate(
                    **_variance_inputs(order, self.get_labor_entries(order.id)),
                    tolerance_percent=tolerance,
                )
                now = self._clock.now()
                row = self._record_for(order.id)
                if row is None:
                    row = CostVarianceRecordModel(
                        mo_id=order.id,
                        mo_number=order.mo_number,
                        subsidiary=order.subsidiary,
                        currency=order.cost_summary.currency,
                        created_by=actor_id,
                    )
                    self._session.add(row)
                else:
                    bump_version(row, actor_id)
                row.apply(breakdown, now)
                self._session.flush()

                if breakdown.variance_status == VarianceStatus.CRITICAL:
                    metadata = {
                        "mo_number": order.mo_number,
                        "estimated_cost": str(breakdown.estimated_total_cost),
                        "actual_cost": str(breakdown.actual_total_cost),
                        "variance": str(breakdown.total_variance),
                        "variance_percent": str(breakdown.total_variance_percent),
                        "material_variance": str(breakdown.material_variance),
                        "labor_variance": str(breakdown.labor_variance),
                    }
                    after_commit(self._session, lambda: emit_event(
                        self._events,
                        "cost_variance_critical",
                        entity_type="manufacturing_order",
                        entity_id=order.id,
                        actor_id=actor_id,
                        occurred_at=now,
                        severity=Severity.HIGH,
                        metadata=metadata,
                    ))

            logger.info(
                "cost_variance_calculated",
                extra={
                    "mo_number": order.mo_number,
                    "variance_status": breakdown.variance_status.value,
                    "total_variance": str(breakdown.total_variance),
                    "total_variance_percent": str(breakdown.total_variance_percent),
                },
            )
            return row.to_dto()

    def get_variance(self, mo_id: UUID | str) -> CostVarianceRecord | None:
        key = coerce_id(mo_id)
        if key is None:
            return None
        row = self._record_for(key)
        return row.to_dto() if row is not None else None

    def get_variance_summary(
        self,
        mo_ids: Sequence[UUID | str] | None = None,
    ) -> CostVarianceSummary:
        """Portfolio view over stored variance records (all, or ``mo_ids``)."""
        records = self._records(mo_ids)
        counts = {status: 0 for status in VarianceStatus}
        for record in records:
            counts[record.variance_status] += 1

        total_estimated = sum((r.breakdown.estimated_total_cost for r in records), ZERO)
        total_actual = sum((r.breakdown.actual_total_cost for r in records), ZERO)
        average = (
            round_money(sum((r.total_variance_percent for r in records), ZERO) / len(records))
            if records else ZERO
        )

        overruns = sorted(
            (r for r in records if r.total_variance > 0),
            key=lambda r: r.total_variance,
            reverse=True,
        )[: self._config.top_overrun_count]

        # Stage actuals only; estimates are not broken down by stage.
        stage_actuals = {name: ZERO for name in STAGE_NAMES}
        for record in records:
            for stage in record.breakdown.cost_by_stage:
                stage_actuals[stage.stage] = stage_actuals.get(stage.stage, ZERO) + stage.total_cost

        return CostVarianceSummary(
            total_mos=len(records),
            favorable_count=counts[VarianceStatus.FAVORABLE],
            within_tolerance_count=counts[VarianceStatus.WITHIN_TOLERANCE],
            unfavorable_count=counts[VarianceStatus.UNFAVORABLE],
            critical_count=counts[VarianceStatus.CRITICAL],
            total_estimated_cost=round_money(total_estimated),
            total_actual_cost=round_money(total_actual),
            total_variance=round_money(total_actual - total_estimated),
            average_variance_percent=average,
            top_overruns=tuple(
                VarianceOverrun(
                    mo_id=r.mo_id,
                    mo_number=r.mo_number,
                    variance=round_money(r.total_variance),
                    variance_percent=round_money(r.total_variance_percent),
                )
                for r in overruns
            ),
            variance_by_stage=tuple(
                StageVariance(
                    stage=name,
                    total_actual=round_money(actual),
                    variance=round_money(actual),
                )
                for name, actual in stage_actuals.items()
            ),
        )

    def get_variance_alerts(self, threshold_percent: Decimal | None = None) -> list[VarianceAlert]:
        """Orders whose total variance percent exceeds the threshold, worst first."""
        threshold = (
            threshold_percent if threshold_percent is not None
            else self._config.alert_threshold_percent
        )
        alerts = [
            VarianceAlert(
                mo_id=r.mo_id,
                mo_number=r.mo_number,
                variance_status=r.variance_status,
                total_variance=round_money(r.total_variance),
                total_variance_percent=round_money(r.total_variance_percent),
            )
            for r in self._records(None)
            if r.total_variance_percent > threshold
        ]
        alerts.sort(key=lambda a: a.total_variance_percent, reverse=True)
        return alerts
