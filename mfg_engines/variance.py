"""
mfg_engines.variance -- Manufacturing order cost variance.

Responsibility:
    Compare BOM-estimated against actually consumed material cost and
    recorded labor, per order and per production stage, and classify the
    severity of the total variance against a tolerance.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Inputs are plain snapshots; the costing service builds them from the
    persisted order and labor entries.

Invariants enforced:
    - Actual material cost prices each consumption at the unit cost of the
      BOM entry with the same inventory item.  A consumption without a
      matching entry contributes zero and is reported in
      ``unmatched_consumptions`` (never silently dropped).
    - ``variance = actual - estimated``; percent is 0 when estimated is 0.
    - Classification against tolerance T:
        percent < -T        -> favorable
        T < percent <= 2T   -> unfavorable
        percent > 2T        -> critical
        otherwise           -> within-tolerance
    - Stage duration spans the first transition entering a stage to the
      first transition leaving it.

Failure modes:
    - ValueError on a negative tolerance.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from mfg_engines.tracer import traced_engine
from mfg_kernel.db.types import ZERO, round_money
from mfg_kernel.logging_config import get_logger

logger = get_logger("engines.variance")

HUNDRED = Decimal("100")
SECONDS_PER_HOUR = Decimal("3600")


class VarianceStatus(str, Enum):
    FAVORABLE = "favorable"
    WITHIN_TOLERANCE = "within-tolerance"
    UNFAVORABLE = "unfavorable"
    CRITICAL = "critical"


@dataclass(frozen=True)
class EstimatedMaterial:
    inventory_item_id: str | None
    unit_cost: Decimal
    total_cost: Decimal


@dataclass(frozen=True)
class ConsumedMaterial:
    inventory_item_id: str | None
    quantity: Decimal
    stage: str
    consumption_id: str = ""


@dataclass(frozen=True)
class LaborCharge:
    stage: str
    duration_hours: Decimal
    total_cost: Decimal


@dataclass(frozen=True)
class StageMark:
    from_stage: str | None
    to_stage: str
    at: datetime


@dataclass(frozen=True)
class StageCost:
    stage: str
    material_cost: Decimal = ZERO
    labor_cost: Decimal = ZERO
    labor_hours: Decimal = ZERO
    overhead_cost: Decimal = ZERO
    total_cost: Decimal = ZERO
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_hours: Decimal | None = None


@dataclass(frozen=True)
class CostVarianceBreakdown:
    estimated_material_cost: Decimal
    estimated_labor_cost: Decimal
    estimated_overhead_cost: Decimal
    estimated_total_cost: Decimal
    actual_material_cost: Decimal
    actual_labor_cost: Decimal
    actual_overhead_cost: Decimal
    actual_total_cost: Decimal
    material_variance: Decimal
    material_variance_percent: Decimal
    labor_variance: Decimal
    labor_variance_percent: Decimal
    overhead_variance: Decimal
    total_variance: Decimal
    total_variance_percent: Decimal
    variance_status: VarianceStatus
    tolerance_percent: Decimal
    cost_by_stage: tuple[StageCost, ...] = ()
    unmatched_consumptions: tuple[str, ...] = field(default_factory=tuple)

    def stage(self, name: str) -> StageCost | None:
        for entry in self.cost_by_stage:
            if entry.stage == name:
                return entry
        return None


def variance_percent(variance: Decimal, estimated: Decimal) -> Decimal:
    """variance / estimated * 100, or 0 when nothing was estimated."""
    if estimated == 0:
        return ZERO
    return round_money(variance / estimated * HUNDRED)


def classify_variance(percent: Decimal, tolerance_percent: Decimal) -> VarianceStatus:
    if tolerance_percent < 0:
        raise ValueError("Tolerance percent cannot be negative")
    if percent < -tolerance_percent:
        return VarianceStatus.FAVORABLE
    if percent > tolerance_percent * 2:
        return VarianceStatus.CRITICAL
    if percent > tolerance_percent:
        return VarianceStatus.UNFAVORABLE
    return VarianceStatus.WITHIN_TOLERANCE


class CostVarianceCalculator:
    """
    Pure calculator for manufacturing order cost variance.

    Contract:
        No I/O, no clock access; identical inputs give identical results.
    Non-goals:
        Overhead absorption.  Overhead is carried as zero on both sides
        until an absorption basis exists.
    """

    def _unit_cost_index(self, bom: Sequence[EstimatedMaterial]) -> dict[str, Decimal]:
        # First BOM entry wins when an item appears twice.
        index: dict[str, Decimal] = {}
        for entry in bom:
            if entry.inventory_item_id and entry.inventory_item_id not in index:
                index[entry.inventory_item_id] = entry.unit_cost
        return index

    def _price(
        self, consumption: ConsumedMaterial, index: dict[str, Decimal],
    ) -> Decimal | None:
        if consumption.inventory_item_id is None:
            return None
        unit_cost = index.get(consumption.inventory_item_id)
        if unit_cost is None:
            return None
        return consumption.quantity * unit_cost

    @traced_engine(
        "cost_variance", "1.0",
        fingerprint_fields=("bom", "consumptions", "labor", "tolerance_percent"),
    )
    def calculate(
        self,
        *,
        bom: Sequence[EstimatedMaterial],
        consumptions: Sequence[ConsumedMaterial],
        labor: Sequence[LaborCharge],
        stage_history: Sequence[StageMark],
        stages: Sequence[str],
        estimated_labor_cost: Decimal = ZERO,
        tolerance_percent: Decimal = Decimal("10"),
    ) -> CostVarianceBreakdown:
        index = self._unit_cost_index(bom)

        estimated_material = round_money(sum((e.total_cost for e in bom), ZERO))
        estimated_labor = round_money(estimated_labor_cost)
        estimated_overhead = ZERO
        estimated_total = estimated_material + estimated_labor + estimated_overhead

        actual_material = ZERO
        unmatched: list[str] = []
        for consumption in consumptions:
            cost = self._price(consumption, index)
            if cost is None:
                unmatched.append(consumption.consumption_id or str(consumption.inventory_item_id))
                continue
            actual_material += cost
        actual_material = round_money(actual_material)

        if unmatched:
            logger.warning(
                "variance_unmatched_consumptions",
                extra={"count": len(unmatched), "consumption_ids": unmatched},
            )

        actual_labor = round_money(sum((l.total_cost for l in labor), ZERO))
        actual_overhead = ZERO
        actual_total = actual_material + actual_labor + actual_overhead

        material_variance = actual_material - estimated_material
        labor_variance = actual_labor - estimated_labor
        total_variance = actual_total - estimated_total
        total_percent = variance_percent(total_variance, estimated_total)

        return CostVarianceBreakdown(
            estimated_material_cost=estimated_material,
            estimated_labor_cost=estimated_labor,
            estimated_overhead_cost=estimated_overhead,
            estimated_total_cost=estimated_total,
            actual_material_cost=actual_material,
            actual_labor_cost=actual_labor,
            actual_overhead_cost=actual_overhead,
            actual_total_cost=actual_total,
            material_variance=material_variance,
            material_variance_percent=variance_percent(material_variance, estimated_material),
            labor_variance=labor_variance,
            labor_variance_percent=variance_percent(labor_variance, estimated_labor),
            overhead_variance=actual_overhead - estimated_overhead,
            total_variance=total_variance,
            total_variance_percent=total_percent,
            variance_status=classify_variance(total_percent, tolerance_percent),
            tolerance_percent=tolerance_percent,
            cost_by_stage=self.stage_breakdown(
                consumptions=consumptions,
                labor=labor,
                stage_history=stage_history,
                stages=stages,
                index=index,
            ),
            unmatched_consumptions=tuple(unmatched),
        )

    def stage_breakdown(
        self,
        *,
        consumptions: Sequence[ConsumedMaterial],
        labor: Sequence[LaborCharge],
        stage_history: Sequence[StageMark],
        stages: Sequence[str],
        index: dict[str, Decimal],
    ) -> tuple[StageCost, ...]:
        """Material and labor attributed by stage tag, with stage timing."""
        result: list[StageCost] = []
        for stage in stages:
            material = ZERO
            for consumption in consumptions:
                if consumption.stage != stage:
                    continue
                cost = self._price(consumption, index)
                if cost is not None:
                    material += cost
            stage_labor = [l for l in labor if l.stage == stage]
            labor_cost = sum((l.total_cost for l in stage_labor), ZERO)
            labor_hours = sum((l.duration_hours for l in stage_labor), ZERO)

            entered = next((m for m in stage_history if m.to_stage == stage), None)
            left = next((m for m in stage_history if m.from_stage == stage), None)
            duration = None
            if entered is not None and left is not None:
                seconds = Decimal(str((left.at - entered.at).total_seconds()))
                duration = round_money(seconds / SECONDS_PER_HOUR)

            material = round_money(material)
            labor_cost = round_money(labor_cost)
            result.append(
                StageCost(
                    stage=stage,
                    material_cost=material,
                    labor_cost=labor_cost,
                    labor_hours=labor_hours,
                    total_cost=material + labor_cost,
                    started_at=entered.at if entered else None,
                    completed_at=left.at if left else None,
                    duration_hours=duration,
                )
            )
        return tuple(result)
