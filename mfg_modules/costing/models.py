"""
Costing Domain Models.

Labor time entries booked against manufacturing orders, the persisted cost
variance record per order, and the portfolio summary and alert views.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from mfg_engines.variance import CostVarianceBreakdown, VarianceStatus
from mfg_kernel.db.types import ZERO, round_money
from mfg_kernel.logging_config import get_logger
from mfg_modules.manufacturing.models import MOStage

logger = get_logger("modules.costing.models")

SECONDS_PER_HOUR = Decimal("3600")


class LaborType(str, Enum):
    DIRECT = "direct"
    INDIRECT = "indirect"
    SETUP = "setup"
    REWORK = "rework"


@dataclass(frozen=True)
class LaborEntryInput:
    """
    Caller request to book labor on an order.

    Either ``duration_hours`` or ``end_time`` must be given; with only an
    end time the duration is derived from the clock span.
    """
    stage: MOStage
    worker_id: str
    worker_name: str
    hourly_rate: Decimal
    start_time: datetime
    labor_type: LaborType = LaborType.DIRECT
    end_time: datetime | None = None
    duration_hours: Decimal | None = None
    notes: str | None = None

    def __post_init__(self):
        if self.hourly_rate < 0:
            raise ValueError("hourly_rate cannot be negative")
        if self.duration_hours is None and self.end_time is None:
            raise ValueError("labor entry needs duration_hours or end_time")
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time precedes start_time")
        if self.duration_hours is not None and self.duration_hours < 0:
            raise ValueError("duration_hours cannot be negative")

    @property
    def hours(self) -> Decimal:
        if self.duration_hours is not None:
            return self.duration_hours
        seconds = Decimal(str((self.end_time - self.start_time).total_seconds()))
        return round_money(seconds / SECONDS_PER_HOUR)

    @property
    def total_cost(self) -> Decimal:
        return round_money(self.hours * self.hourly_rate)


@dataclass(frozen=True)
class LaborTimeEntry:
    id: UUID
    mo_id: UUID
    mo_number: str
    stage: MOStage
    worker_id: str
    worker_name: str
    labor_type: LaborType
    start_time: datetime
    duration_hours: Decimal
    hourly_rate: Decimal
    total_cost: Decimal
    created_by: str
    end_time: datetime | None = None
    notes: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class CostVarianceRecord:
    """The latest variance calculation for one MO."""
    id: UUID
    mo_id: UUID
    mo_number: str
    subsidiary: str
    currency: str
    breakdown: CostVarianceBreakdown
    calculated_at: datetime

    @property
    def variance_status(self) -> VarianceStatus:
        return self.breakdown.variance_status

    @property
    def total_variance(self) -> Decimal:
        return self.breakdown.total_variance

    @property
    def total_variance_percent(self) -> Decimal:
        return self.breakdown.total_variance_percent


@dataclass(frozen=True)
class VarianceOverrun:
    mo_id: UUID
    mo_number: str
    variance: Decimal
    variance_percent: Decimal


@dataclass(frozen=True)
class StageVariance:
    stage: str
    total_estimated: Decimal = ZERO
    total_actual: Decimal = ZERO
    variance: Decimal = ZERO


@dataclass(frozen=True)
class CostVarianceSummary:
    total_mos: int
    favorable_count: int
    within_tolerance_count: int
    unfavorable_count: int
    critical_count: int
    total_estimated_cost: Decimal
    total_actual_cost: Decimal
    total_variance: Decimal
    average_variance_percent: Decimal
    top_overruns: tuple[VarianceOverrun, ...] = ()
    variance_by_stage: tuple[StageVariance, ...] = ()


@dataclass(frozen=True)
class VarianceAlert:
    mo_id: UUID
    mo_number: str
    variance_status: VarianceStatus
    total_variance: Decimal
    total_variance_percent: Decimal
