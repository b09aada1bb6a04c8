"""
Tests for CostVarianceService.

Tests cover:
- Labor booking from explicit hours and from a clock span
- Labor cost folded into the order's cost summary
- Variance calculation, recalculation and the critical-variance event
- Portfolio summary and alert threshold ordering
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from mfg_engines.variance import VarianceStatus
from mfg_kernel.events import Severity
from mfg_kernel.exceptions import InvalidStateError, ManufacturingOrderNotFoundError
from mfg_modules.costing.models import LaborEntryInput, LaborType
from mfg_modules.costing.orm import CostVarianceRecordModel
from mfg_modules.manufacturing.models import ConsumptionInput, MOStage
from tests.conftest import WAREHOUSE

SHIFT_START = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def labor(hours: str, rate: str = "100", stage: MOStage = MOStage.CUTTING, **kwargs) -> LaborEntryInput:
    return LaborEntryInput(
        stage=stage,
        worker_id="W-001",
        worker_name="Amani Okello",
        hourly_rate=Decimal(rate),
        start_time=SHIFT_START,
        duration_hours=Decimal(hours),
        **kwargs,
    )


@pytest.fixture
def consume(services, test_actor_id):
    """Record consumption of ``(item_id, quantity)`` pairs at the main warehouse."""

    def _consume(order, *pairs):
        return services.manufacturing.record_consumption(
            order.id,
            [ConsumptionInput(item, WAREHOUSE, Decimal(qty)) for item, qty in pairs],
            actor_id=test_actor_id,
        )

    return _consume


class TestLaborEntries:

    def test_entry_from_duration(self, approved_order, services, test_actor_id):
        order = approved_order()

        entry = services.costing.record_labor_entry(
            order.id, labor("3", rate="1200"), actor_id=test_actor_id,
        )

        assert entry.mo_number == order.mo_number
        assert entry.duration_hours == Decimal("3")
        assert entry.total_cost == Decimal("3600.00")
        assert entry.labor_type == LaborType.DIRECT
        assert entry.created_by == test_actor_id

    def test_entry_from_clock_span(self, approved_order, services, test_actor_id):
        order = approved_order()
        span = LaborEntryInput(
            stage=MOStage.ASSEMBLY,
            worker_id="W-002",
            worker_name="Grace Nambi",
            hourly_rate=Decimal("1200"),
            start_time=SHIFT_START,
            end_time=SHIFT_START + timedelta(hours=2, minutes=30),
            labor_type=LaborType.SETUP,
        )

        entry = services.costing.record_labor_entry(order.id, span, actor_id=test_actor_id)

        assert entry.duration_hours == Decimal("2.50")
        assert entry.total_cost == Decimal("3000.00")
        assert entry.stage == MOStage.ASSEMBLY

    def test_entry_needs_hours_or_end_time(self):
        with pytest.raises(ValueError):
            LaborEntryInput(
                stage=MOStage.CUTTING,
                worker_id="W-001",
                worker_name="Amani Okello",
                hourly_rate=Decimal("100"),
                start_time=SHIFT_START,
            )

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            LaborEntryInput(
                stage=MOStage.CUTTING,
                worker_id="W-001",
                worker_name="Amani Okello",
                hourly_rate=Decimal("100"),
                start_time=SHIFT_START,
                end_time=SHIFT_START - timedelta(minutes=5),
            )

    def test_labor_added_to_order_cost(self, approved_order, services, test_actor_id):
        order = approved_order()

        services.costing.record_labor_entry(order.id, labor("2"), actor_id=test_actor_id)
        services.costing.record_labor_entry(order.id, labor("1.5"), actor_id=test_actor_id)

        reloaded = services.manufacturing.get_order(order.id)
        assert reloaded.cost_summary.labor_cost == Decimal("350.00")
        assert len(services.costing.get_labor_entries(order.id)) == 2

    def test_cancelled_order_rejects_labor(self, approved_order, services, test_actor_id):
        order = approved_order()
        services.manufacturing.cancel(order.id, "Customer withdrew", actor_id=test_actor_id)

        with pytest.raises(InvalidStateError):
            services.costing.record_labor_entry(order.id, labor("1"), actor_id=test_actor_id)

        assert services.costing.get_labor_entries(order.id) == []

    def test_unknown_order(self, services, test_actor_id):
        with pytest.raises(ManufacturingOrderNotFoundError):
            services.costing.record_labor_entry(uuid4(), labor("1"), actor_id=test_actor_id)

    def test_entries_for_malformed_id_empty(self, services):
        assert services.costing.get_labor_entries("not-a-uuid") == []


class TestCalculateVariance:

    def test_on_budget_within_tolerance(self, approved_order, services, consume, test_actor_id):
        order = approved_order()
        consume(order, ("ITEM-OAK", "10"), ("ITEM-GLUE", "2"))

        record = services.costing.calculate_variance(order.id, actor_id=test_actor_id)

        assert record.breakdown.estimated_total_cost == Decimal("11000.00")
        assert record.breakdown.actual_total_cost == Decimal("11000.00")
        assert record.total_variance == Decimal("0")
        assert record.variance_status == VarianceStatus.WITHIN_TOLERANCE
        assert record.breakdown.tolerance_percent == Decimal("10")

    def test_overrun_is_unfavorable(self, approved_order, services, consume, test_actor_id):
        order = approved_order()
        consume(order, ("ITEM-OAK", "13"))

        record = services.costing.calculate_variance(order.id, actor_id=test_actor_id)

        assert record.breakdown.actual_material_cost == Decimal("13000.00")
        assert record.total_variance == Decimal("2000.00")
        assert record.total_variance_percent == Decimal("18.18")
        assert record.variance_status == VarianceStatus.UNFAVORABLE

    def test_critical_variance_emits_event(
        self, approved_order, services, consume, events, test_actor_id,
    ):
        order = approved_order()
        consume(order, ("ITEM-OAK", "10"), ("ITEM-GLUE", "2"))
        services.costing.record_labor_entry(order.id, labor("40"), actor_id=test_actor_id)

        record = services.costing.calculate_variance(order.id, actor_id=test_actor_id)

        assert record.breakdown.actual_labor_cost == Decimal("4000.00")
        assert record.total_variance_percent == Decimal("36.36")
        assert record.variance_status == VarianceStatus.CRITICAL
        critical = events.of_type("cost_variance_critical")
        assert len(critical) == 1
        assert critical[0].severity == Severity.HIGH
        assert critical[0].entity_id == str(order.id)
        assert critical[0].metadata["variance"] == "4000.00"

    def test_tolerance_override(self, approved_order, services, consume, events, test_actor_id):
        order = approved_order()
        consume(order, ("ITEM-OAK", "10"), ("ITEM-GLUE", "2"))
        services.costing.record_labor_entry(order.id, labor("40"), actor_id=test_actor_id)

        record = services.costing.calculate_variance(
            order.id, actor_id=test_actor_id, tolerance_percent=Decimal("50"),
        )

        assert record.variance_status == VarianceStatus.WITHIN_TOLERANCE
        assert record.breakdown.tolerance_percent == Decimal("50")
        assert events.of_type("cost_variance_critical") == []

    def test_unmatched_consumption_listed(self, approved_order, services, consume, test_actor_id):
        order = approved_order()
        updated = consume(order, ("ITEM-OAK", "10"), ("ITEM-SCREW", "100"))
        screw = updated.material_consumptions[1]

        record = services.costing.calculate_variance(order.id, actor_id=test_actor_id)

        assert record.breakdown.unmatched_consumptions == (str(screw.id),)
        assert record.breakdown.actual_material_cost == Decimal("10000.00")

    def test_cost_attributed_by_stage(self, approved_order, services, consume, test_actor_id):
        order = approved_order()
        consume(order, ("ITEM-OAK", "10"))
        services.costing.record_labor_entry(
            order.id, labor("5", stage=MOStage.ASSEMBLY), actor_id=test_actor_id,
        )

        record = services.costing.calculate_variance(order.id, actor_id=test_actor_id)

        assert [s.stage for s in record.breakdown.cost_by_stage][0] == "queued"
        queued = record.breakdown.stage("queued")
        assembly = record.breakdown.stage("assembly")
        assert queued.material_cost == Decimal("10000.00")
        assert assembly.labor_cost == Decimal("500.00")
        assert assembly.labor_hours == Decimal("5")
        assert record.breakdown.stage("finishing").total_cost == Decimal("0")

    def test_recalculation_overwrites_single_record(
        self, approved_order, services, consume, session, test_actor_id,
    ):
        order = approved_order()
        consume(order, ("ITEM-OAK", "10"))
        first = services.costing.calculate_variance(order.id, actor_id=test_actor_id)

        consume(order, ("ITEM-GLUE", "2"))
        second = services.costing.calculate_variance(order.id, actor_id=test_actor_id)

        assert second.id == first.id
        assert second.breakdown.actual_material_cost == Decimal("11000.00")
        rows = session.scalars(select(CostVarianceRecordModel)).all()
        assert len(rows) == 1
        assert rows[0].version == 2
        assert services.costing.get_variance(order.id).breakdown.actual_material_cost == Decimal(
            "11000.00"
        )

    def test_no_record_before_calculation(self, approved_order, services):
        order = approved_order()

        assert services.costing.get_variance(order.id) is None
        assert services.costing.get_variance("not-a-uuid") is None


@pytest.fixture
def portfolio(approved_order, services, consume, test_actor_id):
    """Three calculated orders: critical overrun, favorable, on budget."""
    overrun = approved_order()
    consume(overrun, ("ITEM-OAK", "10"), ("ITEM-GLUE", "2"))
    services.costing.record_labor_entry(overrun.id, labor("40"), actor_id=test_actor_id)

    under = approved_order()
    consume(under, ("ITEM-OAK", "5"))

    exact = approved_order()
    consume(exact, ("ITEM-OAK", "10"), ("ITEM-GLUE", "2"))

    for order in (overrun, under, exact):
        services.costing.calculate_variance(order.id, actor_id=test_actor_id)
    return overrun, under, exact


class TestVarianceSummary:

    def test_counts_and_totals(self, portfolio, services):
        summary = services.costing.get_variance_summary()

        assert summary.total_mos == 3
        assert summary.critical_count == 1
        assert summary.favorable_count == 1
        assert summary.within_tolerance_count == 1
        assert summary.unfavorable_count == 0
        assert summary.total_estimated_cost == Decimal("33000.00")
        assert summary.total_actual_cost == Decimal("31000.00")
        assert summary.total_variance == Decimal("-2000.00")
        assert summary.average_variance_percent == Decimal("-6.06")

    def test_top_overruns_only_positive(self, portfolio, services):
        overrun, _, _ = portfolio

        summary = services.costing.get_variance_summary()

        assert [o.mo_id for o in summary.top_overruns] == [overrun.id]
        assert summary.top_overruns[0].variance == Decimal("4000.00")

    def test_variance_by_stage(self, portfolio, services):
        summary = services.costing.get_variance_summary()

        by_stage = {s.stage: s for s in summary.variance_by_stage}
        assert by_stage["queued"].total_actual == Decimal("27000.00")
        assert by_stage["cutting"].total_actual == Decimal("4000.00")
        assert by_stage["ready"].total_actual == Decimal("0")

    def test_restricted_to_given_orders(self, portfolio, services):
        _, under, _ = portfolio

        summary = services.costing.get_variance_summary([under.id, "not-a-uuid"])

        assert summary.total_mos == 1
        assert summary.favorable_count == 1
        assert summary.top_overruns == ()

    def test_empty_portfolio(self, services):
        summary = services.costing.get_variance_summary()

        assert summary.total_mos == 0
        assert summary.average_variance_percent == Decimal("0")


class TestVarianceAlerts:

    def test_default_threshold(self, portfolio, services):
        overrun, _, _ = portfolio

        alerts = services.costing.get_variance_alerts()

        assert [a.mo_id for a in alerts] == [overrun.id]
        assert alerts[0].variance_status == VarianceStatus.CRITICAL

    def test_worst_first(self, portfolio, services):
        overrun, under, exact = portfolio

        alerts = services.costing.get_variance_alerts(Decimal("-100"))

        assert [a.mo_id for a in alerts] == [overrun.id, exact.id, under.id]
        assert alerts[-1].total_variance_percent == Decimal("-54.55")
