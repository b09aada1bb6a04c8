"""
Tests for the pure landed cost allocation engine.

Tests cover:
- proportional_value / proportional_weight / equal distribution
- Rounding remainder absorbed by the last eligible line
- Lines with no basis (zero value, missing weight) and the unallocated amount
- Effective unit cost and PO totals
- Input validation and the engine trace record
"""

from decimal import Decimal

import pytest

from mfg_engines.landed_cost import (
    CostLine,
    DistributionMethod,
    LandedCostComponents,
    allocate_landed_costs,
)


def line(line_id: str, quantity: str, unit_cost: str, weight: str | None = None) -> CostLine:
    return CostLine(
        line_id=line_id,
        quantity=Decimal(quantity),
        unit_cost=Decimal(unit_cost),
        weight=Decimal(weight) if weight is not None else None,
    )


class TestProportionalValue:
    """Landed costs split by line value."""

    def test_even_split_between_equal_value_lines(self):
        """Two lines worth 1000 each share 100 shipping equally."""
        result = allocate_landed_costs(
            lines=[line("a", "10", "100"), line("b", "5", "200")],
            components=LandedCostComponents(shipping=Decimal("100")),
        )

        assert result.allocation_for("a").allocation == Decimal("50.00")
        assert result.allocation_for("b").allocation == Decimal("50.00")
        assert result.allocation_for("a").effective_unit_cost == Decimal("105.00")
        assert result.allocation_for("b").effective_unit_cost == Decimal("210.00")
        assert result.totals.subtotal == Decimal("2000.00")
        assert result.totals.landed_cost_total == Decimal("100.00")
        assert result.totals.grand_total == Decimal("2100.00")
        assert result.unallocated == Decimal("0")

    def test_weighted_by_value(self):
        """A line worth three times as much takes three quarters of the cost."""
        result = allocate_landed_costs(
            lines=[line("a", "3", "100"), line("b", "1", "100")],
            components=LandedCostComponents(customs=Decimal("40"), duties=Decimal("40")),
        )

        assert result.allocation_for("a").allocation == Decimal("60.00")
        assert result.allocation_for("b").allocation == Decimal("20.00")

    def test_remainder_goes_to_last_line(self):
        """100 over three equal lines rounds to 33.33, 33.33, 33.34."""
        result = allocate_landed_costs(
            lines=[line("a", "1", "1"), line("b", "1", "1"), line("c", "1", "1")],
            components=LandedCostComponents(shipping=Decimal("100")),
        )

        allocations = [l.allocation for l in result.lines]
        assert allocations == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert sum(allocations) == Decimal("100.00")

    def test_zero_value_line_gets_nothing(self):
        """A free line is not eligible; the last priced line absorbs the remainder."""
        result = allocate_landed_costs(
            lines=[line("a", "1", "10"), line("b", "2", "10"), line("free", "4", "0")],
            components=LandedCostComponents(handling=Decimal("10")),
        )

        assert result.allocation_for("free").allocation == Decimal("0")
        assert result.allocation_for("a").allocation == Decimal("3.33")
        assert result.allocation_for("b").allocation == Decimal("6.67")
        assert result.allocation_for("free").effective_unit_cost == Decimal("0.00")

    def test_zero_subtotal_reports_unallocated(self):
        """With no priced lines nothing can be allocated."""
        result = allocate_landed_costs(
            lines=[line("a", "1", "0")],
            components=LandedCostComponents(shipping=Decimal("25")),
        )

        assert result.allocation_for("a").allocation == Decimal("0")
        assert result.unallocated == Decimal("25.00")
        assert result.totals.grand_total == Decimal("25.00")


class TestProportionalWeight:
    """Landed costs split by line weight."""

    def test_split_by_weight(self):
        result = allocate_landed_costs(
            lines=[line("a", "1", "500", weight="3"), line("b", "1", "10", weight="1")],
            components=LandedCostComponents(
                shipping=Decimal("100"), method=DistributionMethod.PROPORTIONAL_WEIGHT,
            ),
        )

        assert result.allocation_for("a").allocation == Decimal("75.00")
        assert result.allocation_for("b").allocation == Decimal("25.00")

    def test_unweighted_line_is_skipped(self):
        """A line without weight gets nothing; the weighted lines share everything."""
        result = allocate_landed_costs(
            lines=[
                line("a", "1", "100", weight="2"),
                line("b", "1", "100", weight="2"),
                line("c", "1", "100"),
            ],
            components=LandedCostComponents(
                shipping=Decimal("10"), method=DistributionMethod.PROPORTIONAL_WEIGHT,
            ),
        )

        assert result.allocation_for("a").allocation == Decimal("5.00")
        assert result.allocation_for("b").allocation == Decimal("5.00")
        assert result.allocation_for("c").allocation == Decimal("0")
        assert result.unallocated == Decimal("0")

    def test_no_weights_leaves_everything_unallocated(self):
        result = allocate_landed_costs(
            lines=[line("a", "1", "100"), line("b", "2", "100")],
            components=LandedCostComponents(
                insurance=Decimal("30"), method=DistributionMethod.PROPORTIONAL_WEIGHT,
            ),
        )

        assert all(l.allocation == Decimal("0") for l in result.lines)
        assert result.unallocated == Decimal("30.00")


class TestEqualDistribution:
    """Landed costs split evenly by line count."""

    def test_hundred_over_six_lines_sums_exactly(self):
        """Five lines take 16.67 and the last takes 16.65."""
        lines = [line(f"l{i}", "1", "10") for i in range(6)]

        result = allocate_landed_costs(
            lines=lines,
            components=LandedCostComponents(
                other=Decimal("100"), method=DistributionMethod.EQUAL,
            ),
        )

        allocations = [l.allocation for l in result.lines]
        assert allocations[:5] == [Decimal("16.67")] * 5
        assert allocations[5] == Decimal("16.65")
        assert sum(allocations) == Decimal("100.00")

    def test_equal_includes_free_lines(self):
        result = allocate_landed_costs(
            lines=[line("a", "1", "0"), line("b", "1", "999")],
            components=LandedCostComponents(
                shipping=Decimal("10"), method=DistributionMethod.EQUAL,
            ),
        )

        assert result.allocation_for("a").allocation == Decimal("5.00")
        assert result.allocation_for("b").allocation == Decimal("5.00")


class TestEdgeCases:
    """Empty inputs, validation and tracing."""

    def test_no_landed_costs(self):
        result = allocate_landed_costs(
            lines=[line("a", "4", "25")],
            components=LandedCostComponents(),
        )

        assert result.allocation_for("a").allocation == Decimal("0")
        assert result.allocation_for("a").effective_unit_cost == Decimal("25.00")
        assert result.totals.grand_total == Decimal("100.00")

    def test_no_lines(self):
        result = allocate_landed_costs(
            lines=[],
            components=LandedCostComponents(shipping=Decimal("10")),
        )

        assert result.lines == ()
        assert result.totals.subtotal == Decimal("0")
        assert result.unallocated == Decimal("10.00")

    def test_components_total_rounds_half_up(self):
        components = LandedCostComponents(shipping=Decimal("10.004"), customs=Decimal("0.001"))

        assert components.total == Decimal("10.01")

    def test_negative_component_rejected(self):
        with pytest.raises(ValueError, match="shipping"):
            allocate_landed_costs(
                lines=[line("a", "1", "10")],
                components=LandedCostComponents(shipping=Decimal("-1")),
            )

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValueError, match="negative quantity"):
            allocate_landed_costs(
                lines=[line("a", "-1", "10")],
                components=LandedCostComponents(),
            )

    def test_lines_returned_in_input_order(self):
        result = allocate_landed_costs(
            lines=[line("z", "1", "1"), line("a", "1", "1")],
            components=LandedCostComponents(shipping=Decimal("2")),
        )

        assert [l.line_id for l in result.lines] == ["z", "a"]

    def test_emits_engine_trace(self, captured_logs):
        allocate_landed_costs(
            lines=[line("a", "1", "10")],
            components=LandedCostComponents(shipping=Decimal("1")),
        )

        traces = [r for r in captured_logs() if r["message"] == "MFG_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "landed_cost"
        assert len(traces[-1]["input_fingerprint"]) == 16
