"""
Module: mfg_engines.landed_cost
Responsibility:
    Distribute PO-level landed costs (shipping, customs, duties, insurance,
    handling, other) across purchase order lines and derive each line's
    landed-cost-inclusive effective unit cost plus the PO totals.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Totals are always re-derived from scratch from the lines and the
      components; there is no incremental patching path.
    - Every monetary output is rounded HALF_UP to 2 places.
    - Rounding remainder: every eligible line except the last receives its
      rounded share; the last eligible line receives ``total_landed`` minus
      the sum already allocated, so ``sum(allocations) == total_landed``
      exactly whenever at least one line is eligible.
      Eligible lines: all lines for ``equal``; lines with a positive line
      total for ``proportional_value``; lines with a positive weight for
      ``proportional_weight``.

Failure modes:
    - ValueError on a negative landed cost component or negative quantity.
    - No eligible line (zero subtotal / no weights / no lines): every
      allocation is 0 and the full amount is reported as ``unallocated``.

Usage:
    result = allocate_landed_costs(
        lines=[CostLine("l1", Decimal("10"), Decimal("250.00"))],
        components=LandedCostComponents(shipping=Decimal("100")),
    )
    result.totals.grand_total
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from mfg_engines.tracer import traced_engine
from mfg_kernel.db.types import ZERO, round_money
from mfg_kernel.logging_config import get_logger

logger = get_logger("engines.landed_cost")


class DistributionMethod(str, Enum):
    """How landed costs are spread over lines."""

    PROPORTIONAL_VALUE = "proportional_value"
    PROPORTIONAL_WEIGHT = "proportional_weight"
    EQUAL = "equal"


@dataclass(frozen=True)
class LandedCostComponents:
    shipping: Decimal = ZERO
    customs: Decimal = ZERO
    duties: Decimal = ZERO
    insurance: Decimal = ZERO
    handling: Decimal = ZERO
    other: Decimal = ZERO
    method: DistributionMethod = DistributionMethod.PROPORTIONAL_VALUE

    @property
    def total(self) -> Decimal:
        return round_money(
            self.shipping + self.customs + self.duties
            + self.insurance + self.handling + self.other
        )


@dataclass(frozen=True)
class CostLine:
    """Input line: identity, ordered quantity, unit cost, optional weight."""

    line_id: str
    quantity: Decimal
    unit_cost: Decimal
    weight: Decimal | None = None

    @property
    def line_total(self) -> Decimal:
        return round_money(self.quantity * self.unit_cost)


@dataclass(frozen=True)
class AllocatedLine:
    line_id: str
    line_total: Decimal
    allocation: Decimal
    effective_unit_cost: Decimal


@dataclass(frozen=True)
class LandedCostTotals:
    subtotal: Decimal
    landed_cost_total: Decimal
    grand_total: Decimal
    currency: str


@dataclass(frozen=True)
class LandedCostResult:
    lines: tuple[AllocatedLine, ...]
    totals: LandedCostTotals
    method: DistributionMethod
    unallocated: Decimal = ZERO

    def allocation_for(self, line_id: str) -> AllocatedLine:
        for line in self.lines:
            if line.line_id == line_id:
                return line
        raise KeyError(line_id)


def _validate(lines: Sequence[CostLine], components: LandedCostComponents) -> None:
    for name in ("shipping", "customs", "duties", "insurance", "handling", "other"):
        if getattr(components, name) < 0:
            raise ValueError(f"Landed cost component {name} cannot be negative")
    for line in lines:
        if line.quantity < 0:
            raise ValueError(f"Line {line.line_id} has negative quantity")
        if line.unit_cost < 0:
            raise ValueError(f"Line {line.line_id} has negative unit cost")


def _basis(line: CostLine, method: DistributionMethod) -> Decimal:
    match method:
        case DistributionMethod.PROPORTIONAL_VALUE:
            return line.line_total
        case DistributionMethod.PROPORTIONAL_WEIGHT:
            return line.weight if line.weight is not None and line.weight > 0 else ZERO
        case DistributionMethod.EQUAL:
            return Decimal("1")
    raise ValueError(f"Unknown distribution method: {method}")


def _distribute(
    total_landed: Decimal,
    bases: list[Decimal],
) -> list[Decimal]:
    """Split ``total_landed`` by ``bases``; the last positive basis absorbs the remainder."""
    basis_total = sum(bases, ZERO)
    if basis_total <= 0 or total_landed == 0:
        return [ZERO] * len(bases)

    eligible = [i for i, b in enumerate(bases) if b > 0]
    remainder_index = eligible[-1]

    shares: list[Decimal] = []
    allocated = ZERO
    for i, basis in enumerate(bases):
        if basis <= 0:
            shares.append(ZERO)
        elif i == remainder_index:
            shares.append(total_landed - allocated)
        else:
            share = round_money(total_landed * basis / basis_total)
            allocated += share
            shares.append(share)
    return shares


@traced_engine("landed_cost", "1.0", fingerprint_fields=("lines", "components"))
def allocate_landed_costs(
    *,
    lines: Sequence[CostLine],
    components: LandedCostComponents,
    currency: str = "UGX",
) -> LandedCostResult:
    """Allocate landed costs across ``lines`` and derive PO totals.

    Preconditions:
        Component amounts, quantities and unit costs are non-negative.
    Postconditions:
        ``totals.grand_total == totals.subtotal + totals.landed_cost_total``.
        ``sum(l.allocation) + unallocated == totals.landed_cost_total``.
        Lines are returned in input order.
    """
    _validate(lines, components)

    method = components.method
    total_landed = components.total
    bases = [_basis(line, method) for line in lines]
    shares = _distribute(total_landed, bases)

    allocated_lines: list[AllocatedLine] = []
    for line, share in zip(lines, shares):
        line_total = line.line_total
        if line.quantity > 0:
            effective = round_money((line_total + share) / line.quantity)
        else:
            effective = round_money(line.unit_cost)
        allocated_lines.append(
            AllocatedLine(
                line_id=line.line_id,
                line_total=line_total,
                allocation=share,
                effective_unit_cost=effective,
            )
        )

    subtotal = round_money(sum((l.line_total for l in allocated_lines), ZERO))
    allocated_sum = sum((l.allocation for l in allocated_lines), ZERO)
    unallocated = total_landed - allocated_sum

    if unallocated != 0:
        logger.warning(
            "landed_cost_unallocated",
            extra={
                "method": method.value,
                "total_landed": str(total_landed),
                "unallocated": str(unallocated),
                "line_count": len(lines),
            },
        )

    return LandedCostResult(
        lines=tuple(allocated_lines),
        totals=LandedCostTotals(
            subtotal=subtotal,
            landed_cost_total=total_landed,
            grand_total=subtotal + total_landed,
            currency=currency,
        ),
        method=method,
        unallocated=unallocated,
    )
