"""
Module: mfg_engines
Responsibility:
    Re-exports the pure calculation engines used by the manufacturing and
    procurement modules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import mfg_kernel (domain, db.types, logging) only.
    MUST NOT import mfg_modules or mfg_services.

Invariants enforced:
    - Engines never read the clock; callers pass timestamps in.
    - Decimal-only money arithmetic.
    - Every public engine entry point is wrapped by ``@traced_engine``.

Usage:
    from mfg_engines.landed_cost import allocate_landed_costs, CostLine
    from mfg_engines.approval import build_approval_chain, select_threshold
    from mfg_engines.variance import CostVarianceCalculator
"""

from mfg_engines.approval import (
    ChainOutcome,
    apply_action,
    build_approval_chain,
    escalate_if_overdue,
    select_threshold,
)
from mfg_engines.landed_cost import (
    AllocatedLine,
    CostLine,
    DistributionMethod,
    LandedCostComponents,
    LandedCostResult,
    LandedCostTotals,
    allocate_landed_costs,
)
from mfg_engines.variance import (
    CostVarianceBreakdown,
    CostVarianceCalculator,
    VarianceStatus,
    classify_variance,
)

__all__ = [
    "AllocatedLine",
    "ChainOutcome",
    "CostLine",
    "CostVarianceBreakdown",
    "CostVarianceCalculator",
    "DistributionMethod",
    "LandedCostComponents",
    "LandedCostResult",
    "LandedCostTotals",
    "VarianceStatus",
    "allocate_landed_costs",
    "apply_action",
    "build_approval_chain",
    "classify_variance",
    "escalate_if_overdue",
    "select_threshold",
]
