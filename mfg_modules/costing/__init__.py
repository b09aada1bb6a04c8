"""
Costing Module (``mfg_modules.costing``).

Labor time booking and estimated-versus-actual cost variance for
manufacturing orders, with portfolio summaries and alerts.
"""

from mfg_modules.costing.config import CostingConfig
from mfg_modules.costing.models import (
    CostVarianceRecord,
    CostVarianceSummary,
    LaborEntryInput,
    LaborTimeEntry,
    LaborType,
    StageVariance,
    VarianceAlert,
    VarianceOverrun,
)

__all__ = [
    "CostingConfig",
    "CostVarianceRecord",
    "CostVarianceSummary",
    "LaborEntryInput",
    "LaborTimeEntry",
    "LaborType",
    "StageVariance",
    "VarianceAlert",
    "VarianceOverrun",
]
