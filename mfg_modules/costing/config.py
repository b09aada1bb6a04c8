"""
Costing Configuration Schema.

Variance tolerance and alerting thresholds.  Values are overridden from
the ``costing`` section of the settings YAML (see ``mfg_config``).
"""

from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Self

from mfg_kernel.exceptions import ConfigurationError
from mfg_kernel.logging_config import get_logger

logger = get_logger("modules.costing.config")


@dataclass
class CostingConfig:
    """
    Configuration schema for the costing module.

        config = CostingConfig(tolerance_percent=Decimal("5"))
    """

    # Variance within +/- tolerance is "within-tolerance"; above 2x is critical
    tolerance_percent: Decimal = Decimal("10")

    # get_variance_alerts() lists orders whose total variance percent exceeds this
    alert_threshold_percent: Decimal = Decimal("10")

    top_overrun_count: int = 5
    currency: str = "UGX"

    def __post_init__(self):
        self.tolerance_percent = Decimal(str(self.tolerance_percent))
        self.alert_threshold_percent = Decimal(str(self.alert_threshold_percent))
        if self.tolerance_percent < 0:
            raise ConfigurationError("costing.tolerance_percent cannot be negative")
        if self.top_overrun_count < 1:
            raise ConfigurationError("costing.top_overrun_count must be at least 1")
        logger.info(
            "costing_config_initialized",
            extra={
                "tolerance_percent": str(self.tolerance_percent),
                "alert_threshold_percent": str(self.alert_threshold_percent),
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
