"""
Procurement Configuration Schema.

Defaults for PO numbering, currency and receiving tolerance.  Values are
overridden from the ``procurement`` section of the settings YAML
(see ``mfg_config``).
"""

from dataclasses import dataclass, field, fields
from decimal import Decimal
from typing import Any, Self

from mfg_engines.landed_cost import DistributionMethod
from mfg_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.config")


@dataclass
class ProcurementConfig:
    """
    Configuration schema for the procurement module.

        config = ProcurementConfig(allow_over_receipt_percent=Decimal("5"))
    """

    # PO numbers: ``<prefix>-<year>-<seq>``; per-subsidiary prefix overrides
    po_number_prefix: str = "PO"
    subsidiary_po_prefixes: dict[str, str] = field(
        default_factory=lambda: {"finishes": "PO-FIN"},
    )

    default_currency: str = "UGX"
    default_distribution_method: DistributionMethod = DistributionMethod.PROPORTIONAL_VALUE

    # Receiving: 0 means quantity_received may never exceed quantity
    allow_over_receipt_percent: Decimal = Decimal("0")

    def __post_init__(self):
        self.allow_over_receipt_percent = Decimal(str(self.allow_over_receipt_percent))
        self.default_distribution_method = DistributionMethod(self.default_distribution_method)
        if self.allow_over_receipt_percent < 0:
            raise ValueError("allow_over_receipt_percent cannot be negative")
        logger.info(
            "procurement_config_initialized",
            extra={
                "po_number_prefix": self.po_number_prefix,
                "subsidiary_po_prefixes": self.subsidiary_po_prefixes,
                "default_currency": self.default_currency,
                "allow_over_receipt_percent": str(self.allow_over_receipt_percent),
            },
        )

    def po_prefix_for(self, subsidiary: str) -> str:
        return self.subsidiary_po_prefixes.get(subsidiary, self.po_number_prefix)

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Build from a settings mapping; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
