"""
Manufacturing Configuration Schema.

Defaults for MO numbering, currency and lifecycle options.  Values are
overridden from the ``manufacturing`` section of the settings YAML
(see ``mfg_config``).
"""

from dataclasses import dataclass, fields
from typing import Any, Self

from mfg_kernel.logging_config import get_logger

logger = get_logger("modules.manufacturing.config")


@dataclass
class ManufacturingConfig:
    """
    Configuration schema for the manufacturing module.

        config = ManufacturingConfig(default_warehouse_id="WH-MAIN")
    """

    mo_number_prefix: str = "MO"
    default_currency: str = "UGX"

    # Used by approve() when neither the BOM entry nor the caller names one
    default_warehouse_id: str | None = None

    # Allow hold before production starts (bulk hold of approved orders)
    allow_hold_from_approved: bool = False

    # Reverting an approved order to draft releases its active reservations
    release_reservations_on_revert: bool = True

    def __post_init__(self):
        logger.info(
            "manufacturing_config_initialized",
            extra={
                "mo_number_prefix": self.mo_number_prefix,
                "default_currency": self.default_currency,
                "default_warehouse_id": self.default_warehouse_id,
                "allow_hold_from_approved": self.allow_hold_from_approved,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Build from a settings mapping; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
