"""
Approval Configuration Schema.

Amount bands and their level chains for manufacturing order approval.
Values are overridden from the ``approval`` section of the settings YAML
(see ``mfg_config``); ``from_dict`` accepts the YAML shape::

    thresholds:
      - id: tier-1
        name: Standard
        min_amount: 0
        max_amount: 5000000
        levels:
          - level: 1
            name: Supervisor review
            required_role: PRODUCTION_SUPERVISOR
            sla_hours: 24
            can_skip: true
            skip_conditions:
              - {type: priority, operator: eq, value: urgent}
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Self

from mfg_kernel.domain.approval import (
    ApprovalLevelRule,
    ApprovalThreshold,
    SkipCondition,
    SkipConditionType,
    SkipOperator,
)
from mfg_kernel.exceptions import ConfigurationError
from mfg_kernel.logging_config import get_logger

logger = get_logger("modules.approval.config")

PRODUCTION_SUPERVISOR = "PRODUCTION_SUPERVISOR"
PRODUCTION_MANAGER = "PRODUCTION_MANAGER"
OPERATIONS_DIRECTOR = "OPERATIONS_DIRECTOR"

_SUPERVISOR = ApprovalLevelRule(
    level=1,
    name="Supervisor review",
    required_role=PRODUCTION_SUPERVISOR,
    sla_hours=24,
)
_MANAGER = ApprovalLevelRule(
    level=2,
    name="Production manager approval",
    required_role=PRODUCTION_MANAGER,
    sla_hours=48,
)
_DIRECTOR = ApprovalLevelRule(
    level=3,
    name="Operations director approval",
    required_role=OPERATIONS_DIRECTOR,
    sla_hours=72,
)

DEFAULT_THRESHOLDS: tuple[ApprovalThreshold, ...] = (
    ApprovalThreshold(
        threshold_id="tier-1",
        name="Standard orders",
        min_amount=Decimal("0"),
        max_amount=Decimal("5000000"),
        levels=(
            ApprovalLevelRule(
                level=1,
                name="Supervisor review",
                required_role=PRODUCTION_SUPERVISOR,
                sla_hours=24,
                can_skip=True,
                skip_conditions=(
                    SkipCondition(SkipConditionType.PRIORITY, SkipOperator.EQ, "urgent"),
                ),
            ),
        ),
    ),
    ApprovalThreshold(
        threshold_id="tier-2",
        name="Medium orders",
        min_amount=Decimal("5000000"),
        max_amount=Decimal("20000000"),
        levels=(_SUPERVISOR, _MANAGER),
    ),
    ApprovalThreshold(
        threshold_id="tier-3",
        name="Large orders",
        min_amount=Decimal("20000000"),
        max_amount=None,
        levels=(_SUPERVISOR, _MANAGER, _DIRECTOR),
    ),
)


def _parse_condition(data: dict[str, Any]) -> SkipCondition:
    value = data["value"]
    if isinstance(value, list):
        value = tuple(str(v) for v in value)
    elif isinstance(value, bool):
        value = "true" if value else "false"
    else:
        value = str(value)
    return SkipCondition(
        condition_type=SkipConditionType(data["type"]),
        operator=SkipOperator(data["operator"]),
        value=value,
    )


def _parse_level(data: dict[str, Any]) -> ApprovalLevelRule:
    return ApprovalLevelRule(
        level=int(data["level"]),
        name=str(data.get("name", f"Level {data['level']}")),
        required_role=str(data["required_role"]),
        sla_hours=int(data["sla_hours"]),
        can_skip=bool(data.get("can_skip", False)),
        skip_conditions=tuple(_parse_condition(c) for c in data.get("skip_conditions", ())),
    )


def parse_threshold(data: dict[str, Any], currency: str) -> ApprovalThreshold:
    """Build one band from its settings mapping."""
    try:
        max_amount = data.get("max_amount")
        return ApprovalThreshold(
            threshold_id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            min_amount=Decimal(str(data["min_amount"])),
            max_amount=Decimal(str(max_amount)) if max_amount is not None else None,
            levels=tuple(_parse_level(l) for l in data["levels"]),
            currency=str(data.get("currency", currency)),
        )
    except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
        raise ConfigurationError(f"Invalid approval threshold {data!r}: {exc}") from exc


@dataclass
class ApprovalConfig:
    """
    Configuration schema for MO approval routing.

        config = ApprovalConfig(thresholds=DEFAULT_THRESHOLDS)
    """

    thresholds: tuple[ApprovalThreshold, ...] = field(default=DEFAULT_THRESHOLDS)
    currency: str = "UGX"

    def __post_init__(self):
        for threshold in self.thresholds:
            if not threshold.levels:
                raise ConfigurationError(f"Threshold {threshold.threshold_id} has no levels")
            if threshold.max_amount is not None and threshold.max_amount <= threshold.min_amount:
                raise ConfigurationError(
                    f"Threshold {threshold.threshold_id}: max_amount must exceed min_amount"
                )
        logger.info(
            "approval_config_initialized",
            extra={
                "threshold_count": len(self.thresholds),
                "threshold_ids": [t.threshold_id for t in self.thresholds],
                "currency": self.currency,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        currency = str(data.get("currency", "UGX"))
        raw = data.get("thresholds")
        if raw is None:
            return cls(currency=currency)
        return cls(
            thresholds=tuple(parse_threshold(t, currency) for t in raw),
            currency=currency,
        )
