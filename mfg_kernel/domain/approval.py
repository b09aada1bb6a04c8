"""
Approval domain types (``mfg_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the multi-level, amount-banded approval of
manufacturing orders: threshold bands, per-level rules with skip conditions,
chain levels and the request status machine.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``REQUEST_TRANSITIONS`` defines the only valid request status changes.
  Terminal statuses have no outgoing edges.
* A threshold band covers ``[min_amount, max_amount)``; ``max_amount=None``
  means unbounded.
* Chain levels are ordered by ``level`` ascending.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.PENDING,
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.ESCALATED,
    }),
    RequestStatus.ESCALATED: frozenset({
        RequestStatus.PENDING,
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    }),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
}

OPEN_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PENDING,
    RequestStatus.ESCALATED,
})


class LevelStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    ESCALATED = "escalated"


ACTIONABLE_LEVEL_STATUSES: frozenset[LevelStatus] = frozenset({
    LevelStatus.PENDING,
    LevelStatus.ESCALATED,
})


class ApprovalAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    ESCALATE = "escalate"
    DELEGATE = "delegate"


class SkipConditionType(str, Enum):
    PRIORITY = "priority"
    PROJECT_TYPE = "project_type"
    REPEAT_ORDER = "repeat_order"


class SkipOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    IN = "in"


@dataclass(frozen=True)
class SkipCondition:
    """``value`` is a single string for eq/neq and a tuple for ``in``."""
    condition_type: SkipConditionType
    operator: SkipOperator
    value: str | tuple[str, ...]


@dataclass(frozen=True)
class ApprovalLevelRule:
    level: int
    name: str
    required_role: str
    sla_hours: int
    can_skip: bool = False
    skip_conditions: tuple[SkipCondition, ...] = ()


@dataclass(frozen=True)
class ApprovalThreshold:
    threshold_id: str
    name: str
    min_amount: Decimal
    max_amount: Decimal | None
    levels: tuple[ApprovalLevelRule, ...]
    currency: str = "UGX"

    def covers(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount < self.max_amount


@dataclass(frozen=True)
class ApprovalContext:
    """Facts about the MO that skip conditions are evaluated against."""
    priority: str
    project_type: str | None = None
    is_repeat_order: bool = False


@dataclass(frozen=True)
class ChainLevel:
    level: int
    name: str
    required_role: str
    status: LevelStatus
    sla_hours: int
    sla_due_at: datetime
    acted_by: str | None = None
    acted_at: datetime | None = None
    notes: str | None = None
    delegated_to: str | None = None

    def with_status(self, status: LevelStatus, **changes) -> ChainLevel:
        return replace(self, status=status, **changes)
