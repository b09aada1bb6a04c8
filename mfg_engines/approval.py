"""
mfg_engines.approval -- Pure multi-level approval routing.

Responsibility:
    Select the amount band for an order, build its approval chain with SLA
    deadlines and pre-skipped levels, and compute the chain / request state
    that results from an approver action or an SLA sweep.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Imports only ``mfg_kernel.domain.approval`` types.  Time is passed in.

Invariants enforced:
    - Bands are evaluated in ascending ``min_amount`` order; first band
      whose ``[min, max)`` contains the amount wins.
    - Exactly one level is actionable at a time: the ``current_level``.
    - The request is approved only when no non-skipped level remains
      pending after an approve.
    - Escalating an already escalated level is a no-op, so the SLA sweep
      may be re-run safely.

Failure modes:
    - ``select_threshold`` returns None when no band covers the amount;
      the service translates that into NoApprovalThresholdError.
    - ``apply_action`` raises ValueError when the current level is not
      actionable (caller bug: the service checks first).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from mfg_engines.tracer import traced_engine
from mfg_kernel.domain.approval import (
    ACTIONABLE_LEVEL_STATUSES,
    ApprovalAction,
    ApprovalContext,
    ApprovalLevelRule,
    ApprovalThreshold,
    ChainLevel,
    LevelStatus,
    RequestStatus,
    SkipCondition,
    SkipConditionType,
    SkipOperator,
)
from mfg_kernel.logging_config import get_logger

logger = get_logger("engines.approval")

SLA_BREACH_NOTE = "Auto-escalated due to SLA breach"


@dataclass(frozen=True)
class ChainOutcome:
    """Result of applying an action to a chain."""
    chain: tuple[ChainLevel, ...]
    current_level: int
    request_status: RequestStatus


def select_threshold(
    thresholds: Sequence[ApprovalThreshold],
    amount: Decimal,
    currency: str | None = None,
) -> ApprovalThreshold | None:
    """First band (by ascending min_amount) covering ``amount``."""
    for threshold in sorted(thresholds, key=lambda t: t.min_amount):
        if currency is not None and threshold.currency != currency:
            continue
        if threshold.covers(amount):
            return threshold
    return None


def _context_value(condition_type: SkipConditionType, context: ApprovalContext) -> str | None:
    match condition_type:
        case SkipConditionType.PRIORITY:
            return context.priority
        case SkipConditionType.PROJECT_TYPE:
            return context.project_type
        case SkipConditionType.REPEAT_ORDER:
            return "true" if context.is_repeat_order else "false"
    return None


def evaluate_skip_condition(condition: SkipCondition, context: ApprovalContext) -> bool:
    actual = _context_value(condition.condition_type, context)
    if actual is None:
        return False
    expected = condition.value
    match condition.operator:
        case SkipOperator.EQ:
            return actual == expected
        case SkipOperator.NEQ:
            return actual != expected
        case SkipOperator.IN:
            values = (expected,) if isinstance(expected, str) else tuple(expected)
            return actual in values
    return False


def should_skip_level(rule: ApprovalLevelRule, context: ApprovalContext) -> bool:
    """A level is skipped when it is skippable and any condition matches."""
    if not rule.can_skip:
        return False
    return any(evaluate_skip_condition(c, context) for c in rule.skip_conditions)


@traced_engine("approval_chain", "1.0", fingerprint_fields=("threshold", "context"))
def build_approval_chain(
    *,
    threshold: ApprovalThreshold,
    context: ApprovalContext,
    requested_at: datetime,
) -> tuple[ChainLevel, ...]:
    """One chain level per band level, each with ``sla_due_at = requested_at + sla``."""
    chain: list[ChainLevel] = []
    for rule in sorted(threshold.levels, key=lambda r: r.level):
        skipped = should_skip_level(rule, context)
        chain.append(
            ChainLevel(
                level=rule.level,
                name=rule.name,
                required_role=rule.required_role,
                status=LevelStatus.SKIPPED if skipped else LevelStatus.PENDING,
                sla_hours=rule.sla_hours,
                sla_due_at=requested_at + timedelta(hours=rule.sla_hours),
            )
        )
    return tuple(chain)


def first_pending_level(chain: Sequence[ChainLevel], after: int = 0) -> int | None:
    """Lowest pending level strictly above ``after``."""
    for entry in chain:
        if entry.level > after and entry.status == LevelStatus.PENDING:
            return entry.level
    return None


def count_required_levels(chain: Sequence[ChainLevel]) -> int:
    return sum(1 for entry in chain if entry.status != LevelStatus.SKIPPED)


def level_entry(chain: Sequence[ChainLevel], level: int) -> ChainLevel | None:
    for entry in chain:
        if entry.level == level:
            return entry
    return None


def _replace_level(
    chain: Sequence[ChainLevel], level: int, new_entry: ChainLevel,
) -> tuple[ChainLevel, ...]:
    return tuple(new_entry if e.level == level else e for e in chain)


def apply_action(
    chain: Sequence[ChainLevel],
    current_level: int,
    action: ApprovalAction,
    *,
    actor_id: str,
    acted_at: datetime,
    notes: str | None = None,
    delegate_to: str | None = None,
) -> ChainOutcome:
    """Apply an approver's action to the current level.

    Postconditions:
        approve  -> level approved; next pending level becomes current, or
                    the request is approved when none remain.
        reject   -> level and request rejected.
        escalate -> level and request escalated, current level unchanged.
        delegate -> level keeps its status and records the delegate.
    """
    entry = level_entry(chain, current_level)
    if entry is None or entry.status not in ACTIONABLE_LEVEL_STATUSES:
        raise ValueError(f"Level {current_level} is not actionable")

    match action:
        case ApprovalAction.APPROVE:
            updated = _replace_level(chain, current_level, entry.with_status(
                LevelStatus.APPROVED, acted_by=actor_id, acted_at=acted_at, notes=notes,
            ))
            next_level = first_pending_level(updated, after=current_level)
            if next_level is None:
                return ChainOutcome(updated, current_level, RequestStatus.APPROVED)
            return ChainOutcome(updated, next_level, RequestStatus.PENDING)
        case ApprovalAction.REJECT:
            updated = _replace_level(chain, current_level, entry.with_status(
                LevelStatus.REJECTED, acted_by=actor_id, acted_at=acted_at, notes=notes,
            ))
            return ChainOutcome(updated, current_level, RequestStatus.REJECTED)
        case ApprovalAction.ESCALATE:
            updated = _replace_level(chain, current_level, entry.with_status(
                LevelStatus.ESCALATED,
                acted_by=actor_id,
                acted_at=acted_at,
                notes=notes,
                delegated_to=delegate_to or entry.delegated_to,
            ))
            return ChainOutcome(updated, current_level, RequestStatus.ESCALATED)
        case ApprovalAction.DELEGATE:
            delegated_note = f"Delegated by {actor_id}: {notes or ''}".rstrip()
            updated = _replace_level(chain, current_level, entry.with_status(
                entry.status, notes=delegated_note, delegated_to=delegate_to,
            ))
            status = (
                RequestStatus.ESCALATED
                if entry.status == LevelStatus.ESCALATED
                else RequestStatus.PENDING
            )
            return ChainOutcome(updated, current_level, status)
    raise ValueError(f"Unknown approval action: {action}")


def escalate_if_overdue(
    chain: Sequence[ChainLevel],
    current_level: int,
    now: datetime,
) -> tuple[ChainLevel, ...] | None:
    """Escalated chain when the current level is pending past its SLA, else None."""
    entry = level_entry(chain, current_level)
    if entry is None or entry.status != LevelStatus.PENDING:
        return None
    if entry.sla_due_at >= now:
        return None
    logger.info(
        "approval_level_sla_breached",
        extra={"level": current_level, "sla_due_at": entry.sla_due_at},
    )
    return _replace_level(chain, current_level, entry.with_status(
        LevelStatus.ESCALATED, notes=SLA_BREACH_NOTE,
    ))
