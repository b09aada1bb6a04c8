"""
Tests for the pure multi-level approval routing engine.

Tests cover:
- select_threshold: band boundaries, currency filter, uncovered amounts
- build_approval_chain: SLA deadlines, skip conditions
- apply_action: approve / reject / escalate / delegate postconditions
- escalate_if_overdue: SLA breach detection and re-run safety
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from mfg_engines.approval import (
    SLA_BREACH_NOTE,
    apply_action,
    build_approval_chain,
    count_required_levels,
    escalate_if_overdue,
    evaluate_skip_condition,
    first_pending_level,
    select_threshold,
)
from mfg_kernel.domain.approval import (
    ApprovalAction,
    ApprovalContext,
    LevelStatus,
    RequestStatus,
    SkipCondition,
    SkipConditionType,
    SkipOperator,
)
from mfg_modules.approval.config import DEFAULT_THRESHOLDS

REQUESTED_AT = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def tier(threshold_id: str):
    return next(t for t in DEFAULT_THRESHOLDS if t.threshold_id == threshold_id)


def chain_for(threshold_id: str, priority: str = "normal", **context):
    return build_approval_chain(
        threshold=tier(threshold_id),
        context=ApprovalContext(priority=priority, **context),
        requested_at=REQUESTED_AT,
    )


class TestSelectThreshold:
    """Amount band selection over [min, max)."""

    @pytest.mark.parametrize(
        "amount, expected",
        [
            ("0", "tier-1"),
            ("4999999.99", "tier-1"),
            ("5000000", "tier-2"),
            ("19999999", "tier-2"),
            ("20000000", "tier-3"),
            ("900000000", "tier-3"),
        ],
    )
    def test_band_boundaries(self, amount, expected):
        threshold = select_threshold(DEFAULT_THRESHOLDS, Decimal(amount))

        assert threshold is not None
        assert threshold.threshold_id == expected

    def test_negative_amount_uncovered(self):
        assert select_threshold(DEFAULT_THRESHOLDS, Decimal("-1")) is None

    def test_other_currency_uncovered(self):
        assert select_threshold(DEFAULT_THRESHOLDS, Decimal("100"), "USD") is None

    def test_bands_evaluated_by_min_amount(self):
        """Declaration order does not matter."""
        reversed_bands = tuple(reversed(DEFAULT_THRESHOLDS))

        assert select_threshold(reversed_bands, Decimal("10")).threshold_id == "tier-1"


class TestBuildApprovalChain:
    """Chain construction with SLA deadlines and skips."""

    def test_one_level_per_band_level(self):
        chain = chain_for("tier-3")

        assert [e.level for e in chain] == [1, 2, 3]
        assert [e.required_role for e in chain] == [
            "PRODUCTION_SUPERVISOR", "PRODUCTION_MANAGER", "OPERATIONS_DIRECTOR",
        ]
        assert all(e.status == LevelStatus.PENDING for e in chain)

    def test_sla_deadline_from_request_time(self):
        chain = chain_for("tier-2")

        assert chain[0].sla_due_at == REQUESTED_AT + timedelta(hours=24)
        assert chain[1].sla_due_at == REQUESTED_AT + timedelta(hours=48)

    def test_urgent_order_skips_supervisor_on_tier_one(self):
        chain = chain_for("tier-1", priority="urgent")

        assert chain[0].status == LevelStatus.SKIPPED
        assert first_pending_level(chain) is None
        assert count_required_levels(chain) == 0

    def test_skip_needs_can_skip(self):
        """tier-2 supervisor has no skip rule, so urgency changes nothing."""
        chain = chain_for("tier-2", priority="urgent")

        assert chain[0].status == LevelStatus.PENDING
        assert count_required_levels(chain) == 2


class TestSkipConditions:
    """Skip condition operators."""

    def test_in_operator(self):
        condition = SkipCondition(
            SkipConditionType.PROJECT_TYPE, SkipOperator.IN, ("sample", "repair"),
        )

        assert evaluate_skip_condition(condition, ApprovalContext("normal", project_type="repair"))
        assert not evaluate_skip_condition(condition, ApprovalContext("normal", project_type="hotel"))

    def test_neq_operator(self):
        condition = SkipCondition(SkipConditionType.PRIORITY, SkipOperator.NEQ, "urgent")

        assert evaluate_skip_condition(condition, ApprovalContext("low"))
        assert not evaluate_skip_condition(condition, ApprovalContext("urgent"))

    def test_repeat_order(self):
        condition = SkipCondition(SkipConditionType.REPEAT_ORDER, SkipOperator.EQ, "true")

        assert evaluate_skip_condition(condition, ApprovalContext("normal", is_repeat_order=True))
        assert not evaluate_skip_condition(condition, ApprovalContext("normal"))

    def test_missing_context_value_never_matches(self):
        condition = SkipCondition(SkipConditionType.PROJECT_TYPE, SkipOperator.NEQ, "hotel")

        assert not evaluate_skip_condition(condition, ApprovalContext("normal"))


class TestApplyAction:
    """Approver actions on the current level."""

    def setup_method(self):
        self.chain = chain_for("tier-2")
        self.acted_at = REQUESTED_AT + timedelta(hours=2)

    def test_approve_moves_to_next_level(self):
        outcome = apply_action(
            self.chain, 1, ApprovalAction.APPROVE, actor_id="sup-1", acted_at=self.acted_at,
        )

        assert outcome.request_status == RequestStatus.PENDING
        assert outcome.current_level == 2
        assert outcome.chain[0].status == LevelStatus.APPROVED
        assert outcome.chain[0].acted_by == "sup-1"
        assert outcome.chain[0].acted_at == self.acted_at

    def test_approving_last_level_approves_request(self):
        first = apply_action(
            self.chain, 1, ApprovalAction.APPROVE, actor_id="sup-1", acted_at=self.acted_at,
        )
        final = apply_action(
            first.chain, 2, ApprovalAction.APPROVE, actor_id="mgr-1", acted_at=self.acted_at,
        )

        assert final.request_status == RequestStatus.APPROVED
        assert final.current_level == 2
        assert all(e.status == LevelStatus.APPROVED for e in final.chain)

    def test_reject(self):
        outcome = apply_action(
            self.chain, 1, ApprovalAction.REJECT, actor_id="sup-1", acted_at=self.acted_at,
            notes="Too expensive",
        )

        assert outcome.request_status == RequestStatus.REJECTED
        assert outcome.chain[0].status == LevelStatus.REJECTED
        assert outcome.chain[0].notes == "Too expensive"
        assert outcome.chain[1].status == LevelStatus.PENDING

    def test_escalate_keeps_level(self):
        outcome = apply_action(
            self.chain, 1, ApprovalAction.ESCALATE, actor_id="sup-1", acted_at=self.acted_at,
        )

        assert outcome.request_status == RequestStatus.ESCALATED
        assert outcome.current_level == 1
        assert outcome.chain[0].status == LevelStatus.ESCALATED

    def test_escalated_level_can_still_be_approved(self):
        escalated = apply_action(
            self.chain, 1, ApprovalAction.ESCALATE, actor_id="sup-1", acted_at=self.acted_at,
        )
        outcome = apply_action(
            escalated.chain, 1, ApprovalAction.APPROVE, actor_id="sup-2", acted_at=self.acted_at,
        )

        assert outcome.request_status == RequestStatus.PENDING
        assert outcome.current_level == 2

    def test_delegate_records_delegate(self):
        outcome = apply_action(
            self.chain, 1, ApprovalAction.DELEGATE, actor_id="sup-1", acted_at=self.acted_at,
            delegate_to="sup-2", notes="On leave",
        )

        assert outcome.request_status == RequestStatus.PENDING
        assert outcome.chain[0].status == LevelStatus.PENDING
        assert outcome.chain[0].delegated_to == "sup-2"
        assert outcome.chain[0].notes == "Delegated by sup-1: On leave"

    def test_non_actionable_level_rejected(self):
        approved = apply_action(
            self.chain, 1, ApprovalAction.APPROVE, actor_id="sup-1", acted_at=self.acted_at,
        )

        with pytest.raises(ValueError, match="not actionable"):
            apply_action(
                approved.chain, 1, ApprovalAction.APPROVE, actor_id="sup-1", acted_at=self.acted_at,
            )


class TestEscalateIfOverdue:
    """SLA sweep over one chain."""

    def setup_method(self):
        self.chain = chain_for("tier-1")

    def test_within_sla(self):
        assert escalate_if_overdue(self.chain, 1, REQUESTED_AT + timedelta(hours=24)) is None

    def test_past_sla(self):
        escalated = escalate_if_overdue(self.chain, 1, REQUESTED_AT + timedelta(hours=25))

        assert escalated is not None
        assert escalated[0].status == LevelStatus.ESCALATED
        assert escalated[0].notes == SLA_BREACH_NOTE

    def test_rerun_is_noop(self):
        now = REQUESTED_AT + timedelta(hours=30)
        escalated = escalate_if_overdue(self.chain, 1, now)

        assert escalate_if_overdue(escalated, 1, now) is None
