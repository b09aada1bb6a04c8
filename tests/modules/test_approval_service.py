"""
Tests for ApprovalWorkflowService.

Tests cover:
- Band selection by MO total and chain construction
- Single and multi-level approval driving the MO to approved
- Skip conditions auto-approving urgent small orders
- Role checks, delegation and rejection back to draft
- SLA sweep escalation and its idempotence
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from mfg_kernel.domain.approval import (
    ApprovalAction,
    ApprovalLevelRule,
    ApprovalThreshold,
    LevelStatus,
    RequestStatus,
)
from mfg_kernel.events import Severity
from mfg_kernel.exceptions import (
    InvalidStateError,
    NoApprovalThresholdError,
    UnauthorizedApproverError,
    ValidationError,
)
from mfg_modules.approval.config import ApprovalConfig
from mfg_modules.approval.service import ApprovalWorkflowService
from mfg_modules.manufacturing.models import MOPriority, MOStatus
from tests.conftest import stocked_entry

SUPERVISOR = "PRODUCTION_SUPERVISOR"
MANAGER = "PRODUCTION_MANAGER"
DIRECTOR = "OPERATIONS_DIRECTOR"


@pytest.fixture
def request_for(create_order, services, test_actor_id):
    """Factory fixture: a draft order and its approval request."""

    def _request_for(unit_cost: str = "1000", **kwargs):
        order = create_order(bom=[stocked_entry("ITEM-OAK", "10", unit_cost)], **kwargs)
        request = services.approvals.create_approval_request(order.id, requested_by=test_actor_id)
        return order, request

    return _request_for


class TestCreateApprovalRequest:

    def test_small_order_single_level(self, request_for, deterministic_clock, events):
        order, request = request_for()

        assert request.threshold_id == "tier-1"
        assert request.status == RequestStatus.PENDING
        assert request.total_amount == Decimal("10000.00")
        assert request.total_levels == 1
        assert request.current_level == 1
        assert request.current_entry.required_role == SUPERVISOR
        assert request.expires_at == deterministic_clock.now() + timedelta(hours=24)
        initiated = events.of_type("mo_approval_initiated")
        assert len(initiated) == 1
        assert initiated[0].entity_id == str(order.id)

    def test_band_by_amount(self, request_for):
        _, medium = request_for(unit_cost="600000")
        _, large = request_for(unit_cost="2500000")

        assert medium.threshold_id == "tier-2"
        assert [e.required_role for e in medium.approval_chain] == [SUPERVISOR, MANAGER]
        assert large.threshold_id == "tier-3"
        assert large.total_levels == 3
        assert large.approval_chain[-1].required_role == DIRECTOR

    def test_urgent_small_order_auto_approved(self, request_for, services):
        order, request = request_for(priority=MOPriority.URGENT)

        assert request.status == RequestStatus.APPROVED
        assert request.total_levels == 0
        assert request.approval_chain[0].status == LevelStatus.SKIPPED
        assert services.manufacturing.get_order(order.id).status == MOStatus.APPROVED

    def test_one_open_request_per_order(self, request_for, services, test_actor_id):
        order, _ = request_for()

        with pytest.raises(InvalidStateError):
            services.approvals.create_approval_request(order.id, requested_by=test_actor_id)

    def test_requires_draft_order(self, approved_order, services, test_actor_id):
        order = approved_order()

        with pytest.raises(InvalidStateError):
            services.approvals.create_approval_request(order.id, requested_by=test_actor_id)

    def test_no_covering_band(
        self, create_order, session, services, events, deterministic_clock, test_actor_id,
    ):
        narrow = ApprovalWorkflowService(
            session, services.manufacturing, events, deterministic_clock,
            ApprovalConfig(thresholds=(
                ApprovalThreshold(
                    threshold_id="petty",
                    name="Petty",
                    min_amount=Decimal("0"),
                    max_amount=Decimal("1000"),
                    levels=(ApprovalLevelRule(1, "Supervisor", SUPERVISOR, 24),),
                ),
            )),
        )
        order = create_order()

        with pytest.raises(NoApprovalThresholdError):
            narrow.create_approval_request(order.id, requested_by=test_actor_id)

        assert narrow.get_approval_request_for_mo(order.id) is None


class TestProcessAction:

    def test_single_level_approval_approves_order(self, request_for, services, events):
        order, request = request_for()

        result = services.approvals.process_action(
            request.id, ApprovalAction.APPROVE, actor_id="user-sup", actor_role=SUPERVISOR,
        )

        assert result.status == RequestStatus.APPROVED
        assert result.completed_at is not None
        assert result.approval_chain[0].acted_by == "user-sup"
        assert services.manufacturing.get_order(order.id).status == MOStatus.APPROVED
        approved = events.of_type("manufacturing_order_approved")
        assert approved[0].metadata["via"] == "approval_chain"

    def test_multi_level_progression(self, request_for, services):
        order, request = request_for(unit_cost="600000")

        after_first = services.approvals.process_action(
            request.id, ApprovalAction.APPROVE, actor_id="user-sup", actor_role=SUPERVISOR,
        )
        assert after_first.status == RequestStatus.PENDING
        assert after_first.current_level == 2
        assert services.manufacturing.get_order(order.id).status == MOStatus.DRAFT
        assert [r.id for r in services.approvals.get_pending_approvals_for_role(MANAGER)] == [request.id]
        assert services.approvals.get_pending_approvals_for_role(SUPERVISOR) == []

        final = services.approvals.process_action(
            request.id, ApprovalAction.APPROVE, actor_id="user-mgr", actor_role=MANAGER,
        )
        assert final.status == RequestStatus.APPROVED
        assert final.approved_levels == 2
        assert services.manufacturing.get_order(order.id).status == MOStatus.APPROVED

    def test_wrong_role_rejected(self, request_for, services):
        _, request = request_for(unit_cost="600000")

        with pytest.raises(UnauthorizedApproverError) as exc_info:
            services.approvals.process_action(
                request.id, ApprovalAction.APPROVE, actor_id="user-mgr", actor_role=MANAGER,
            )

        assert exc_info.value.required_role == SUPERVISOR
        unchanged = services.approvals.get_approval_request(request.id)
        assert unchanged.current_level == 1
        assert unchanged.version == 1

    def test_delegate_may_act(self, request_for, services):
        order, request = request_for()
        services.approvals.process_action(
            request.id, ApprovalAction.DELEGATE,
            actor_id="user-sup", actor_role=SUPERVISOR, delegate_to="user-deputy",
        )

        result = services.approvals.process_action(
            request.id, ApprovalAction.APPROVE, actor_id="user-deputy", actor_role="PLANNER",
        )

        assert result.status == RequestStatus.APPROVED
        assert services.manufacturing.get_order(order.id).status == MOStatus.APPROVED

    def test_delegate_needs_target(self, request_for, services):
        _, request = request_for()

        with pytest.raises(ValidationError):
            services.approvals.process_action(
                request.id, ApprovalAction.DELEGATE, actor_id="user-sup", actor_role=SUPERVISOR,
            )

    def test_rejection_keeps_order_draft(
        self, request_for, services, test_actor_id, events, deterministic_clock,
    ):
        order, request = request_for()

        result = services.approvals.process_action(
            request.id, ApprovalAction.REJECT,
            actor_id="user-sup", actor_role=SUPERVISOR, notes="Wrong timber",
        )

        assert result.status == RequestStatus.REJECTED
        assert services.manufacturing.get_order(order.id).status == MOStatus.DRAFT
        rejected = events.of_type("mo_approval_rejected")
        assert rejected[0].metadata["reason"] == "Wrong timber"

        deterministic_clock.advance(hours=1)
        again = services.approvals.create_approval_request(order.id, requested_by=test_actor_id)
        assert again.status == RequestStatus.PENDING
        assert services.approvals.get_approval_request_for_mo(order.id).id == again.id

    def test_closed_request_not_actionable(self, request_for, services):
        _, request = request_for()
        services.approvals.process_action(
            request.id, ApprovalAction.APPROVE, actor_id="user-sup", actor_role=SUPERVISOR,
        )

        with pytest.raises(InvalidStateError):
            services.approvals.process_action(
                request.id, ApprovalAction.REJECT, actor_id="user-sup", actor_role=SUPERVISOR,
            )

    def test_manual_escalation(self, request_for, services, events):
        _, request = request_for()

        result = services.approvals.process_action(
            request.id, ApprovalAction.ESCALATE, actor_id="user-sup", actor_role=SUPERVISOR,
        )

        assert result.status == RequestStatus.ESCALATED
        escalated = events.of_type("mo_approval_escalated")
        assert len(escalated) == 1
        assert escalated[0].entity_type == "approval_request"


class TestSlaSweep:

    def test_overdue_level_escalated_once(self, request_for, services, deterministic_clock, events):
        _, request = request_for()
        deterministic_clock.advance(hours=25)

        assert services.approvals.check_and_escalate_overdue_approvals() == 1

        escalated = services.approvals.get_approval_request(request.id)
        assert escalated.status == RequestStatus.ESCALATED
        assert escalated.current_entry.status == LevelStatus.ESCALATED
        sla_events = events.of_type("mo_approval_escalated")
        assert len(sla_events) == 1
        assert sla_events[0].severity == Severity.HIGH
        assert sla_events[0].actor_id == "system"

        assert services.approvals.check_and_escalate_overdue_approvals() == 0
        assert len(events.of_type("mo_approval_escalated")) == 1

    def test_within_sla_untouched(self, request_for, services, deterministic_clock):
        _, request = request_for()
        deterministic_clock.advance(hours=23)

        assert services.approvals.check_and_escalate_overdue_approvals() == 0
        assert services.approvals.get_approval_request(request.id).status == RequestStatus.PENDING

    def test_escalated_request_still_approvable(self, request_for, services, deterministic_clock):
        order, request = request_for()
        deterministic_clock.advance(hours=30)
        services.approvals.check_and_escalate_overdue_approvals()

        result = services.approvals.process_action(
            request.id, ApprovalAction.APPROVE, actor_id="user-sup", actor_role=SUPERVISOR,
        )

        assert result.status == RequestStatus.APPROVED
        assert services.manufacturing.get_order(order.id).status == MOStatus.APPROVED
