"""
Tests for workflow value objects and the declared lifecycles.

Covers:
- Workflow construction checks (unknown states, terminal outgoing edges)
- find_transition / sources_for lookups
- Manufacturing order, purchase order and requirement state machines
- Approval request status transitions
"""

import pytest

from mfg_kernel.domain.approval import OPEN_REQUEST_STATUSES, REQUEST_TRANSITIONS, RequestStatus
from mfg_kernel.domain.workflow import Transition, Workflow
from mfg_modules.manufacturing.workflows import MANUFACTURING_ORDER_WORKFLOW
from mfg_modules.procurement.workflows import PURCHASE_ORDER_WORKFLOW, REQUIREMENT_WORKFLOW


class TestWorkflowValidation:
    """Workflow definitions reject inconsistent graphs."""

    def test_initial_state_must_exist(self):
        with pytest.raises(ValueError, match="initial state"):
            Workflow(
                name="w", description="", initial_state="x",
                states=("a",), transitions=(),
            )

    def test_transition_to_unknown_state(self):
        with pytest.raises(ValueError, match="unknown state"):
            Workflow(
                name="w", description="", initial_state="a",
                states=("a",), transitions=(Transition("a", "b", action="go"),),
            )

    def test_terminal_state_cannot_leave(self):
        with pytest.raises(ValueError, match="terminal state"):
            Workflow(
                name="w", description="", initial_state="a",
                states=("a", "b"),
                transitions=(Transition("a", "b", action="go"), Transition("b", "a", action="back")),
                terminal_states=("b",),
            )


class TestManufacturingOrderWorkflow:
    """MO status machine."""

    def test_approve_only_from_draft(self):
        assert MANUFACTURING_ORDER_WORKFLOW.sources_for("approve") == ("draft",)

    def test_cancel_from_every_open_status(self):
        assert set(MANUFACTURING_ORDER_WORKFLOW.sources_for("cancel")) == {
            "draft", "approved", "in-progress", "on-hold",
        }

    def test_completed_and_cancelled_are_terminal(self):
        assert MANUFACTURING_ORDER_WORKFLOW.is_terminal("completed")
        assert MANUFACTURING_ORDER_WORKFLOW.is_terminal("cancelled")
        assert MANUFACTURING_ORDER_WORKFLOW.find_transition("completed", "cancel") is None

    def test_complete_needs_in_progress(self):
        transition = MANUFACTURING_ORDER_WORKFLOW.find_transition("in-progress", "complete")

        assert transition is not None
        assert transition.to_state == "completed"
        assert transition.guard.name == "terminal_stage_reached"

    def test_resume_targets(self):
        targets = {
            t.to_state for t in MANUFACTURING_ORDER_WORKFLOW.transitions if t.action == "resume"
        }
        assert targets == {"in-progress", "approved"}


class TestPurchaseOrderWorkflow:
    """PO status machine."""

    def test_happy_path(self):
        path = [
            ("draft", "submit", "pending-approval"),
            ("pending-approval", "approve", "approved"),
            ("approved", "send", "sent"),
            ("received", "close", "closed"),
        ]
        for source, action, target in path:
            assert PURCHASE_ORDER_WORKFLOW.find_transition(source, action).to_state == target

    def test_reject_returns_to_draft(self):
        assert PURCHASE_ORDER_WORKFLOW.find_transition("pending-approval", "reject").to_state == "draft"

    def test_cannot_cancel_closed(self):
        assert "closed" not in PURCHASE_ORDER_WORKFLOW.sources_for("cancel")
        assert PURCHASE_ORDER_WORKFLOW.is_terminal("closed")


class TestRequirementWorkflow:
    """Requirement lifecycle is forward-only except cancel."""

    def test_no_backward_edges(self):
        order = ["pending", "added-to-po", "ordered", "received"]
        for t in REQUIREMENT_WORKFLOW.transitions:
            if t.to_state == "cancelled":
                continue
            assert order.index(t.to_state) > order.index(t.from_state)

    def test_received_cannot_be_cancelled(self):
        assert REQUIREMENT_WORKFLOW.find_transition("received", "cancel") is None


class TestApprovalRequestTransitions:
    """Request status changes allowed by the approval service."""

    def test_every_status_has_an_entry(self):
        assert set(REQUEST_TRANSITIONS) == set(RequestStatus)

    def test_every_status_reachable_from_pending(self):
        reached = {RequestStatus.PENDING}
        frontier = [RequestStatus.PENDING]
        while frontier:
            for target in REQUEST_TRANSITIONS[frontier.pop()]:
                if target not in reached:
                    reached.add(target)
                    frontier.append(target)

        assert reached == set(RequestStatus)

    def test_decided_requests_are_final(self):
        closed = set(RequestStatus) - OPEN_REQUEST_STATUSES

        assert closed == {RequestStatus.APPROVED, RequestStatus.REJECTED}
        for status in closed:
            assert REQUEST_TRANSITIONS[status] == frozenset()
