"""
Procurement Workflows.

State machines for purchase orders and procurement requirements.
"""

from mfg_kernel.domain.workflow import Guard, Transition, Workflow
from mfg_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_LINE_ITEMS = Guard(
    name="has_line_items",
    description="Purchase order has at least one line item",
)

ALL_LINES_RECEIVED = Guard(
    name="all_lines_received",
    description="Every PO line is fully received",
)

SUPPLIER_COMPATIBLE = Guard(
    name="supplier_compatible",
    description="Requirement supplier is unset or equals the PO supplier",
)

logger.info(
    "procurement_workflow_guards_defined",
    extra={
        "guards": [
            HAS_LINE_ITEMS.name,
            ALL_LINES_RECEIVED.name,
            SUPPLIER_COMPATIBLE.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Purchase order lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "pending-approval",
        "approved",
        "sent",
        "partially-received",
        "received",
        "closed",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "pending-approval", action="submit", guard=HAS_LINE_ITEMS),
        Transition("pending-approval", "approved", action="approve"),
        Transition("pending-approval", "draft", action="reject"),
        Transition("approved", "sent", action="send"),
        Transition("sent", "partially-received", action="receive"),
        Transition("sent", "received", action="receive", guard=ALL_LINES_RECEIVED),
        Transition("partially-received", "partially-received", action="receive"),
        Transition("partially-received", "received", action="receive", guard=ALL_LINES_RECEIVED),
        Transition("received", "closed", action="close"),
        Transition("partially-received", "closed", action="close"),
        Transition("draft", "cancelled", action="cancel"),
        Transition("pending-approval", "cancelled", action="cancel"),
        Transition("approved", "cancelled", action="cancel"),
        Transition("sent", "cancelled", action="cancel"),
        Transition("partially-received", "cancelled", action="cancel"),
        Transition("received", "cancelled", action="cancel"),
    ),
    terminal_states=("closed", "cancelled"),
)

logger.info(
    "procurement_po_workflow_registered",
    extra={
        "workflow_name": PURCHASE_ORDER_WORKFLOW.name,
        "state_count": len(PURCHASE_ORDER_WORKFLOW.states),
        "transition_count": len(PURCHASE_ORDER_WORKFLOW.transitions),
        "initial_state": PURCHASE_ORDER_WORKFLOW.initial_state,
    },
)


# -----------------------------------------------------------------------------
# Procurement Requirement Workflow
# -----------------------------------------------------------------------------

REQUIREMENT_WORKFLOW = Workflow(
    name="procurement_requirement",
    description="Procurement requirement lifecycle (forward-only except cancel)",
    initial_state="pending",
    states=(
        "pending",
        "added-to-po",
        "ordered",
        "received",
        "cancelled",
    ),
    transitions=(
        Transition("pending", "added-to-po", action="add_to_po", guard=SUPPLIER_COMPATIBLE),
        Transition("added-to-po", "ordered", action="mark_ordered"),
        Transition("added-to-po", "received", action="mark_received"),
        Transition("ordered", "received", action="mark_received"),
        Transition("pending", "cancelled", action="cancel"),
        Transition("added-to-po", "cancelled", action="cancel"),
        Transition("ordered", "cancelled", action="cancel"),
    ),
    terminal_states=("received", "cancelled"),
)

logger.info(
    "procurement_requirement_workflow_registered",
    extra={
        "workflow_name": REQUIREMENT_WORKFLOW.name,
        "state_count": len(REQUIREMENT_WORKFLOW.states),
        "transition_count": len(REQUIREMENT_WORKFLOW.transitions),
        "initial_state": REQUIREMENT_WORKFLOW.initial_state,
    },
)
