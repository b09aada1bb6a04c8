"""
Manufacturing Order Workflows.

State machine for the MO status lifecycle.  The production stage is a
separate linear sub-state (``models.STAGE_SEQUENCE``) that only moves while
the order is in progress; reaching the terminal stage is the single point
where the stage drives a status transition (``complete``).
"""

from mfg_kernel.domain.workflow import Guard, Transition, Workflow
from mfg_kernel.logging_config import get_logger

logger = get_logger("modules.manufacturing.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

MATERIALS_RESERVED = Guard(
    name="materials_reserved",
    description="Every stocked BOM entry holds an active reservation",
)

CHAIN_APPROVED = Guard(
    name="chain_approved",
    description="Every non-skipped approval level has approved",
)

SHORTAGES_ACCEPTED = Guard(
    name="shortages_accepted",
    description="Caller accepts approval with materials still short",
)

TERMINAL_STAGE_REACHED = Guard(
    name="terminal_stage_reached",
    description="Production stage advanced to ready",
)

HOLD_FROM_APPROVED_ENABLED = Guard(
    name="hold_from_approved_enabled",
    description="Configuration allows holding an order before production starts",
)


# -----------------------------------------------------------------------------
# Manufacturing Order Workflow
# -----------------------------------------------------------------------------

MANUFACTURING_ORDER_WORKFLOW = Workflow(
    name="manufacturing_order",
    description="Manufacturing order lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "approved",
        "in-progress",
        "on-hold",
        "completed",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "approved", action="approve", guard=MATERIALS_RESERVED),
        Transition("draft", "approved", action="approve_chain", guard=CHAIN_APPROVED),
        Transition("draft", "approved", action="approve_override", guard=SHORTAGES_ACCEPTED),
        Transition("approved", "draft", action="revert_to_draft"),
        Transition("approved", "in-progress", action="start_production"),
        Transition("in-progress", "completed", action="complete", guard=TERMINAL_STAGE_REACHED),
        Transition("in-progress", "on-hold", action="hold"),
        Transition("approved", "on-hold", action="hold", guard=HOLD_FROM_APPROVED_ENABLED),
        Transition("on-hold", "in-progress", action="resume"),
        Transition("on-hold", "approved", action="resume"),
        Transition("draft", "cancelled", action="cancel"),
        Transition("approved", "cancelled", action="cancel"),
        Transition("in-progress", "cancelled", action="cancel"),
        Transition("on-hold", "cancelled", action="cancel"),
    ),
    terminal_states=("completed", "cancelled"),
)

logger.info(
    "manufacturing_order_workflow_registered",
    extra={
        "workflow_name": MANUFACTURING_ORDER_WORKFLOW.name,
        "state_count": len(MANUFACTURING_ORDER_WORKFLOW.states),
        "transition_count": len(MANUFACTURING_ORDER_WORKFLOW.transitions),
        "initial_state": MANUFACTURING_ORDER_WORKFLOW.initial_state,
    },
)
