"""
Approval Workflow Service (``mfg_modules.approval.service``).

Responsibility
--------------
Raises multi-level approval requests for manufacturing orders, applies
approver actions, and sweeps overdue levels into escalation.  Routing
decisions (band selection, skip evaluation, chain progression) are made by
the pure ``mfg_engines.approval`` functions; this service persists their
results and drives the MO through ``ManufacturingOrderService``.

Architecture position
---------------------
**Modules layer**.  The MO status change caused by the final approval or a
rejection joins the approval request's unit of work, so both land together.

Invariants enforced
-------------------
* At most one open (pending or escalated) request per MO.
* Only the current level is actionable; the actor's role must equal its
  required role, unless the actor is its delegate or the action is
  ``delegate``.
* An escalated request stays actionable; the SLA sweep touches only
  pending levels, so re-running it changes nothing.
* ``total_levels`` counts non-skipped levels; ``expires_at`` is the SLA
  deadline of the last level.

Failure modes
-------------
* ``ApprovalRequestNotFoundError`` / ``ManufacturingOrderNotFoundError``.
* ``InvalidStateError`` for a non-draft MO, a duplicate open request, or an
  action on a closed request.
* ``NoApprovalThresholdError`` when no band covers the MO amount.
* ``UnauthorizedApproverError`` on role mismatch.

Audit relevance
---------------
Each chain level records who acted, when, and with what note.  SLA breaches
emit ``mo_approval_escalated`` at high severity.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from mfg_engines.approval import (
    apply_action,
    build_approval_chain,
    count_required_levels,
    escalate_if_overdue,
    first_pending_level,
    level_entry,
    select_threshold,
)
from mfg_kernel.db.base import bump_version
from mfg_kernel.db.unit_of_work import after_commit, unit_of_work
from mfg_kernel.domain.approval import (
    OPEN_REQUEST_STATUSES,
    REQUEST_TRANSITIONS,
    ApprovalAction,
    ApprovalContext,
    RequestStatus,
)
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.events import EventSink, LoggingEventSink, Severity, emit_event
from mfg_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    InvalidStateError,
    NoApprovalThresholdError,
    UnauthorizedApproverError,
    ValidationError,
)
from mfg_kernel.logging_config import LogContext, get_logger
from mfg_modules.approval.config import ApprovalConfig
from mfg_modules.approval.models import ApprovalRequest
from mfg_modules.approval.orm import ApprovalRequestModel
from mfg_modules.manufacturing.models import MOStatus
from mfg_modules.manufacturing.service import ManufacturingOrderService, coerce_id

logger = get_logger("modules.approval.service")

ENTITY = "ApprovalRequest"
SYSTEM_ACTOR = "system"
_OPEN_VALUES = tuple(s.value for s in (RequestStatus.PENDING, RequestStatus.ESCALATED))


class ApprovalWorkflowService:
    """Multi-level MO approval with SLA escalation."""

    def __init__(
        self,
        session: Session,
        manufacturing: ManufacturingOrderService,
        events: EventSink | None = None,
        clock: Clock | None = None,
        config: ApprovalConfig | None = None,
    ):
        self._session = session
        self._manufacturing = manufacturing
        self._events = events or LoggingEventSink()
        self._clock = clock or SystemClock()
        self._config = config or ApprovalConfig.with_defaults()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, request_id: UUID | str) -> ApprovalRequestModel:
        key = coerce_id(request_id)
        row = self._session.get(ApprovalRequestModel, key) if key else None
        if row is None:
            raise ApprovalRequestNotFoundError(request_id)
        return row

    def _open_request_for(self, mo_id: UUID) -> ApprovalRequestModel | None:
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.mo_id == mo_id)
            .where(ApprovalRequestModel.status.in_(_OPEN_VALUES))
        )
        return self._session.scalars(stmt).first()

    def _set_status(self, row: ApprovalRequestModel, status: RequestStatus) -> None:
        current = RequestStatus(row.status)
        if status == current:
            return
        if status not in REQUEST_TRANSITIONS[current]:
            raise InvalidStateError(ENTITY, row.id, row.status, status.value)
        row.status = status.value
        if status in (RequestStatus.APPROVED, RequestStatus.REJECTED):
            row.completed_at = self._clock.now()

    def _emit(
        self,
        event_type: str,
        row: ApprovalRequestModel,
        actor_id: str,
        severity: Severity = Severity.MEDIUM,
        *,
        entity_type: str = "manufacturing_order",
        **metadata,
    ) -> None:
        entity_id = row.mo_id if entity_type == "manufacturing_order" else row.id
        payload = {"mo_number": row.mo_number, "request_id": str(row.id), **metadata}
        occurred_at = self._clock.now()
        after_commit(self._session, lambda: emit_event(
            self._events,
            event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            occurred_at=occurred_at,
            severity=severity,
            metadata=payload,
        ))

    # ------------------------------------------------------------------
    # Request creation
    # ------------------------------------------------------------------

    def create_approval_request(
        self,
        mo_id: UUID | str,
        *,
        requested_by: str,
    ) -> ApprovalRequest:
        """Raise an approval request for a draft MO.

        The band is chosen by the MO's total cost.  When every level of the
        chain is skipped the request is approved immediately and the MO
        approved with it.
        """
        with LogContext.bind(entity_id=str(mo_id), actor_id=requested_by, operation="approval_create"):
            with unit_of_work(self._session, ENTITY, mo_id):
                order = self._manufacturing.get_order(mo_id)
                if order.status != MOStatus.DRAFT:
                    raise InvalidStateError(
                        "ManufacturingOrder", order.id, order.status.value,
                        "create_approval_request", (MOStatus.DRAFT.value,),
                    )
                existing = self._open_request_for(order.id)
                if existing is not None:
                    raise InvalidStateError(
                        ENTITY, existing.id, existing.status, "create_approval_request",
                    )

                amount = order.cost_summary.total_cost
                currency = order.cost_summary.currency
                threshold = select_threshold(self._config.thresholds, amount, currency)
                if threshold is None:
                    raise NoApprovalThresholdError(amount, currency)

                now = self._clock.now()
                chain = build_approval_chain(
                    threshold=threshold,
                    context=ApprovalContext(
                        priority=order.priority.value,
                        project_type=order.project_type,
                        is_repeat_order=order.is_repeat_order,
                    ),
                    requested_at=now,
                )
                first = first_pending_level(chain)
                row = ApprovalRequestModel(
                    id=uuid4(),
                    mo_id=order.id,
                    mo_number=order.mo_number,
                    threshold_id=threshold.threshold_id,
                    total_amount=amount,
                    currency=currency,
                    current_level=first if first is not None else chain[-1].level,
                    total_levels=count_required_levels(chain),
                    status=RequestStatus.PENDING.value,
                    requested_by=requested_by,
                    requested_at=now,
                    expires_at=chain[-1].sla_due_at,
                    created_at=now,
                    created_by=requested_by,
                    version=1,
                )
                row.set_chain(chain)
                self._session.add(row)

                if first is None:
                    self._set_status(row, RequestStatus.APPROVED)
                    self._manufacturing.mark_approved(order.id, actor_id=requested_by)

            logger.info(
                "approval_request_created",
                extra={
                    "mo_number": row.mo_number,
                    "threshold_id": row.threshold_id,
                    "total_levels": row.total_levels,
                    "auto_approved": first is None,
                },
            )
            self._emit(
                "mo_approval_initiated", row, requested_by,
                threshold_id=row.threshold_id,
                total_levels=row.total_levels,
                total_amount=str(row.total_amount),
            )
            return row.to_dto()

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def process_action(
        self,
        request_id: UUID | str,
        action: ApprovalAction,
        *,
        actor_id: str,
        actor_role: str,
        notes: str | None = None,
        delegate_to: str | None = None,
    ) -> ApprovalRequest:
        """Apply an approver's action to the request's current level."""
        if action == ApprovalAction.DELEGATE and not delegate_to:
            raise ValidationError("Delegation needs a delegate", field="delegate_to")

        with LogContext.bind(entity_id=str(request_id), actor_id=actor_id, operation="approval_action"):
            with unit_of_work(self._session, ENTITY, request_id):
                row = self._load(request_id)
                if RequestStatus(row.status) not in OPEN_REQUEST_STATUSES:
                    raise InvalidStateError(ENTITY, row.id, row.status, action.value, _OPEN_VALUES)

                chain = row.chain()
                entry = level_entry(chain, row.current_level)
                if entry is None:
                    raise InvalidStateError(ENTITY, row.id, row.status, action.value)
                is_delegate = entry.delegated_to is not None and entry.delegated_to == actor_id
                if (action != ApprovalAction.DELEGATE
                        and actor_role != entry.required_role
                        and not is_delegate):
                    raise UnauthorizedApproverError(row.id, actor_role, entry.required_role)

                try:
                    outcome = apply_action(
                        chain,
                        row.current_level,
                        action,
                        actor_id=actor_id,
                        acted_at=self._clock.now(),
                        notes=notes,
                        delegate_to=delegate_to,
                    )
                except ValueError as exc:
                    raise InvalidStateError(ENTITY, row.id, entry.status.value, action.value) from exc

                bump_version(row, actor_id)
                rejected_level = row.current_level
                row.set_chain(outcome.chain)
                row.current_level = outcome.current_level
                self._set_status(row, outcome.request_status)
                self._session.flush()

                if outcome.request_status == RequestStatus.APPROVED:
                    self._manufacturing.mark_approved(row.mo_id, actor_id=actor_id)
                elif outcome.request_status == RequestStatus.REJECTED:
                    self._manufacturing.revert_to_draft(row.mo_id, actor_id=actor_id, reason=notes)

            logger.info(
                "approval_action_processed",
                extra={
                    "mo_number": row.mo_number,
                    "action": action.value,
                    "request_status": row.status,
                    "current_level": row.current_level,
                },
            )
            if outcome.request_status == RequestStatus.REJECTED:
                self._emit(
                    "mo_approval_rejected", row, actor_id,
                    rejected_at_level=rejected_level, reason=notes,
                )
            elif action == ApprovalAction.ESCALATE:
                self._emit(
                    "mo_approval_escalated", row, actor_id, Severity.HIGH,
                    entity_type="approval_request", level=row.current_level,
                )
            return row.to_dto()

    # ------------------------------------------------------------------
    # SLA sweep
    # ------------------------------------------------------------------

    def check_and_escalate_overdue_approvals(self) -> int:
        """Escalate every pending current level whose SLA has passed.

        Each request is escalated in its own unit of work; a conflict on one
        request is logged and the sweep continues.  Returns the number of
        requests escalated.
        """
        now = self._clock.now()
        stmt = (
            select(ApprovalRequestModel.id)
            .where(ApprovalRequestModel.status == RequestStatus.PENDING.value)
            .order_by(ApprovalRequestModel.requested_at)
        )
        request_ids = list(self._session.scalars(stmt))
        escalated = 0

        for request_id in request_ids:
            try:
                if self._escalate_one(request_id, now):
                    escalated += 1
            except Exception:
                logger.warning(
                    "approval_escalation_failed",
                    extra={"request_id": str(request_id)},
                    exc_info=True,
                )

        logger.info(
            "approval_sla_sweep_completed",
            extra={"checked": len(request_ids), "escalated": escalated},
        )
        return escalated

    def _escalate_one(self, request_id: UUID, now: datetime) -> bool:
        with unit_of_work(self._session, ENTITY, request_id):
            row = self._load(request_id)
            if row.status != RequestStatus.PENDING.value:
                return False
            escalated_chain = escalate_if_overdue(row.chain(), row.current_level, now)
            if escalated_chain is None:
                return False
            due_at = level_entry(escalated_chain, row.current_level).sla_due_at
            bump_version(row, SYSTEM_ACTOR)
            row.set_chain(escalated_chain)
            self._set_status(row, RequestStatus.ESCALATED)

        self._emit(
            "mo_approval_escalated", row, SYSTEM_ACTOR, Severity.HIGH,
            entity_type="approval_request",
            mo_id=str(row.mo_id),
            level=row.current_level,
            sla_due_at=due_at,
        )
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_approval_request(self, request_id: UUID | str) -> ApprovalRequest:
        return self._load(request_id).to_dto()

    def get_pending_approvals_for_role(self, role: str) -> list[ApprovalRequest]:
        """Open requests whose current level requires ``role``, oldest first."""
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.status.in_(_OPEN_VALUES))
            .order_by(ApprovalRequestModel.requested_at)
        )
        result: list[ApprovalRequest] = []
        for row in self._session.scalars(stmt):
            request = row.to_dto()
            entry = request.current_entry
            if entry is not None and entry.required_role == role:
                result.append(request)
        return result

    def get_approval_request_for_mo(self, mo_id: UUID | str) -> ApprovalRequest | None:
        """Most recent request for the MO, or None."""
        key = coerce_id(mo_id)
        if key is None:
            return None
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.mo_id == key)
            .order_by(ApprovalRequestModel.requested_at.desc(), ApprovalRequestModel.created_at.desc())
        )
        row = self._session.scalars(stmt).first()
        return row.to_dto() if row is not None else None
