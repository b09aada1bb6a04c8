"""
Purchase Order Service (``mfg_modules.procurement.service``).

Responsibility
--------------
Owns purchase order status transitions: creation and edits (re-deriving
landed cost allocation and totals on every change), single-step approval,
sending, partial / full goods receipt, closing and cancellation.

Architecture position
---------------------
**Modules layer**.  Calls the pure landed cost engine
(``mfg_engines.landed_cost``) and the injected ``InventoryAdapter`` on
receipt.  Linked procurement requirements are advanced through the
optional ``RequirementService`` collaborator after the PO change commits.

Invariants enforced
-------------------
* ``totals`` are only ever written from a fresh allocator run over the
  current lines and landed costs.
* Lines and landed costs are editable only in ``draft`` and
  ``pending-approval``.
* ``quantity_received`` per line never decreases and never exceeds the
  ordered quantity (plus the configured over-receipt tolerance).
* Status after a receipt is ``received`` iff every line is fully received.
* A linked requirement stays on exactly one line of its PO; replacing
  lines re-points its ``po_line_item_id``.

Failure modes
-------------
* ``PurchaseOrderNotFoundError`` for unknown ids.
* ``InvalidStateError`` when the status disallows the action.
* ``ValidationError`` for empty line items, non-positive quantities,
  unknown receipt lines, over-receipt, missing warehouse, and line
  replacements that drop or duplicate a linked requirement.
* Inventory and requirement side calls are best-effort: failures are
  logged and never undo the PO transition.

Audit relevance
---------------
Approvals and goods receipts are append-only on the PO; every transition
emits a business event.

Usage::

    service = PurchaseOrderService(session, inventory, events=sink, clock=clock)
    po = service.create_purchase_order(
        subsidiary="finishes", supplier_name="Acme Timber",
        line_items=[POLineInput("Oak board", Decimal("10"), Decimal("25000"))],
        actor_id="u-1",
    )
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from mfg_engines.landed_cost import CostLine, allocate_landed_costs
from mfg_kernel.db.base import bump_version
from mfg_kernel.db.types import ZERO
from mfg_kernel.db.unit_of_work import after_commit, unit_of_work
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.events import EventSink, LoggingEventSink, Severity, emit_event
from mfg_kernel.exceptions import (
    InvalidStateError,
    PurchaseOrderNotFoundError,
    ValidationError,
)
from mfg_kernel.logging_config import LogContext, get_logger
from mfg_kernel.numbering import next_document_number
from mfg_kernel.ports import InventoryAdapter
from mfg_modules.procurement.config import ProcurementConfig
from mfg_modules.procurement.models import (
    EDITABLE_PO_STATUSES,
    GoodsReceiptInput,
    LandedCosts,
    POApprovalStatus,
    POLineInput,
    POStatus,
    PurchaseOrder,
    line_total,
)
from mfg_modules.procurement.orm import (
    GoodsReceiptModel,
    POApprovalModel,
    POLineItemModel,
    PurchaseOrderModel,
    ProcurementRequirementModel,
)
from mfg_modules.procurement.workflows import PURCHASE_ORDER_WORKFLOW

if TYPE_CHECKING:
    from mfg_modules.procurement.requirements import RequirementService

logger = get_logger("modules.procurement.service")

ENTITY = "PurchaseOrder"
HUNDRED = Decimal("100")


def _coerce_id(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class PurchaseOrderService:
    """
    Lifecycle manager for purchase orders.

    Each public method is its own unit of work unless called from inside
    another service operation on the same session (e.g. consolidation),
    in which case it joins that transaction.
    """

    def __init__(
        self,
        session: Session,
        inventory: InventoryAdapter,
        events: EventSink | None = None,
        clock: Clock | None = None,
        config: ProcurementConfig | None = None,
        requirements: RequirementService | None = None,
    ):
        self._session = session
        self._inventory = inventory
        self._events = events or LoggingEventSink()
        self._clock = clock or SystemClock()
        self._config = config or ProcurementConfig.with_defaults()
        self._requirements = requirements
        self._workflow = PURCHASE_ORDER_WORKFLOW

    def attach_requirements(self, requirements: RequirementService) -> None:
        """Wire the requirement collaborator after construction."""
        self._requirements = requirements

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, po_id: UUID | str) -> PurchaseOrderModel:
        key = _coerce_id(po_id)
        row = self._session.get(PurchaseOrderModel, key) if key else None
        if row is None:
            raise PurchaseOrderNotFoundError(po_id)
        return row

    def _require(self, row: PurchaseOrderModel, action: str) -> str:
        transition = self._workflow.find_transition(row.status, action)
        if transition is None:
            raise InvalidStateError(
                ENTITY, row.id, row.status, action, self._workflow.sources_for(action),
            )
        return transition.to_state

    def _claim(self, row: PurchaseOrderModel, actor_id: str) -> None:
        bump_version(row, actor_id)
        self._session.flush()

    def _emit(
        self,
        event_type: str,
        row: PurchaseOrderModel,
        actor_id: str,
        severity: Severity = Severity.MEDIUM,
        **metadata,
    ) -> None:
        payload = {
            "po_number": row.po_number,
            "supplier_name": row.supplier_name,
            **metadata,
        }
        occurred_at = self._clock.now()
        after_commit(self._session, lambda: emit_event(
            self._events,
            event_type,
            entity_type="purchase_order",
            entity_id=row.id,
            actor_id=actor_id,
            occurred_at=occurred_at,
            severity=severity,
            metadata=payload,
        ))

    @staticmethod
    def _validate_lines(line_items: Sequence[POLineInput]) -> None:
        if not line_items:
            raise ValidationError("Purchase order needs at least one line item", field="line_items")
        for line in line_items:
            if line.quantity <= 0:
                raise ValidationError(
                    f"Line '{line.description}' quantity must be positive", field="quantity",
                )

    def _replace_lines(
        self,
        row: PurchaseOrderModel,
        line_items: Sequence[POLineInput],
        carried_mo_ids: Mapping[UUID, UUID | None] | None = None,
    ) -> None:
        carried = carried_mo_ids or {}
        row.line_items = [
            POLineItemModel(
                id=uuid4(),
                line_number=i + 1,
                description=line.description,
                inventory_item_id=line.inventory_item_id,
                sku=line.sku,
                quantity=line.quantity,
                unit=line.unit,
                unit_cost=line.unit_cost,
                total_cost=line_total(line.quantity, line.unit_cost),
                weight=line.weight,
                quantity_received=ZERO,
                requirement_id=line.requirement_id,
                mo_id=line.mo_id if line.mo_id is not None else carried.get(line.requirement_id),
            )
            for i, line in enumerate(line_items)
        ]

    @staticmethod
    def _check_requirement_lines(
        row: PurchaseOrderModel, line_items: Sequence[POLineInput],
    ) -> dict[UUID, UUID | None]:
        """Replacement lines must carry each linked requirement exactly once.

        Returns the MO id each linked requirement's current line points at.
        """
        linked = {UUID(str(r)) for r in (row.linked_requirement_ids or [])}
        named = [line.requirement_id for line in line_items if line.requirement_id is not None]
        if len(named) != len(set(named)) or set(named) != linked:
            raise ValidationError(
                f"Lines of PO {row.po_number} must carry each of its {len(linked)} "
                "linked requirement(s) on exactly one line",
                field="line_items",
            )
        return {
            line.requirement_id: line.mo_id
            for line in row.line_items
            if line.requirement_id is not None
        }

    def _repoint_requirements(self, row: PurchaseOrderModel, actor_id: str) -> int:
        line_ids = {
            line.requirement_id: line.id
            for line in row.line_items
            if line.requirement_id is not None
        }
        if not line_ids:
            return 0
        requirements = self._session.scalars(
            select(ProcurementRequirementModel).where(
                ProcurementRequirementModel.id.in_(list(line_ids)),
            )
        ).all()
        for requirement in requirements:
            bump_version(requirement, actor_id)
            requirement.po_line_item_id = line_ids[requirement.id]
        return len(requirements)

    def _recalculate(self, row: PurchaseOrderModel) -> None:
        """Re-run the landed cost allocator and overwrite lines' shares and totals."""
        result = allocate_landed_costs(
            lines=[
                CostLine(
                    line_id=str(line.id),
                    quantity=line.quantity,
                    unit_cost=line.unit_cost,
                    weight=line.weight,
                )
                for line in row.line_items
            ],
            components=row.landed_costs().as_components(),
            currency=row.currency,
        )
        for line in row.line_items:
            allocated = result.allocation_for(str(line.id))
            line.total_cost = allocated.line_total
            line.landed_cost_allocation = allocated.allocation
            line.effective_unit_cost = allocated.effective_unit_cost
        row.subtotal = result.totals.subtotal
        row.landed_cost_total = result.totals.landed_cost_total
        row.grand_total = result.totals.grand_total
        if result.unallocated:
            logger.warning(
                "po_landed_cost_unallocated",
                extra={"po_number": row.po_number, "unallocated": str(result.unallocated)},
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_purchase_order(self, po_id: UUID | str) -> PurchaseOrder:
        return self._load(po_id).to_dto()

    def list_purchase_orders(
        self,
        status: POStatus | None = None,
        supplier_id: str | None = None,
    ) -> list[PurchaseOrder]:
        stmt = select(PurchaseOrderModel).order_by(PurchaseOrderModel.po_number)
        if status is not None:
            stmt = stmt.where(PurchaseOrderModel.status == status.value)
        if supplier_id is not None:
            stmt = stmt.where(PurchaseOrderModel.supplier_id == supplier_id)
        return [row.to_dto() for row in self._session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    def create_purchase_order(
        self,
        *,
        subsidiary: str,
        supplier_name: str,
        line_items: Sequence[POLineInput],
        actor_id: str,
        landed_costs: LandedCosts | None = None,
        supplier_id: str | None = None,
        supplier_contact: str | None = None,
        linked_mo_ids: Sequence[UUID] = (),
        linked_requirement_ids: Sequence[UUID] = (),
        linked_project_id: str | None = None,
        expected_delivery_date: date | None = None,
        notes: str | None = None,
    ) -> PurchaseOrder:
        """Create a draft PO with allocated landed costs and derived totals."""
        self._validate_lines(line_items)
        costs = landed_costs or LandedCosts(
            distribution_method=self._config.default_distribution_method,
        )
        now = self._clock.now()

        with LogContext.bind(actor_id=actor_id, operation="po_create"):
            logger.info(
                "po_create_started",
                extra={"subsidiary": subsidiary, "line_count": len(line_items)},
            )
            with unit_of_work(self._session, ENTITY):
                po_number = next_document_number(
                    self._session,
                    number_column=PurchaseOrderModel.po_number,
                    subsidiary_column=PurchaseOrderModel.subsidiary,
                    subsidiary=subsidiary,
                    prefix=self._config.po_prefix_for(subsidiary),
                    at=now,
                )
                row = PurchaseOrderModel(
                    id=uuid4(),
                    po_number=po_number,
                    subsidiary=subsidiary,
                    supplier_id=supplier_id,
                    supplier_name=supplier_name,
                    supplier_contact=supplier_contact,
                    status=POStatus.DRAFT.value,
                    currency=self._config.default_currency,
                    linked_mo_ids=[str(m) for m in dict.fromkeys(linked_mo_ids)],
                    linked_requirement_ids=[str(r) for r in dict.fromkeys(linked_requirement_ids)],
                    linked_project_id=linked_project_id,
                    expected_delivery_date=expected_delivery_date,
                    notes=notes,
                    created_at=now,
                    created_by=actor_id,
                    version=1,
                )
                row.set_landed_costs(costs)
                self._replace_lines(row, line_items)
                self._recalculate(row)
                self._session.add(row)

            logger.info(
                "po_create_completed",
                extra={
                    "po_id": str(row.id),
                    "po_number": po_number,
                    "grand_total": str(row.grand_total),
                },
            )
            self._emit(
                "purchase_order_created", row, actor_id, Severity.LOW,
                grand_total=str(row.grand_total), line_count=len(line_items),
            )
            return row.to_dto()

    def update_purchase_order(
        self,
        po_id: UUID | str,
        *,
        actor_id: str,
        line_items: Sequence[POLineInput] | None = None,
        landed_costs: LandedCosts | None = None,
        supplier_name: str | None = None,
        supplier_contact: str | None = None,
        expected_delivery_date: date | None = None,
        notes: str | None = None,
    ) -> PurchaseOrder:
        """Edit a draft or pending-approval PO; totals are always re-derived."""
        if line_items is not None:
            self._validate_lines(line_items)

        with unit_of_work(self._session, ENTITY, po_id):
            row = self._load(po_id)
            if POStatus(row.status) not in EDITABLE_PO_STATUSES:
                raise InvalidStateError(
                    ENTITY, row.id, row.status, "update",
                    tuple(s.value for s in (POStatus.DRAFT, POStatus.PENDING_APPROVAL)),
                )
            relinked = 0
            if line_items is not None:
                carried = self._check_requirement_lines(row, line_items)
            self._claim(row, actor_id)
            if line_items is not None:
                self._replace_lines(row, line_items, carried)
                relinked = self._repoint_requirements(row, actor_id)
            if landed_costs is not None:
                row.set_landed_costs(landed_costs)
            if supplier_name is not None:
                row.supplier_name = supplier_name
            if supplier_contact is not None:
                row.supplier_contact = supplier_contact
            if expected_delivery_date is not None:
                row.expected_delivery_date = expected_delivery_date
            if notes is not None:
                row.notes = notes
            self._recalculate(row)

        logger.info(
            "po_updated",
            extra={
                "po_number": row.po_number,
                "grand_total": str(row.grand_total),
                "requirements_relinked": relinked,
            },
        )
        return row.to_dto()

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def submit_for_approval(self, po_id: UUID | str, *, actor_id: str) -> PurchaseOrder:
        with unit_of_work(self._session, ENTITY, po_id):
            row = self._load(po_id)
            target = self._require(row, "submit")
            if not row.line_items:
                raise ValidationError("Purchase order has no line items", field="line_items")
            self._claim(row, actor_id)
            row.approvals.append(
                POApprovalModel(
                    position=len(row.approvals),
                    level=1,
                    status=POApprovalStatus.PENDING.value,
                )
            )
            row.status = target
        logger.info("po_submitted_for_approval", extra={"po_number": row.po_number})
        self._emit("purchase_order_submitted_for_approval", row, actor_id)
        return row.to_dto()

    def _decide(
        self,
        po_id: UUID | str,
        action: str,
        decision: POApprovalStatus,
        actor_id: str,
        notes: str | None,
    ) -> PurchaseOrderModel:
        with unit_of_work(self._session, ENTITY, po_id):
            row = self._load(po_id)
            target = self._require(row, action)
            self._claim(row, actor_id)
            now = self._clock.now()
            for approval in row.approvals:
                if approval.status == POApprovalStatus.PENDING.value:
                    approval.status = decision.value
                    approval.approver_id = actor_id
                    approval.acted_at = now
                    approval.notes = notes
            row.status = target
        return row

    def approve(
        self,
        po_id: UUID | str,
        *,
        actor_id: str,
        notes: str | None = None,
    ) -> PurchaseOrder:
        row = self._decide(po_id, "approve", POApprovalStatus.APPROVED, actor_id, notes)
        logger.info("po_approved", extra={"po_number": row.po_number})
        self._emit("purchase_order_approved", row, actor_id)
        return row.to_dto()

    def reject(self, po_id: UUID | str, notes: str, *, actor_id: str) -> PurchaseOrder:
        """Reject back to draft so the PO can be edited and resubmitted."""
        row = self._decide(po_id, "reject", POApprovalStatus.REJECTED, actor_id, notes)
        logger.info("po_rejected", extra={"po_number": row.po_number, "notes": notes})
        self._emit("purchase_order_rejected", row, actor_id, notes=notes)
        return row.to_dto()

    # ------------------------------------------------------------------
    # Sending / receiving
    # ------------------------------------------------------------------

    def mark_as_sent(self, po_id: UUID | str, *, actor_id: str) -> PurchaseOrder:
        with unit_of_work(self._session, ENTITY, po_id):
            row = self._load(po_id)
            target = self._require(row, "send")
            self._claim(row, actor_id)
            row.status = target

        logger.info("po_sent", extra={"po_number": row.po_number})
        self._notify_requirements(row.id, "ordered", actor_id)
        self._emit("purchase_order_sent", row, actor_id)
        return row.to_dto()

    def _notify_requirements(self, po_id: UUID, outcome: str, actor_id: str) -> None:
        """Best-effort requirement status follow-up; never fails the caller."""
        if self._requirements is None:
            return
        try:
            if outcome == "ordered":
                count = self._requirements.mark_ordered_for_po(po_id, actor_id=actor_id)
            else:
                count = self._requirements.mark_received_for_po(po_id, actor_id=actor_id)
        except Exception:
            logger.warning(
                "po_requirement_update_failed",
                extra={"po_id": str(po_id), "target_status": outcome},
                exc_info=True,
            )
            return
        logger.info(
            "po_requirements_updated",
            extra={"po_id": str(po_id), "target_status": outcome, "count": count},
        )

    def receive_goods(
        self,
        po_id: UUID | str,
        receipt: GoodsReceiptInput,
        *,
        actor_id: str,
    ) -> PurchaseOrder:
        """Record a goods receipt and push received stock into inventory.

        Receipt lines with zero quantity are ignored.  Stock receipt and the
        weighted-average cost update run per line after the PO commits and
        are best-effort.
        """
        if not receipt.warehouse_id:
            raise ValidationError("Goods receipt needs a warehouse", field="warehouse_id")
        received_lines = [l for l in receipt.lines if l.quantity_received > 0]
        if not received_lines:
            raise ValidationError("Goods receipt has no received quantities", field="lines")

        tolerance = self._config.allow_over_receipt_percent
        with LogContext.bind(entity_id=str(po_id), actor_id=actor_id, operation="po_receive"):
            with unit_of_work(self._session, ENTITY, po_id):
                row = self._load(po_id)
                if row.status not in (POStatus.SENT.value, POStatus.PARTIALLY_RECEIVED.value):
                    raise InvalidStateError(
                        ENTITY, row.id, row.status, "receive",
                        (POStatus.SENT.value, POStatus.PARTIALLY_RECEIVED.value),
                    )

                # Repeated lines in one receipt count against the same bound
                per_line: dict[UUID, tuple[POLineItemModel, Decimal]] = {}
                for receipt_line in received_lines:
                    line = row.line_item(receipt_line.line_item_id)
                    if line is None:
                        raise ValidationError(
                            f"Receipt line {receipt_line.line_item_id} is not on PO {row.po_number}",
                            field="line_item_id",
                        )
                    _, so_far = per_line.get(line.id, (line, Decimal("0")))
                    per_line[line.id] = (line, so_far + receipt_line.quantity_received)

                for line, quantity in per_line.values():
                    new_total = line.quantity_received + quantity
                    limit = line.quantity * (1 + tolerance / HUNDRED)
                    if new_total > limit:
                        raise ValidationError(
                            f"Over-receipt on '{line.description}': "
                            f"{new_total} received against {line.quantity} ordered",
                            field="quantity_received",
                        )
                pending: list[tuple[POLineItemModel, Decimal]] = list(per_line.values())

                self._claim(row, actor_id)
                for line, quantity in pending:
                    line.quantity_received = line.quantity_received + quantity

                fully_received = all(l.quantity_received >= l.quantity for l in row.line_items)
                row.status = (
                    POStatus.RECEIVED.value if fully_received else POStatus.PARTIALLY_RECEIVED.value
                )
                receipt_number = f"GR-{row.po_number}-{len(row.receipts) + 1:02d}"
                row.receipts.append(
                    GoodsReceiptModel(
                        position=len(row.receipts),
                        receipt_number=receipt_number,
                        received_at=self._clock.now(),
                        received_by=actor_id,
                        warehouse_id=receipt.warehouse_id,
                        lines=[
                            {
                                "line_item_id": str(l.line_item_id),
                                "quantity_received": str(l.quantity_received),
                            }
                            for l in received_lines
                        ],
                        notes=receipt.notes,
                    )
                )

            for line, quantity in pending:
                self._push_stock(row, line, quantity, receipt.warehouse_id, actor_id)

            if fully_received:
                self._notify_requirements(row.id, "received", actor_id)

            logger.info(
                "po_goods_received",
                extra={
                    "po_number": row.po_number,
                    "receipt_id": receipt_number,
                    "lines_received": len(pending),
                    "fully_received": fully_received,
                },
            )
            self._emit(
                "goods_received", row, actor_id,
                receipt_id=receipt_number,
                lines_received=len(pending),
                fully_received=fully_received,
            )
            return row.to_dto()

    def _push_stock(
        self,
        row: PurchaseOrderModel,
        line: POLineItemModel,
        quantity: Decimal,
        warehouse_id: str,
        actor_id: str,
    ) -> None:
        if not line.inventory_item_id:
            return
        try:
            self._inventory.receive_stock(
                line.inventory_item_id,
                warehouse_id,
                line.sku,
                line.description,
                quantity,
                str(row.id),
                actor_id,
                f"From PO {row.po_number}",
            )
            if line.effective_unit_cost:
                self._inventory.update_cost_from_receipt(
                    line.inventory_item_id, quantity, line.effective_unit_cost,
                )
        except Exception:
            logger.warning(
                "po_stock_receipt_failed",
                extra={
                    "po_number": row.po_number,
                    "inventory_item_id": line.inventory_item_id,
                    "quantity": str(quantity),
                },
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Close / cancel
    # ------------------------------------------------------------------

    def close(self, po_id: UUID | str, *, actor_id: str) -> PurchaseOrder:
        with unit_of_work(self._session, ENTITY, po_id):
            row = self._load(po_id)
            target = self._require(row, "close")
            self._claim(row, actor_id)
            row.status = target
        logger.info("po_closed", extra={"po_number": row.po_number})
        self._emit("purchase_order_closed", row, actor_id)
        return row.to_dto()

    def cancel(self, po_id: UUID | str, reason: str, *, actor_id: str) -> PurchaseOrder:
        with unit_of_work(self._session, ENTITY, po_id):
            row = self._load(po_id)
            target = self._require(row, "cancel")
            self._claim(row, actor_id)
            note = f"[CANCELLED] {reason}"
            row.notes = f"{row.notes}\n{note}" if row.notes else note
            row.status = target
        logger.info("po_cancelled", extra={"po_number": row.po_number, "reason": reason})
        self._emit("purchase_order_cancelled", row, actor_id, reason=reason)
        return row.to_dto()
