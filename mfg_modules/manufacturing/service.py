"""
Manufacturing Order Service (``mfg_modules.manufacturing.service``).

Responsibility
--------------
Owns the manufacturing order lifecycle: creation, material reservation at
approval, start of production, stage advancement, material consumption,
quality checks, hold / resume, reprioritization and cancellation.  Inventory
side effects go through the injected ``InventoryAdapter``; business events go
to the injected ``EventSink``.

Architecture position
---------------------
**Modules layer**.  Called directly by callers and by the approval workflow,
requirement generator, consolidator, costing service and bulk orchestrator.

Invariants enforced
-------------------
* Status changes only along ``MANUFACTURING_ORDER_WORKFLOW``.
* The stage advances one step at a time, only while in progress; reaching
  the terminal stage completes the order in the same write.
* Every mutating call first bumps the order's version and flushes, so a
  concurrent writer that read the same version loses with
  ``OptimisticLockError`` before any inventory call is made.
* Approval keeps partial reservations when shortages occur.
* Cancellation releases every active reservation exactly once; a failing
  release is logged and does not block cancellation.

Failure modes
-------------
* ``ManufacturingOrderNotFoundError`` for unknown ids.
* ``InvalidStateError`` when the status disallows the action.
* ``InvalidTransitionError`` when advancing past the terminal stage.
* ``ValidationError`` for bad input (no warehouse, non-positive quantity).
* ``InventoryOperationError`` when a consume call fails; consumptions
  recorded before the failure are kept.

Usage::

    service = ManufacturingOrderService(session, inventory, events=sink, clock=clock)
    mo = service.create_order(subsidiary="finishes", design_name="Oak table",
                              quantity=Decimal("2"), bom=[...], actor_id="u-1")
    outcome = service.approve(mo.id, actor_id="u-1", warehouse_id="WH-1")
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from mfg_kernel.db.base import bump_version
from mfg_kernel.db.types import ZERO, round_money, to_decimal
from mfg_kernel.db.unit_of_work import after_commit, unit_of_work
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.events import EventSink, LoggingEventSink, Severity, emit_event
from mfg_kernel.exceptions import (
    InvalidStateError,
    InvalidTransitionError,
    InventoryOperationError,
    ManufacturingOrderNotFoundError,
    ValidationError,
)
from mfg_kernel.logging_config import LogContext, get_logger
from mfg_kernel.numbering import next_document_number
from mfg_kernel.ports import InventoryAdapter, ReservationResult
from mfg_modules.manufacturing.config import ManufacturingConfig
from mfg_modules.manufacturing.models import (
    TERMINAL_STAGE,
    ApprovalOutcome,
    BOMEntry,
    CancellationOutcome,
    ConsumptionInput,
    ManufacturingOrder,
    MaterialShortage,
    MOPriority,
    MOStage,
    MOStatus,
    ReservationStatus,
    next_stage,
)
from mfg_modules.manufacturing.orm import (
    BOMEntryModel,
    ManufacturingOrderModel,
    MaterialConsumptionModel,
    MaterialReservationModel,
    StageTransitionModel,
)
from mfg_modules.manufacturing.workflows import MANUFACTURING_ORDER_WORKFLOW

logger = get_logger("modules.manufacturing.service")

ENTITY = "ManufacturingOrder"
CREATED_NOTE = "Manufacturing order created"


def coerce_id(value: UUID | str) -> UUID | None:
    """Parse an id; None for malformed strings so lookups report not-found."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class ManufacturingOrderService:
    """
    Lifecycle manager for manufacturing orders.

    Each public method is its own unit of work: it commits on success and
    rolls back on failure, unless called from inside another service
    operation on the same session, in which case it joins that transaction.
    """

    def __init__(
        self,
        session: Session,
        inventory: InventoryAdapter,
        events: EventSink | None = None,
        clock: Clock | None = None,
        config: ManufacturingConfig | None = None,
    ):
        self._session = session
        self._inventory = inventory
        self._events = events or LoggingEventSink()
        self._clock = clock or SystemClock()
        self._config = config or ManufacturingConfig.with_defaults()
        self._workflow = MANUFACTURING_ORDER_WORKFLOW

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, mo_id: UUID | str) -> ManufacturingOrderModel:
        key = coerce_id(mo_id)
        row = self._session.get(ManufacturingOrderModel, key) if key else None
        if row is None:
            raise ManufacturingOrderNotFoundError(mo_id)
        return row

    def _require(self, row: ManufacturingOrderModel, action: str) -> str:
        """Target status for ``action`` from the row's status, else InvalidStateError."""
        transition = self._workflow.find_transition(row.status, action)
        if transition is None:
            raise InvalidStateError(
                ENTITY, row.id, row.status, action, self._workflow.sources_for(action),
            )
        return transition.to_state

    def _claim(self, row: ManufacturingOrderModel, actor_id: str) -> None:
        bump_version(row, actor_id)
        self._session.flush()

    def _append_stage(
        self,
        row: ManufacturingOrderModel,
        from_stage: str | None,
        to_stage: str,
        actor_id: str,
        notes: str | None,
    ) -> None:
        row.stage_history.append(
            StageTransitionModel(
                sequence=len(row.stage_history),
                from_stage=from_stage,
                to_stage=to_stage,
                transitioned_at=self._clock.now(),
                transitioned_by=actor_id,
                notes=notes,
            )
        )

    def _emit(
        self,
        event_type: str,
        row: ManufacturingOrderModel,
        actor_id: str,
        severity: Severity = Severity.LOW,
        **metadata,
    ) -> None:
        payload = {"mo_number": row.mo_number, **metadata}
        occurred_at = self._clock.now()
        after_commit(self._session, lambda: emit_event(
            self._events,
            event_type,
            entity_type="manufacturing_order",
            entity_id=row.id,
            actor_id=actor_id,
            occurred_at=occurred_at,
            severity=severity,
            metadata=payload,
        ))

    def _try_reserve(
        self,
        row: ManufacturingOrderModel,
        entry: BOMEntryModel,
        warehouse_id: str,
        actor_id: str,
    ) -> ReservationResult:
        try:
            return self._inventory.reserve(
                entry.inventory_item_id,
                warehouse_id,
                entry.sku,
                entry.item_name,
                entry.quantity_required,
                str(row.id),
                actor_id,
            )
        except Exception:
            logger.warning(
                "mo_reservation_call_failed",
                extra={
                    "mo_number": row.mo_number,
                    "inventory_item_id": entry.inventory_item_id,
                    "warehouse_id": warehouse_id,
                },
                exc_info=True,
            )
            return ReservationResult(success=False, available_qty=ZERO)

    def _release_active(self, row: ManufacturingOrderModel, actor_id: str) -> tuple[int, int]:
        """Release every active reservation; returns (released, failed_calls)."""
        released = 0
        failures = 0
        now = self._clock.now()
        for reservation in row.active_reservations():
            try:
                self._inventory.release(
                    reservation.inventory_item_id,
                    reservation.warehouse_id,
                    reservation.quantity,
                    str(row.id),
                    actor_id,
                )
            except Exception:
                failures += 1
                logger.warning(
                    "mo_reservation_release_failed",
                    extra={
                        "mo_number": row.mo_number,
                        "reservation_id": str(reservation.id),
                        "inventory_item_id": reservation.inventory_item_id,
                    },
                    exc_info=True,
                )
            reservation.status = ReservationStatus.RELEASED.value
            reservation.released_at = now
            released += 1
        return released, failures

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, mo_id: UUID | str) -> ManufacturingOrder:
        return self._load(mo_id).to_dto()

    def find_order(self, mo_id: UUID | str) -> ManufacturingOrder | None:
        key = coerce_id(mo_id)
        row = self._session.get(ManufacturingOrderModel, key) if key else None
        return row.to_dto() if row is not None else None

    def list_orders(
        self,
        status: MOStatus | None = None,
        subsidiary: str | None = None,
    ) -> list[ManufacturingOrder]:
        stmt = select(ManufacturingOrderModel).order_by(ManufacturingOrderModel.mo_number)
        if status is not None:
            stmt = stmt.where(ManufacturingOrderModel.status == status.value)
        if subsidiary is not None:
            stmt = stmt.where(ManufacturingOrderModel.subsidiary == subsidiary)
        return [row.to_dto() for row in self._session.scalars(stmt)]

    def list_orders_by_design(self, design_id: str) -> list[ManufacturingOrder]:
        """Orders built from one design item, newest first."""
        stmt = (
            select(ManufacturingOrderModel)
            .where(ManufacturingOrderModel.design_id == design_id)
            .order_by(
                ManufacturingOrderModel.created_at.desc(),
                ManufacturingOrderModel.mo_number.desc(),
            )
        )
        return [row.to_dto() for row in self._session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_order(
        self,
        *,
        subsidiary: str,
        design_name: str,
        quantity: Decimal,
        bom: Sequence[BOMEntry],
        actor_id: str,
        priority: MOPriority = MOPriority.NORMAL,
        design_id: str | None = None,
        project_id: str | None = None,
        project_type: str | None = None,
        customer_name: str | None = None,
        is_repeat_order: bool = False,
        estimated_labor_cost: Decimal = ZERO,
        target_completion_date: date | None = None,
    ) -> ManufacturingOrder:
        """Create a draft order from a handed-over design and its BOM snapshot."""
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise ValidationError("Order quantity must be positive", field="quantity")

        now = self._clock.now()
        with unit_of_work(self._session, ENTITY):
            mo_number = next_document_number(
                self._session,
                number_column=ManufacturingOrderModel.mo_number,
                subsidiary_column=ManufacturingOrderModel.subsidiary,
                subsidiary=subsidiary,
                prefix=self._config.mo_number_prefix,
                at=now,
            )
            material_cost = round_money(sum((e.total_cost for e in bom), ZERO))
            row = ManufacturingOrderModel(
                id=uuid4(),
                mo_number=mo_number,
                subsidiary=subsidiary,
                design_name=design_name,
                design_id=design_id,
                project_id=project_id,
                project_type=project_type,
                customer_name=customer_name,
                is_repeat_order=is_repeat_order,
                quantity=quantity,
                status=MOStatus.DRAFT.value,
                current_stage=MOStage.QUEUED.value,
                priority=priority.value,
                material_cost=material_cost,
                labor_cost=ZERO,
                estimated_labor_cost=round_money(to_decimal(estimated_labor_cost)),
                currency=self._config.default_currency,
                linked_po_ids=[],
                target_completion_date=target_completion_date,
                created_at=now,
                created_by=actor_id,
                version=1,
            )
            row.bom_entries = [BOMEntryModel.from_dto(e, i) for i, e in enumerate(bom)]
            self._session.add(row)
            self._append_stage(row, None, MOStage.QUEUED.value, actor_id, CREATED_NOTE)

        logger.info(
            "mo_created",
            extra={
                "mo_id": str(row.id),
                "mo_number": mo_number,
                "subsidiary": subsidiary,
                "bom_entries": len(bom),
                "material_cost": str(material_cost),
            },
        )
        self._emit(
            "manufacturing_order_created", row, actor_id,
            design_name=design_name, total_cost=str(material_cost),
        )
        return row.to_dto()

    # ------------------------------------------------------------------
    # Approval (material reservation)
    # ------------------------------------------------------------------

    def approve(
        self,
        mo_id: UUID | str,
        *,
        actor_id: str,
        warehouse_id: str | None = None,
    ) -> ApprovalOutcome:
        """Reserve stocked BOM materials; approve only if nothing is short.

        Entries that already hold an active reservation (from an earlier
        attempt that hit shortages) are not reserved again.
        """
        with LogContext.bind(entity_id=str(mo_id), actor_id=actor_id, operation="mo_approve"):
            logger.info("mo_approve_started")
            shortages: list[MaterialShortage] = []
            created = 0

            with unit_of_work(self._session, ENTITY, mo_id):
                row = self._load(mo_id)
                target = self._require(row, "approve")

                already_reserved = {r.bom_entry_id for r in row.active_reservations()}
                pending = [
                    e for e in row.bom_entries
                    if e.inventory_item_id and e.id not in already_reserved
                ]
                default_wh = warehouse_id or self._config.default_warehouse_id
                missing = [e.item_name for e in pending if not (e.warehouse_id or default_wh)]
                if missing:
                    raise ValidationError(
                        f"No warehouse for BOM entries: {', '.join(missing)}",
                        field="warehouse_id",
                    )

                self._claim(row, actor_id)
                now = self._clock.now()
                for entry in pending:
                    wh = entry.warehouse_id or default_wh
                    result = self._try_reserve(row, entry, wh, actor_id)
                    if result.success:
                        row.reservations.append(
                            MaterialReservationModel(
                                position=len(row.reservations),
                                bom_entry_id=entry.id,
                                inventory_item_id=entry.inventory_item_id,
                                warehouse_id=wh,
                                quantity=entry.quantity_required,
                                status=ReservationStatus.ACTIVE.value,
                                stock_level_id=result.stock_level_id,
                                reserved_at=now,
                                reserved_by=actor_id,
                            )
                        )
                        created += 1
                    else:
                        shortages.append(
                            MaterialShortage(
                                bom_entry_id=entry.id,
                                item_name=entry.item_name,
                                inventory_item_id=entry.inventory_item_id,
                                warehouse_id=wh,
                                required=entry.quantity_required,
                                available=to_decimal(result.available_qty),
                            )
                        )

                if not shortages:
                    row.status = target

            if shortages:
                logger.warning(
                    "mo_approve_shortages",
                    extra={
                        "mo_number": row.mo_number,
                        "shortage_count": len(shortages),
                        "reservations_created": created,
                    },
                )
                self._emit(
                    "material_shortage_detected", row, actor_id, Severity.HIGH,
                    shortages=[
                        {"item_name": s.item_name, "required": str(s.required),
                         "available": str(s.available)}
                        for s in shortages
                    ],
                    reserved_count=created,
                )
            else:
                logger.info(
                    "mo_approve_completed",
                    extra={"mo_number": row.mo_number, "reservations_created": created},
                )
                self._emit("manufacturing_order_approved", row, actor_id)

            return ApprovalOutcome(
                success=not shortages,
                order=row.to_dto(),
                shortages=tuple(shortages),
                reservations_created=created,
            )

    def mark_approved(self, mo_id: UUID | str, *, actor_id: str) -> ManufacturingOrder:
        """Approve a draft order on completion of its approval chain."""
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            target = self._require(row, "approve_chain")
            self._claim(row, actor_id)
            row.status = target
        logger.info("mo_chain_approved", extra={"mo_number": row.mo_number})
        self._emit("manufacturing_order_approved", row, actor_id, via="approval_chain")
        return row.to_dto()

    def approve_with_shortages(self, mo_id: UUID | str, *, actor_id: str) -> ManufacturingOrder:
        """Approve a draft order whose reservations came up short.

        Reservations already made are kept; nothing further is reserved.
        """
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            target = self._require(row, "approve_override")
            self._claim(row, actor_id)
            row.status = target
        logger.warning(
            "mo_approved_with_shortages",
            extra={"mo_number": row.mo_number, "active_reservations": len(row.active_reservations())},
        )
        self._emit("manufacturing_order_approved", row, actor_id, via="shortage_override")
        return row.to_dto()

    def revert_to_draft(
        self,
        mo_id: UUID | str,
        *,
        actor_id: str,
        reason: str | None = None,
    ) -> ManufacturingOrder:
        """Send an order back to draft after an approval rejection.

        A draft order is left unchanged.
        """
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            if row.status == MOStatus.DRAFT.value:
                return row.to_dto()
            target = self._require(row, "revert_to_draft")
            self._claim(row, actor_id)
            released = 0
            if self._config.release_reservations_on_revert:
                released, _ = self._release_active(row, actor_id)
            row.status = target
        logger.info(
            "mo_reverted_to_draft",
            extra={"mo_number": row.mo_number, "reason": reason, "reservations_released": released},
        )
        return row.to_dto()

    # ------------------------------------------------------------------
    # Production
    # ------------------------------------------------------------------

    def start_production(self, mo_id: UUID | str, *, actor_id: str) -> ManufacturingOrder:
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            target = self._require(row, "start_production")
            self._claim(row, actor_id)
            row.status = target
            row.actual_start_date = self._clock.now()
        logger.info("mo_production_started", extra={"mo_number": row.mo_number})
        self._emit("manufacturing_order_started", row, actor_id)
        return row.to_dto()

    def advance_stage(
        self,
        mo_id: UUID | str,
        *,
        actor_id: str,
        notes: str | None = None,
    ) -> ManufacturingOrder:
        """Move one stage forward; entering the terminal stage completes the order."""
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            current = MOStage(row.current_stage)
            if current == TERMINAL_STAGE:
                raise InvalidTransitionError(row.id, current.value, "order is already at the final stage")
            if row.status != MOStatus.IN_PROGRESS.value:
                raise InvalidStateError(
                    ENTITY, row.id, row.status, "advance_stage", (MOStatus.IN_PROGRESS.value,),
                )
            new_stage = next_stage(current)
            self._claim(row, actor_id)
            self._append_stage(row, current.value, new_stage.value, actor_id, notes)
            row.current_stage = new_stage.value
            completed = new_stage == TERMINAL_STAGE
            if completed:
                row.status = self._require(row, "complete")
                row.actual_end_date = self._clock.now()

        logger.info(
            "mo_stage_advanced",
            extra={
                "mo_number": row.mo_number,
                "from_stage": current.value,
                "to_stage": new_stage.value,
                "completed": completed,
            },
        )
        self._emit(
            "manufacturing_order_stage_changed", row, actor_id,
            from_stage=current.value, to_stage=new_stage.value,
        )
        if completed:
            self._emit("manufacturing_order_completed", row, actor_id)
        return row.to_dto()

    def record_consumption(
        self,
        mo_id: UUID | str,
        items: Sequence[ConsumptionInput],
        *,
        actor_id: str,
    ) -> ManufacturingOrder:
        """Consume materials in input order, tagging each with the current stage.

        Quantities are not bounded by the BOM.  If a consume call fails the
        consumptions already made are kept and InventoryOperationError is
        raised afterwards.
        """
        if not items:
            raise ValidationError("No consumption items given", field="items")

        failure: tuple[ConsumptionInput, Exception] | None = None
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            if self._workflow.is_terminal(row.status) or row.status == MOStatus.DRAFT.value:
                raise InvalidStateError(
                    ENTITY, row.id, row.status, "record_consumption",
                    (MOStatus.APPROVED.value, MOStatus.IN_PROGRESS.value, MOStatus.ON_HOLD.value),
                )
            self._claim(row, actor_id)
            for item in items:
                try:
                    self._inventory.consume(
                        item.inventory_item_id,
                        item.warehouse_id,
                        item.quantity,
                        str(row.id),
                        actor_id,
                    )
                except Exception as exc:
                    failure = (item, exc)
                    break
                row.consumptions.append(
                    MaterialConsumptionModel(
                        position=len(row.consumptions),
                        inventory_item_id=item.inventory_item_id,
                        warehouse_id=item.warehouse_id,
                        quantity=item.quantity,
                        stage=row.current_stage,
                        consumed_at=self._clock.now(),
                        consumed_by=actor_id,
                    )
                )
                for reservation in row.active_reservations():
                    if (reservation.inventory_item_id == item.inventory_item_id
                            and reservation.warehouse_id == item.warehouse_id):
                        reservation.status = ReservationStatus.CONSUMED.value
                        break

        if failure is not None:
            item, exc = failure
            logger.warning(
                "mo_consumption_failed",
                extra={"mo_number": row.mo_number, "inventory_item_id": item.inventory_item_id},
                exc_info=exc,
            )
            raise InventoryOperationError("consume", item.inventory_item_id, str(exc)) from exc

        logger.info(
            "mo_consumption_recorded",
            extra={"mo_number": row.mo_number, "item_count": len(items), "stage": row.current_stage},
        )
        return row.to_dto()

    def record_quality_check(
        self,
        mo_id: UUID | str,
        *,
        passed: bool,
        inspector_id: str,
        notes: str | None = None,
        defects: Sequence[str] = (),
    ) -> ManufacturingOrder:
        """Replace the order's quality check.  A failure is an event, not an error."""
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            if row.status in (MOStatus.DRAFT.value, MOStatus.CANCELLED.value):
                raise InvalidStateError(
                    ENTITY, row.id, row.status, "record_quality_check",
                    (MOStatus.IN_PROGRESS.value, MOStatus.COMPLETED.value),
                )
            self._claim(row, inspector_id)
            row.qc_passed = passed
            row.qc_inspector_id = inspector_id
            row.qc_inspected_at = self._clock.now()
            row.qc_notes = notes
            row.qc_defects = list(defects)

        logger.info("mo_quality_check_recorded", extra={"mo_number": row.mo_number, "passed": passed})
        if not passed:
            self._emit(
                "qc_inspection_failed", row, inspector_id, Severity.HIGH,
                defects=list(defects), notes=notes,
            )
        return row.to_dto()

    # ------------------------------------------------------------------
    # Hold / resume / priority
    # ------------------------------------------------------------------

    def put_on_hold(self, mo_id: UUID | str, reason: str, *, actor_id: str) -> ManufacturingOrder:
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            allowed = (MOStatus.IN_PROGRESS.value,)
            if self._config.allow_hold_from_approved:
                allowed = (MOStatus.APPROVED.value, MOStatus.IN_PROGRESS.value)
            if row.status not in allowed:
                raise InvalidStateError(ENTITY, row.id, row.status, "hold", allowed)
            target = self._require(row, "hold")
            self._claim(row, actor_id)
            row.status_before_hold = row.status
            row.status = target
            row.hold_reason = reason
        logger.info("mo_put_on_hold", extra={"mo_number": row.mo_number, "reason": reason})
        self._emit("manufacturing_order_on_hold", row, actor_id, Severity.MEDIUM, reason=reason)
        return row.to_dto()

    def resume(self, mo_id: UUID | str, *, actor_id: str) -> ManufacturingOrder:
        """Return an on-hold order to the status it was held from."""
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            if row.status != MOStatus.ON_HOLD.value:
                raise InvalidStateError(
                    ENTITY, row.id, row.status, "resume", (MOStatus.ON_HOLD.value,),
                )
            target = row.status_before_hold or MOStatus.IN_PROGRESS.value
            self._claim(row, actor_id)
            row.status = target
            row.status_before_hold = None
            row.hold_reason = None
        logger.info("mo_resumed", extra={"mo_number": row.mo_number, "status": target})
        self._emit("manufacturing_order_resumed", row, actor_id)
        return row.to_dto()

    def update_priority(
        self,
        mo_id: UUID | str,
        priority: MOPriority,
        *,
        actor_id: str,
    ) -> ManufacturingOrder:
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            if self._workflow.is_terminal(row.status):
                raise InvalidStateError(ENTITY, row.id, row.status, "update_priority")
            previous = row.priority
            self._claim(row, actor_id)
            row.priority = priority.value
        logger.info(
            "mo_priority_updated",
            extra={"mo_number": row.mo_number, "previous": previous, "priority": priority.value},
        )
        return row.to_dto()

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, mo_id: UUID | str, reason: str, *, actor_id: str) -> CancellationOutcome:
        with LogContext.bind(entity_id=str(mo_id), actor_id=actor_id, operation="mo_cancel"):
            with unit_of_work(self._session, ENTITY, mo_id):
                row = self._load(mo_id)
                target = self._require(row, "cancel")
                self._claim(row, actor_id)
                released, failures = self._release_active(row, actor_id)
                row.status = target
                row.cancellation_reason = reason
                row.status_before_hold = None

            logger.info(
                "mo_cancelled",
                extra={
                    "mo_number": row.mo_number,
                    "reservations_released": released,
                    "release_failures": failures,
                },
            )
            self._emit(
                "manufacturing_order_cancelled", row, actor_id, Severity.MEDIUM,
                reason=reason, reservations_released=released,
            )
            return CancellationOutcome(
                order=row.to_dto(),
                reservations_released=released,
                release_failures=failures,
            )

    # ------------------------------------------------------------------
    # Cross-module links
    # ------------------------------------------------------------------

    def link_purchase_order(
        self,
        mo_id: UUID | str,
        po_id: UUID,
        *,
        actor_id: str,
    ) -> bool:
        """Record ``po_id`` on the order.  Returns False if already linked."""
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            existing = list(row.linked_po_ids or [])
            if str(po_id) in existing:
                return False
            self._claim(row, actor_id)
            row.linked_po_ids = existing + [str(po_id)]
        logger.info("mo_po_linked", extra={"mo_number": row.mo_number, "po_id": str(po_id)})
        return True

    def add_labor_cost(
        self,
        mo_id: UUID | str,
        amount: Decimal,
        *,
        actor_id: str,
    ) -> ManufacturingOrder:
        """Fold recorded labor into the order's cost summary."""
        with unit_of_work(self._session, ENTITY, mo_id):
            row = self._load(mo_id)
            self._claim(row, actor_id)
            row.labor_cost = round_money(row.labor_cost + to_decimal(amount))
        return row.to_dto()
