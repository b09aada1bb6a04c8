"""
Procurement Requirement Service (``mfg_modules.procurement.requirements``).

Responsibility
--------------
Generates procurement requirements from a manufacturing order's BOM
(outsourced entries), from detected material shortages, or from stock
replenishment requests raised by reorder alerts, and moves requirements
through their forward-only lifecycle as the purchase orders they were
folded into are sent and received.

Architecture position
---------------------
**Modules layer**.  Reads manufacturing orders through the ORM; is called
by ``ConsolidationService`` (assignment to a PO) and, best-effort, by
``PurchaseOrderService`` (ordered / received follow-ups).

Invariants enforced
-------------------
* An entry is outsourced when it names a supplier or its category is
  ``special``.
* Each requirement snapshots description, quantity, cost and supplier at
  generation time; later BOM edits are not re-synced.
* At most one non-cancelled requirement exists per (MO, BOM entry), so
  generation can be re-run safely.  Likewise at most one open reorder-alert
  requirement exists per inventory item.
* Status only moves forward along ``REQUIREMENT_WORKFLOW``; cancellation is
  the single exception.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from mfg_kernel.db.base import bump_version
from mfg_kernel.db.types import round_money
from mfg_kernel.db.unit_of_work import after_commit, unit_of_work
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.events import EventSink, LoggingEventSink, Severity, emit_event
from mfg_kernel.exceptions import (
    InvalidRequirementStatusError,
    InvalidStateError,
    ManufacturingOrderNotFoundError,
    RequirementNotFoundError,
)
from mfg_kernel.logging_config import get_logger
from mfg_modules.manufacturing.models import MaterialShortage, MOStatus
from mfg_modules.manufacturing.orm import BOMEntryModel, ManufacturingOrderModel
from mfg_modules.manufacturing.service import coerce_id
from mfg_modules.procurement.models import (
    ProcurementRequirement,
    RequirementSource,
    RequirementStatus,
    StockReplenishment,
)
from mfg_modules.procurement.orm import ProcurementRequirementModel
from mfg_modules.procurement.workflows import REQUIREMENT_WORKFLOW

logger = get_logger("modules.procurement.requirements")

ENTITY = "ProcurementRequirement"
CLOSED_MO_STATUSES = (MOStatus.CANCELLED.value, MOStatus.COMPLETED.value)
OPEN_REQUIREMENT_STATUSES = (
    RequirementStatus.PENDING.value,
    RequirementStatus.ADDED_TO_PO.value,
    RequirementStatus.ORDERED.value,
)


class RequirementService:
    """Generation and status tracking for procurement requirements."""

    def __init__(
        self,
        session: Session,
        events: EventSink | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._events = events or LoggingEventSink()
        self._clock = clock or SystemClock()
        self._workflow = REQUIREMENT_WORKFLOW

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_order(self, mo_id: UUID | str) -> ManufacturingOrderModel:
        key = coerce_id(mo_id)
        row = self._session.get(ManufacturingOrderModel, key) if key else None
        if row is None:
            raise ManufacturingOrderNotFoundError(mo_id)
        if row.status in CLOSED_MO_STATUSES:
            raise InvalidStateError(
                "ManufacturingOrder", row.id, row.status, "generate_requirements",
            )
        return row

    def _load(self, requirement_id: UUID | str) -> ProcurementRequirementModel:
        key = coerce_id(requirement_id)
        row = self._session.get(ProcurementRequirementModel, key) if key else None
        if row is None:
            raise RequirementNotFoundError(requirement_id)
        return row

    def load_many(self, requirement_ids: Iterable[UUID | str]) -> list[ProcurementRequirementModel]:
        """Rows in input order (duplicates dropped); RequirementNotFoundError on any miss."""
        rows: list[ProcurementRequirementModel] = []
        seen: set[UUID] = set()
        for requirement_id in requirement_ids:
            row = self._load(requirement_id)
            if row.id not in seen:
                seen.add(row.id)
                rows.append(row)
        return rows

    def _open_entry_ids(self, mo_id: UUID) -> set[UUID]:
        stmt = (
            select(ProcurementRequirementModel.bom_entry_id)
            .where(ProcurementRequirementModel.mo_id == mo_id)
            .where(ProcurementRequirementModel.status != RequirementStatus.CANCELLED.value)
        )
        return set(self._session.scalars(stmt))

    def _new_requirement(
        self,
        order: ManufacturingOrderModel,
        entry: BOMEntryModel,
        quantity,
        source: RequirementSource,
        actor_id: str,
    ) -> ProcurementRequirementModel:
        return ProcurementRequirementModel(
            id=uuid4(),
            mo_id=order.id,
            mo_number=order.mo_number,
            bom_entry_id=entry.id,
            item_description=entry.item_name,
            sku=entry.sku,
            inventory_item_id=entry.inventory_item_id,
            quantity=quantity,
            unit=entry.unit,
            estimated_unit_cost=entry.unit_cost,
            estimated_total_cost=round_money(quantity * entry.unit_cost),
            supplier_id=entry.supplier_id,
            supplier_name=entry.supplier_name,
            source=source.value,
            status=RequirementStatus.PENDING.value,
            subsidiary=order.subsidiary,
            created_at=self._clock.now(),
            created_by=actor_id,
            version=1,
        )

    def _transition(self, row: ProcurementRequirementModel, action: str, actor_id: str) -> None:
        transition = self._workflow.find_transition(row.status, action)
        if transition is None:
            raise InvalidRequirementStatusError(row.id, row.status, action)
        bump_version(row, actor_id)
        row.status = transition.to_state

    def _emit_generated(
        self,
        order: ManufacturingOrderModel,
        created: Sequence[ProcurementRequirementModel],
        source: RequirementSource,
        actor_id: str,
    ) -> None:
        payload = {
            "mo_number": order.mo_number,
            "source": source.value,
            "requirement_count": len(created),
            "estimated_total": str(sum(r.estimated_total_cost for r in created)),
        }
        occurred_at = self._clock.now()
        after_commit(self._session, lambda: emit_event(
            self._events,
            "procurement_requirements_generated",
            entity_type="manufacturing_order",
            entity_id=order.id,
            actor_id=actor_id,
            occurred_at=occurred_at,
            severity=Severity.LOW,
            metadata=payload,
        ))

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_from_mo(self, mo_id: UUID | str, *, actor_id: str) -> list[ProcurementRequirement]:
        """One pending requirement per outsourced BOM entry not yet covered."""
        with unit_of_work(self._session, ENTITY, mo_id):
            order = self._load_order(mo_id)
            covered = self._open_entry_ids(order.id)
            created = [
                self._new_requirement(
                    order, entry, entry.quantity_required, RequirementSource.BOM_SCAN, actor_id,
                )
                for entry in order.bom_entries
                if entry.to_dto().is_outsourced and entry.id not in covered
            ]
            self._session.add_all(created)

        logger.info(
            "requirements_generated_from_bom",
            extra={
                "mo_number": order.mo_number,
                "created_count": len(created),
                "already_covered": len(covered),
            },
        )
        if created:
            self._emit_generated(order, created, RequirementSource.BOM_SCAN, actor_id)
        return [r.to_dto() for r in created]

    def generate_from_shortages(
        self,
        mo_id: UUID | str,
        shortages: Sequence[MaterialShortage],
        *,
        actor_id: str,
    ) -> list[ProcurementRequirement]:
        """One pending requirement per shortage, for the shortfall quantity."""
        with unit_of_work(self._session, ENTITY, mo_id):
            order = self._load_order(mo_id)
            covered = self._open_entry_ids(order.id)
            created: list[ProcurementRequirementModel] = []
            for shortage in shortages:
                entry = order.bom_entry(shortage.bom_entry_id)
                if entry is None or entry.id in covered or shortage.shortfall <= 0:
                    continue
                covered.add(entry.id)
                created.append(
                    self._new_requirement(
                        order, entry, shortage.shortfall, RequirementSource.SHORTAGE_AUTO, actor_id,
                    )
                )
            self._session.add_all(created)

        logger.info(
            "requirements_generated_from_shortages",
            extra={
                "mo_number": order.mo_number,
                "shortages": len(shortages),
                "created_count": len(created),
            },
        )
        if created:
            self._emit_generated(order, created, RequirementSource.SHORTAGE_AUTO, actor_id)
        return [r.to_dto() for r in created]

    def _open_replenishment_items(self) -> set[str]:
        stmt = (
            select(ProcurementRequirementModel.inventory_item_id)
            .where(ProcurementRequirementModel.source == RequirementSource.REORDER_ALERT.value)
            .where(ProcurementRequirementModel.status.in_(OPEN_REQUIREMENT_STATUSES))
        )
        return set(self._session.scalars(stmt))

    def generate_for_replenishment(
        self,
        items: Sequence[StockReplenishment],
        *,
        subsidiary: str,
        actor_id: str,
    ) -> list[ProcurementRequirement]:
        """One pending, MO-less requirement per item still to be bought in.

        Items with a non-positive quantity, or already covered by an open
        reorder requirement, are skipped.
        """
        with unit_of_work(self._session, ENTITY):
            covered = self._open_replenishment_items()
            now = self._clock.now()
            created: list[ProcurementRequirementModel] = []
            for item in items:
                if item.quantity <= 0 or item.inventory_item_id in covered:
                    continue
                covered.add(item.inventory_item_id)
                created.append(
                    ProcurementRequirementModel(
                        id=uuid4(),
                        item_description=item.item_description,
                        sku=item.sku,
                        inventory_item_id=item.inventory_item_id,
                        quantity=item.quantity,
                        unit=item.unit,
                        estimated_unit_cost=item.estimated_unit_cost,
                        estimated_total_cost=round_money(item.quantity * item.estimated_unit_cost),
                        supplier_id=item.supplier_id,
                        supplier_name=item.supplier_name,
                        source=RequirementSource.REORDER_ALERT.value,
                        status=RequirementStatus.PENDING.value,
                        urgency=item.urgency,
                        subsidiary=subsidiary,
                        created_at=now,
                        created_by=actor_id,
                        version=1,
                    )
                )
            self._session.add_all(created)

        critical = sum(1 for r in created if r.urgency == "critical")
        logger.info(
            "requirements_generated_from_reorder_alerts",
            extra={
                "subsidiary": subsidiary,
                "alert_count": len(items),
                "created_count": len(created),
                "critical_count": critical,
            },
        )
        if created:
            payload = {
                "alert_count": len(items),
                "requirements_created": len(created),
                "critical_count": critical,
            }
            after_commit(self._session, lambda: emit_event(
                self._events,
                "reorder_requirements_generated",
                entity_type="inventory",
                entity_id=subsidiary,
                actor_id=actor_id,
                occurred_at=now,
                severity=Severity.MEDIUM,
                metadata=payload,
            ))
        return [r.to_dto() for r in created]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_requirement(self, requirement_id: UUID | str) -> ProcurementRequirement:
        return self._load(requirement_id).to_dto()

    def list_requirements(
        self,
        *,
        status: RequirementStatus | None = None,
        mo_id: UUID | None = None,
        supplier_id: str | None = None,
        purchase_order_id: UUID | None = None,
    ) -> list[ProcurementRequirement]:
        return [row.to_dto() for row in self._query(
            status=status, mo_id=mo_id, supplier_id=supplier_id, purchase_order_id=purchase_order_id,
        )]

    def list_pending(self, supplier_id: str | None = None) -> list[ProcurementRequirement]:
        return self.list_requirements(status=RequirementStatus.PENDING, supplier_id=supplier_id)

    def _query(
        self,
        *,
        status: RequirementStatus | None = None,
        mo_id: UUID | None = None,
        supplier_id: str | None = None,
        purchase_order_id: UUID | None = None,
    ) -> list[ProcurementRequirementModel]:
        stmt = select(ProcurementRequirementModel).order_by(
            ProcurementRequirementModel.mo_number,
            ProcurementRequirementModel.created_at,
            ProcurementRequirementModel.item_description,
        )
        if status is not None:
            stmt = stmt.where(ProcurementRequirementModel.status == status.value)
        if mo_id is not None:
            stmt = stmt.where(ProcurementRequirementModel.mo_id == mo_id)
        if supplier_id is not None:
            stmt = stmt.where(ProcurementRequirementModel.supplier_id == supplier_id)
        if purchase_order_id is not None:
            stmt = stmt.where(ProcurementRequirementModel.purchase_order_id == purchase_order_id)
        return list(self._session.scalars(stmt))

    # ------------------------------------------------------------------
    # Status updates
    # ------------------------------------------------------------------

    def assign_to_purchase_order(
        self,
        rows: Sequence[ProcurementRequirementModel],
        po_id: UUID,
        line_ids: Mapping[UUID, UUID],
        *,
        actor_id: str,
    ) -> None:
        """Mark ``rows`` added-to-po with back-references, flushed together."""
        with unit_of_work(self._session, ENTITY):
            for row in rows:
                self._transition(row, "add_to_po", actor_id)
                row.purchase_order_id = po_id
                row.po_line_item_id = line_ids.get(row.id)

    def _advance_for_po(self, po_id: UUID, action: str, sources: tuple[str, ...], actor_id: str) -> int:
        with unit_of_work(self._session, ENTITY, po_id):
            rows = [
                r for r in self._query(purchase_order_id=po_id)
                if r.status in sources
            ]
            for row in rows:
                self._transition(row, action, actor_id)
        return len(rows)

    def mark_ordered_for_po(self, po_id: UUID, *, actor_id: str) -> int:
        """added-to-po -> ordered for every requirement on ``po_id``."""
        return self._advance_for_po(
            po_id, "mark_ordered", (RequirementStatus.ADDED_TO_PO.value,), actor_id,
        )

    def mark_received_for_po(self, po_id: UUID, *, actor_id: str) -> int:
        """added-to-po / ordered -> received for every requirement on ``po_id``."""
        return self._advance_for_po(
            po_id,
            "mark_received",
            (RequirementStatus.ADDED_TO_PO.value, RequirementStatus.ORDERED.value),
            actor_id,
        )

    def cancel_requirement(
        self,
        requirement_id: UUID | str,
        *,
        actor_id: str,
        reason: str | None = None,
    ) -> ProcurementRequirement:
        with unit_of_work(self._session, ENTITY, requirement_id):
            row = self._load(requirement_id)
            self._transition(row, "cancel", actor_id)
        logger.info(
            "requirement_cancelled",
            extra={"requirement_id": str(row.id), "mo_number": row.mo_number, "reason": reason},
        )
        return row.to_dto()
