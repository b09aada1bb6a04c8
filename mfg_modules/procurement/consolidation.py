"""
Procurement Consolidation Service (``mfg_modules.procurement.consolidation``).

Responsibility
--------------
Folds pending procurement requirements from one or more manufacturing
orders into a single new draft purchase order for one supplier, keeping
the MO <-> PO <-> requirement links in both directions, and offers the
read-side views used to choose what to consolidate.

Architecture position
---------------------
**Modules layer** -- coupling point between the manufacturing and
procurement domains.  Delegates PO creation to ``PurchaseOrderService``,
requirement status changes to ``RequirementService`` and MO links to
``ManufacturingOrderService``; all three join one unit of work.

Invariants enforced
-------------------
* Every consolidated requirement is ``pending`` and its supplier is unset
  or equal to the target supplier.  Otherwise nothing is written.
* One PO line per requirement, its description tagged with the MO number
  (or as stock replenishment for reorder-alert requirements).
* Requirements become ``added-to-po`` together, each pointing at the PO and
  its own line.
* The PO id is appended once to every distinct originating MO.

Failure modes
-------------
* ``ValidationError`` for an empty requirement list.
* ``RequirementNotFoundError`` for unknown ids.
* ``InvalidRequirementStatusError`` for non-pending requirements.
* ``SupplierMismatchError`` listing every requirement bound to another
  supplier.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from mfg_kernel.db.types import ZERO, round_money
from mfg_kernel.db.unit_of_work import unit_of_work
from mfg_kernel.exceptions import (
    InvalidRequirementStatusError,
    SupplierMismatchError,
    ValidationError,
)
from mfg_kernel.logging_config import LogContext, get_logger
from mfg_kernel.ports import SupplierDirectory
from mfg_modules.manufacturing.service import ManufacturingOrderService
from mfg_modules.procurement.models import (
    ConsolidationSuggestion,
    LandedCosts,
    POLineInput,
    ProcurementRequirement,
    PurchaseOrder,
    RequirementStatus,
    SupplierGroup,
)
from mfg_modules.procurement.requirements import RequirementService
from mfg_modules.procurement.service import PurchaseOrderService

logger = get_logger("modules.procurement.consolidation")


def tagged_description(requirement: ProcurementRequirement) -> str:
    if requirement.mo_number is None:
        return f"{requirement.item_description} (stock replenishment)"
    return f"{requirement.item_description} (MO {requirement.mo_number})"


class ConsolidationService:
    """Cross-order supplier consolidation of procurement requirements."""

    def __init__(
        self,
        session: Session,
        purchase_orders: PurchaseOrderService,
        requirements: RequirementService,
        manufacturing: ManufacturingOrderService,
        suppliers: SupplierDirectory | None = None,
    ):
        self._session = session
        self._purchase_orders = purchase_orders
        self._requirements = requirements
        self._manufacturing = manufacturing
        self._suppliers = suppliers

    def _supplier_name(
        self,
        supplier_id: str,
        requirements: Sequence[ProcurementRequirement],
    ) -> str:
        """Directory name first, then the first named requirement, then the id."""
        if self._suppliers is not None:
            try:
                supplier = self._suppliers.get_by_id(supplier_id)
            except Exception:
                logger.warning(
                    "supplier_lookup_failed",
                    extra={"supplier_id": supplier_id},
                    exc_info=True,
                )
                supplier = None
            if supplier is not None:
                return supplier.name
        return next((r.supplier_name for r in requirements if r.supplier_name), supplier_id)

    def consolidate_into_po(
        self,
        requirement_ids: Sequence[UUID | str],
        supplier_id: str,
        *,
        actor_id: str,
        supplier_name: str | None = None,
        subsidiary: str | None = None,
        landed_costs: LandedCosts | None = None,
        expected_delivery_date: date | None = None,
        notes: str | None = None,
    ) -> PurchaseOrder:
        """Create one draft PO for ``supplier_id`` from pending requirements."""
        if not requirement_ids:
            raise ValidationError("No requirements selected", field="requirement_ids")

        with LogContext.bind(actor_id=actor_id, operation="consolidate_into_po"):
            logger.info(
                "consolidation_started",
                extra={"supplier_id": supplier_id, "requirement_count": len(requirement_ids)},
            )
            with unit_of_work(self._session, "ProcurementRequirement"):
                rows = self._requirements.load_many(requirement_ids)
                for row in rows:
                    if row.status != RequirementStatus.PENDING.value:
                        raise InvalidRequirementStatusError(row.id, row.status, "add_to_po")
                mismatched = {
                    str(row.id): row.supplier_id
                    for row in rows
                    if row.supplier_id is not None and row.supplier_id != supplier_id
                }
                if mismatched:
                    raise SupplierMismatchError(supplier_id, mismatched)

                requirements = [row.to_dto() for row in rows]
                mo_ids = list(OrderedDict.fromkeys(r.mo_id for r in requirements if r.mo_id is not None))
                name = supplier_name or self._supplier_name(supplier_id, requirements)

                po = self._purchase_orders.create_purchase_order(
                    subsidiary=subsidiary or requirements[0].subsidiary,
                    supplier_id=supplier_id,
                    supplier_name=name,
                    line_items=[
                        POLineInput(
                            description=tagged_description(r),
                            quantity=r.quantity,
                            unit_cost=r.estimated_unit_cost,
                            unit=r.unit,
                            inventory_item_id=r.inventory_item_id,
                            sku=r.sku,
                            requirement_id=r.id,
                            mo_id=r.mo_id,
                        )
                        for r in requirements
                    ],
                    landed_costs=landed_costs,
                    linked_mo_ids=mo_ids,
                    linked_requirement_ids=[r.id for r in requirements],
                    expected_delivery_date=expected_delivery_date,
                    notes=notes,
                    actor_id=actor_id,
                )

                line_ids = {line.requirement_id: line.id for line in po.line_items}
                self._requirements.assign_to_purchase_order(
                    rows, po.id, line_ids, actor_id=actor_id,
                )
                for mo_id in mo_ids:
                    self._manufacturing.link_purchase_order(mo_id, po.id, actor_id=actor_id)

            logger.info(
                "consolidation_completed",
                extra={
                    "po_number": po.po_number,
                    "supplier_id": supplier_id,
                    "requirement_count": len(requirements),
                    "mo_count": len(mo_ids),
                },
            )
            return po

    def group_pending_by_supplier(self) -> list[SupplierGroup]:
        """Pending requirements grouped by supplier id, largest value first.

        Requirements without a supplier form one group with ``supplier_id``
        None, listed last.
        """
        buckets: OrderedDict[str | None, list[ProcurementRequirement]] = OrderedDict()
        for requirement in self._requirements.list_pending():
            buckets.setdefault(requirement.supplier_id, []).append(requirement)

        groups = [
            SupplierGroup(
                supplier_id=supplier_id,
                supplier_name=next((r.supplier_name for r in items if r.supplier_name), None),
                requirements=tuple(items),
                mo_ids=tuple(OrderedDict.fromkeys(r.mo_id for r in items if r.mo_id is not None)),
                total_estimated_cost=round_money(sum((r.estimated_total_cost for r in items), ZERO)),
            )
            for supplier_id, items in buckets.items()
        ]
        groups.sort(key=lambda g: (g.supplier_id is None, -g.total_estimated_cost))
        return groups

    def suggest_consolidation(
        self,
        supplier_id: str,
        exclude_mo_id: UUID | None = None,
    ) -> list[ConsolidationSuggestion]:
        """Other MOs with pending requirements for ``supplier_id``, by value descending."""
        per_mo: OrderedDict[UUID, list[ProcurementRequirement]] = OrderedDict()
        for requirement in self._requirements.list_pending(supplier_id=supplier_id):
            if requirement.mo_id is None:
                continue
            if exclude_mo_id is not None and requirement.mo_id == exclude_mo_id:
                continue
            per_mo.setdefault(requirement.mo_id, []).append(requirement)

        suggestions = [
            ConsolidationSuggestion(
                mo_id=mo_id,
                mo_number=items[0].mo_number,
                requirement_ids=tuple(r.id for r in items),
                total_estimated_cost=round_money(sum((r.estimated_total_cost for r in items), ZERO)),
                item_count=len(items),
            )
            for mo_id, items in per_mo.items()
        ]
        suggestions.sort(key=lambda s: s.total_estimated_cost, reverse=True)
        logger.debug(
            "consolidation_suggestions",
            extra={"supplier_id": supplier_id, "suggestion_count": len(suggestions)},
        )
        return suggestions
