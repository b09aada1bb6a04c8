"""
mfg_services.inventory_integration -- Stock availability and shortage procurement.

Responsibility:
    Read-side stock analysis of a manufacturing order's BOM against the
    inventory ledger, turning shortfalls into procurement requirements (and
    optionally a draft purchase order), reorder-point monitoring with stock
    replenishment requirements, and per-entry reservation and consumption
    progress for an order.

Architecture position:
    Services -- orchestration over the manufacturing and procurement
    modules.  Stock figures come from ``InventoryAdapter.aggregated_stock``;
    nothing here reserves or moves stock.

Invariants enforced:
    - Entries without an inventory item are ``no-inventory`` and count their
      full BOM total toward the estimated shortage value.
    - Any unavailable or no-inventory entry blocks the order; otherwise any
      partial entry makes the order partial; otherwise it is ready.
    - A draft PO is created from shortages only when asked and when every
      generated requirement names the same supplier.
    - Reorder-alert requirements are raised only for items with a positive
      shortfall and not already covered by an open replenishment requirement.

Failure modes:
    - ManufacturingOrderNotFoundError for unknown orders.
    - A failing ``aggregated_stock`` call is logged and the entry is treated
      as unavailable.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from mfg_kernel.db.types import ZERO, round_money
from mfg_kernel.logging_config import LogContext, get_logger
from mfg_kernel.ports import AggregatedStock, InventoryAdapter
from mfg_modules.manufacturing.models import BOMEntry, MaterialShortage, MOStatus
from mfg_modules.manufacturing.service import ManufacturingOrderService
from mfg_modules.procurement.consolidation import ConsolidationService
from mfg_modules.procurement.models import (
    ProcurementRequirement,
    PurchaseOrder,
    StockReplenishment,
)
from mfg_modules.procurement.requirements import RequirementService

logger = get_logger("services.inventory_integration")

HUNDRED = Decimal("100")
OPEN_MO_STATUSES = (MOStatus.DRAFT, MOStatus.APPROVED, MOStatus.IN_PROGRESS)


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    PARTIAL = "partial"
    UNAVAILABLE = "unavailable"
    NO_INVENTORY = "no-inventory"


class OverallAvailability(str, Enum):
    READY = "ready"
    PARTIAL = "partial"
    BLOCKED = "blocked"


class ReorderUrgency(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class StockProgress(str, Enum):
    """How far an order has drawn one BOM entry's material."""
    PENDING = "pending"
    RESERVED = "reserved"
    PARTIAL_CONSUMED = "partial-consumed"
    FULLY_CONSUMED = "fully-consumed"


_URGENCY_ORDER = {
    ReorderUrgency.CRITICAL: 0,
    ReorderUrgency.HIGH: 1,
    ReorderUrgency.MEDIUM: 2,
    ReorderUrgency.LOW: 3,
}


@dataclass(frozen=True)
class MaterialAvailability:
    bom_entry_id: UUID
    item_name: str
    inventory_item_id: str | None
    quantity_required: Decimal
    quantity_available: Decimal
    quantity_reserved: Decimal
    quantity_on_hand: Decimal
    shortage_qty: Decimal
    coverage_percent: Decimal
    status: AvailabilityStatus
    warehouse_id: str | None = None
    supplier_id: str | None = None
    supplier_name: str | None = None

    @property
    def is_short(self) -> bool:
        return self.status != AvailabilityStatus.AVAILABLE


@dataclass(frozen=True)
class AvailabilityCheck:
    mo_id: UUID
    mo_number: str
    overall_status: OverallAvailability
    items: tuple[MaterialAvailability, ...]
    estimated_shortage_value: Decimal
    currency: str

    def count(self, status: AvailabilityStatus) -> int:
        return sum(1 for item in self.items if item.status == status)

    @property
    def shortages(self) -> tuple[MaterialAvailability, ...]:
        return tuple(item for item in self.items if item.is_short)


@dataclass(frozen=True)
class ShortageProcurement:
    requirements: tuple[ProcurementRequirement, ...]
    purchase_order: PurchaseOrder | None = None
    total_shortage_value: Decimal = ZERO


@dataclass(frozen=True)
class ReorderAlert:
    inventory_item_id: str
    quantity_available: Decimal
    reorder_level: Decimal
    shortage_qty: Decimal
    linked_mo_count: int
    urgency: ReorderUrgency
    item_name: str | None = None
    estimated_unit_cost: Decimal = ZERO
    supplier_id: str | None = None
    supplier_name: str | None = None


@dataclass(frozen=True)
class BOMStockStatus:
    bom_entry_id: UUID
    item_name: str
    inventory_item_id: str | None
    quantity_required: Decimal
    quantity_reserved: Decimal
    quantity_consumed: Decimal
    quantity_remaining: Decimal
    status: StockProgress


def _coverage(available: Decimal, required: Decimal) -> Decimal:
    if available <= 0:
        return ZERO
    return min(HUNDRED, round_money(available / required * HUNDRED))


def _classify(available: Decimal, required: Decimal) -> AvailabilityStatus:
    if available >= required:
        return AvailabilityStatus.AVAILABLE
    if available > 0:
        return AvailabilityStatus.PARTIAL
    return AvailabilityStatus.UNAVAILABLE


def _urgency(available: Decimal, reorder_level: Decimal, linked_mo_count: int) -> ReorderUrgency:
    shortage_percent = (
        (reorder_level - available) / reorder_level * HUNDRED if reorder_level else ZERO
    )
    if available <= 0 or linked_mo_count > 3:
        return ReorderUrgency.CRITICAL
    if shortage_percent > 50 or linked_mo_count > 1:
        return ReorderUrgency.HIGH
    if shortage_percent > 25:
        return ReorderUrgency.MEDIUM
    return ReorderUrgency.LOW


class InventoryIntegrationService:
    """Availability analysis and shortage-driven procurement for MOs."""

    def __init__(
        self,
        inventory: InventoryAdapter,
        manufacturing: ManufacturingOrderService,
        requirements: RequirementService,
        consolidation: ConsolidationService,
    ):
        self._inventory = inventory
        self._manufacturing = manufacturing
        self._requirements = requirements
        self._consolidation = consolidation

    def _stock(self, item_id: str) -> AggregatedStock:
        try:
            return self._inventory.aggregated_stock(item_id)
        except Exception:
            logger.warning(
                "aggregated_stock_lookup_failed",
                extra={"inventory_item_id": item_id},
                exc_info=True,
            )
            return AggregatedStock(total_on_hand=ZERO, total_reserved=ZERO, total_available=ZERO)

    def _entry_availability(self, entry: BOMEntry) -> MaterialAvailability:
        if not entry.inventory_item_id:
            return MaterialAvailability(
                bom_entry_id=entry.id,
                item_name=entry.item_name,
                inventory_item_id=None,
                quantity_required=entry.quantity_required,
                quantity_available=ZERO,
                quantity_reserved=ZERO,
                quantity_on_hand=ZERO,
                shortage_qty=entry.quantity_required,
                coverage_percent=ZERO,
                status=AvailabilityStatus.NO_INVENTORY,
                warehouse_id=entry.warehouse_id,
                supplier_id=entry.supplier_id,
                supplier_name=entry.supplier_name,
            )

        stock = self._stock(entry.inventory_item_id)
        available = stock.total_available
        return MaterialAvailability(
            bom_entry_id=entry.id,
            item_name=entry.item_name,
            inventory_item_id=entry.inventory_item_id,
            quantity_required=entry.quantity_required,
            quantity_available=available,
            quantity_reserved=stock.total_reserved,
            quantity_on_hand=stock.total_on_hand,
            shortage_qty=max(entry.quantity_required - available, ZERO),
            coverage_percent=_coverage(available, entry.quantity_required),
            status=_classify(available, entry.quantity_required),
            warehouse_id=entry.warehouse_id,
            supplier_id=entry.supplier_id,
            supplier_name=entry.supplier_name,
        )

    def check_material_availability(self, mo_id: UUID | str) -> AvailabilityCheck:
        """Per-entry and overall stock coverage for an order's BOM."""
        order = self._manufacturing.get_order(mo_id)
        items = tuple(self._entry_availability(entry) for entry in order.bom)

        shortage_value = ZERO
        for item, entry in zip(items, order.bom):
            if item.status == AvailabilityStatus.NO_INVENTORY:
                shortage_value += entry.total_cost
            elif item.status != AvailabilityStatus.AVAILABLE:
                shortage_value += item.shortage_qty * entry.unit_cost

        statuses = {item.status for item in items}
        if statuses & {AvailabilityStatus.UNAVAILABLE, AvailabilityStatus.NO_INVENTORY}:
            overall = OverallAvailability.BLOCKED
        elif AvailabilityStatus.PARTIAL in statuses:
            overall = OverallAvailability.PARTIAL
        else:
            overall = OverallAvailability.READY

        result = AvailabilityCheck(
            mo_id=order.id,
            mo_number=order.mo_number,
            overall_status=overall,
            items=items,
            estimated_shortage_value=round_money(shortage_value),
            currency=order.cost_summary.currency,
        )
        logger.info(
            "material_availability_checked",
            extra={
                "mo_number": order.mo_number,
                "overall_status": overall.value,
                "shortage_count": len(result.shortages),
                "estimated_shortage_value": str(result.estimated_shortage_value),
            },
        )
        return result

    def generate_procurement_from_shortages(
        self,
        mo_id: UUID | str,
        *,
        actor_id: str,
        auto_create_po: bool = False,
        availability: AvailabilityCheck | None = None,
    ) -> ShortageProcurement:
        """Requirements for every shortfall; a draft PO when they share one supplier."""
        with LogContext.bind(entity_id=str(mo_id), actor_id=actor_id, operation="shortage_procurement"):
            check = availability or self.check_material_availability(mo_id)
            shortages = [
                MaterialShortage(
                    bom_entry_id=item.bom_entry_id,
                    item_name=item.item_name,
                    inventory_item_id=item.inventory_item_id or "",
                    warehouse_id=item.warehouse_id or "",
                    required=item.quantity_required,
                    available=item.quantity_available,
                )
                for item in check.shortages
                if item.shortage_qty > 0
            ]
            if not shortages:
                return ShortageProcurement(requirements=())

            requirements = self._requirements.generate_from_shortages(
                check.mo_id, shortages, actor_id=actor_id,
            )
            total = round_money(sum((r.estimated_total_cost for r in requirements), ZERO))

            purchase_order = None
            suppliers = {r.supplier_id for r in requirements}
            if auto_create_po and len(suppliers) == 1 and None not in suppliers:
                supplier_id = suppliers.pop()
                purchase_order = self._consolidation.consolidate_into_po(
                    [r.id for r in requirements],
                    supplier_id,
                    actor_id=actor_id,
                    notes=f"Auto-generated from MO {check.mo_number} shortage detection",
                )
            elif auto_create_po:
                logger.info(
                    "shortage_po_not_created",
                    extra={"mo_number": check.mo_number, "supplier_count": len(suppliers)},
                )

            # Re-read: consolidation moved them to added-to-po
            return ShortageProcurement(
                requirements=tuple(self._requirements.get_requirement(r.id) for r in requirements),
                purchase_order=purchase_order,
                total_shortage_value=total,
            )

    def get_reorder_alerts(
        self,
        item_ids: Sequence[str],
        reorder_points: Mapping[str, Decimal],
    ) -> list[ReorderAlert]:
        """Items at or below their reorder point, most urgent first.

        Items without a reorder point are skipped.  Urgency rises with the
        depth of the shortfall and the number of open orders using the item.
        """
        open_orders = [
            order
            for status in OPEN_MO_STATUSES
            for order in self._manufacturing.list_orders(status=status)
        ]
        alerts: list[ReorderAlert] = []
        for item_id in item_ids:
            reorder_level = reorder_points.get(item_id)
            if reorder_level is None:
                continue
            available = self._stock(item_id).total_available
            if available > reorder_level:
                continue
            using = [
                entry
                for order in open_orders
                for entry in order.bom
                if entry.inventory_item_id == item_id
            ]
            linked = sum(
                1 for order in open_orders
                if any(entry.inventory_item_id == item_id for entry in order.bom)
            )
            # Catalog details come from the first open BOM line using the item
            sample = using[0] if using else None
            alerts.append(
                ReorderAlert(
                    inventory_item_id=item_id,
                    quantity_available=available,
                    reorder_level=reorder_level,
                    shortage_qty=max(reorder_level - available, ZERO),
                    linked_mo_count=linked,
                    urgency=_urgency(available, reorder_level, linked),
                    item_name=sample.item_name if sample else None,
                    estimated_unit_cost=sample.unit_cost if sample else ZERO,
                    supplier_id=sample.supplier_id if sample else None,
                    supplier_name=sample.supplier_name if sample else None,
                )
            )
        alerts.sort(key=lambda a: _URGENCY_ORDER[a.urgency])
        logger.info("reorder_alerts_computed", extra={"alert_count": len(alerts)})
        return alerts

    def generate_procurement_from_reorder_alerts(
        self,
        alerts: Sequence[ReorderAlert],
        *,
        subsidiary: str,
        actor_id: str,
        reorder_quantities: Mapping[str, Decimal] | None = None,
    ) -> list[ProcurementRequirement]:
        """Stock replenishment requirements for items below their reorder point.

        The quantity is the item's configured reorder quantity, falling back
        to the shortfall below the reorder point.  Items already covered by
        an open replenishment requirement are skipped.
        """
        quantities = reorder_quantities or {}
        items = [
            StockReplenishment(
                inventory_item_id=alert.inventory_item_id,
                item_description=alert.item_name or alert.inventory_item_id,
                quantity=quantities.get(alert.inventory_item_id) or alert.shortage_qty,
                estimated_unit_cost=alert.estimated_unit_cost,
                urgency=alert.urgency.value,
                supplier_id=alert.supplier_id,
                supplier_name=alert.supplier_name,
            )
            for alert in alerts
            if alert.shortage_qty > 0
        ]
        with LogContext.bind(actor_id=actor_id, operation="reorder_procurement"):
            return self._requirements.generate_for_replenishment(
                items, subsidiary=subsidiary, actor_id=actor_id,
            )

    def get_mo_stock_status(self, mo_id: UUID | str) -> list[BOMStockStatus]:
        """Reserved and consumed quantities per BOM entry of an order.

        Consumption is recorded per inventory item, so it is attributed to
        the first BOM entry that uses the item.
        """
        order = self._manufacturing.get_order(mo_id)
        reserved: dict[UUID, Decimal] = {}
        for reservation in order.active_reservations:
            reserved[reservation.bom_entry_id] = (
                reserved.get(reservation.bom_entry_id, ZERO) + reservation.quantity
            )
        consumed: dict[str, Decimal] = {}
        for consumption in order.material_consumptions:
            consumed[consumption.inventory_item_id] = (
                consumed.get(consumption.inventory_item_id, ZERO) + consumption.quantity
            )

        statuses: list[BOMStockStatus] = []
        seen_items: set[str] = set()
        for entry in order.bom:
            used = ZERO
            item_id = entry.inventory_item_id
            if item_id and item_id not in seen_items:
                seen_items.add(item_id)
                used = consumed.get(item_id, ZERO)
            held = reserved.get(entry.id, ZERO)
            if used >= entry.quantity_required:
                progress = StockProgress.FULLY_CONSUMED
            elif used > 0:
                progress = StockProgress.PARTIAL_CONSUMED
            elif held > 0:
                progress = StockProgress.RESERVED
            else:
                progress = StockProgress.PENDING
            statuses.append(
                BOMStockStatus(
                    bom_entry_id=entry.id,
                    item_name=entry.item_name,
                    inventory_item_id=item_id,
                    quantity_required=entry.quantity_required,
                    quantity_reserved=held,
                    quantity_consumed=used,
                    quantity_remaining=max(entry.quantity_required - used, ZERO),
                    status=progress,
                )
            )
        return statuses
