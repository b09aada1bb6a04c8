"""
Collaborator ports (``mfg_kernel.ports``).

Responsibility
--------------
Typed ``Protocol`` contracts for the external systems the lifecycle managers
call as black boxes: the inventory ledger and the supplier directory.  Stock
arithmetic and supplier fuzzy matching live behind these ports and are not
implemented here.

Contract notes
--------------
* ``reserve`` reports insufficient stock through ``ReservationResult.success``
  rather than raising.  Any exception it raises is treated the same as an
  unsuccessful reservation by the MO manager.
* ``consume`` / ``release`` / ``receive_stock`` signal failure by raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class ReservationResult:
    success: bool
    available_qty: Decimal
    stock_level_id: str | None = None


@dataclass(frozen=True)
class AggregatedStock:
    total_on_hand: Decimal
    total_reserved: Decimal
    total_available: Decimal


@dataclass(frozen=True)
class SupplierRef:
    id: str
    name: str
    subsidiary: str | None = None
    active: bool = True


@runtime_checkable
class InventoryAdapter(Protocol):
    """Inventory ledger operations consumed by the MO and PO managers."""

    def reserve(
        self,
        item_id: str,
        warehouse_id: str,
        sku: str | None,
        name: str,
        quantity: Decimal,
        reference_id: str,
        user_id: str,
    ) -> ReservationResult:
        ...

    def consume(
        self,
        item_id: str,
        warehouse_id: str,
        quantity: Decimal,
        reference_id: str,
        user_id: str,
    ) -> None:
        ...

    def release(
        self,
        item_id: str,
        warehouse_id: str,
        quantity: Decimal,
        reference_id: str,
        user_id: str,
    ) -> None:
        ...

    def aggregated_stock(self, item_id: str) -> AggregatedStock:
        ...

    def receive_stock(
        self,
        item_id: str,
        warehouse_id: str,
        sku: str | None,
        description: str,
        quantity: Decimal,
        purchase_order_id: str,
        user_id: str,
        note: str,
    ) -> None:
        ...

    def update_cost_from_receipt(
        self,
        item_id: str,
        quantity: Decimal,
        unit_cost: Decimal,
    ) -> None:
        """Fold a receipt into the item's weighted-average cost."""
        ...


@runtime_checkable
class SupplierDirectory(Protocol):
    """Read-only supplier lookup."""

    def get_by_id(self, supplier_id: str) -> SupplierRef | None:
        ...

    def search_active(self, term: str, subsidiary: str | None = None) -> Sequence[SupplierRef]:
        ...

    def resolve_from_text(self, text: str) -> SupplierRef | None:
        ...
