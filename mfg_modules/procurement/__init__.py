"""
Procurement Module (``mfg_modules.procurement``).

Responsibility
--------------
Purchase order lifecycle with landed cost allocation and goods receipt,
procurement requirements generated from manufacturing orders, and
cross-order supplier consolidation of those requirements into POs.

Architecture position
---------------------
**Modules layer** -- domain models, ORM persistence, PO and requirement
workflows, a config schema, and three services:
``PurchaseOrderService``, ``RequirementService`` and
``ConsolidationService``.

Invariants enforced
-------------------
* PO totals always equal a fresh landed cost allocation of its lines.
* ``quantity_received`` never decreases and never exceeds the order.
* Requirements only move forward, except manual cancellation.
"""

from mfg_modules.procurement.config import ProcurementConfig
from mfg_modules.procurement.models import (
    ConsolidationSuggestion,
    GoodsReceipt,
    GoodsReceiptInput,
    LandedCosts,
    POApproval,
    POLineInput,
    POLineItem,
    POStatus,
    POTotals,
    ProcurementRequirement,
    PurchaseOrder,
    ReceiptLine,
    RequirementSource,
    RequirementStatus,
    SupplierGroup,
)
from mfg_modules.procurement.workflows import (
    PURCHASE_ORDER_WORKFLOW,
    REQUIREMENT_WORKFLOW,
)

__all__ = [
    "PurchaseOrder",
    "POLineInput",
    "POLineItem",
    "POApproval",
    "POTotals",
    "LandedCosts",
    "GoodsReceipt",
    "GoodsReceiptInput",
    "ReceiptLine",
    "POStatus",
    "ProcurementRequirement",
    "RequirementSource",
    "RequirementStatus",
    "SupplierGroup",
    "ConsolidationSuggestion",
    "PURCHASE_ORDER_WORKFLOW",
    "REQUIREMENT_WORKFLOW",
    "ProcurementConfig",
]
