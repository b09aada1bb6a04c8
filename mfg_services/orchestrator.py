"""
mfg_services.orchestrator -- Dependency container for the manufacturing services.

Responsibility:
    Creates every module service exactly once for a session and wires
    them together: the requirement hook on the PO manager, the MO manager
    inside approval, costing, consolidation and the bulk orchestrator.

Architecture position:
    Services -- top of the service layer and the only place module
    services are constructed and composed.

Invariants enforced:
    - Single-instance lifecycle: one service of each kind per container.
    - All services share the same Session, EventSink and Clock.

Usage:
    from mfg_services.orchestrator import build_orchestrator

    services = build_orchestrator(session, inventory)
    services.manufacturing.create_order(...)
    services.bulk.bulk_approve(mo_ids, actor_id="u-1")
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.orm import Session

from mfg_config import ManufacturingSettings, get_active_settings
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.events import EventSink, LoggingEventSink
from mfg_kernel.ports import InventoryAdapter, SupplierDirectory
from mfg_modules.approval.service import ApprovalWorkflowService
from mfg_modules.costing.service import CostVarianceService
from mfg_modules.manufacturing.service import ManufacturingOrderService
from mfg_modules.procurement.consolidation import ConsolidationService
from mfg_modules.procurement.requirements import RequirementService
from mfg_modules.procurement.service import PurchaseOrderService
from mfg_services.bulk_operations import BulkOperationsService
from mfg_services.inventory_integration import InventoryIntegrationService


class ManufacturingOrchestrator:
    """Central factory for the manufacturing module services.

    Non-goals:
        Does NOT own the Session lifecycle; each service operation manages
        its own unit of work on the shared session.
    """

    def __init__(
        self,
        session: Session,
        inventory: InventoryAdapter,
        settings: ManufacturingSettings,
        events: EventSink | None = None,
        clock: Clock | None = None,
        suppliers: SupplierDirectory | None = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.events = events or LoggingEventSink()
        self.clock = clock or SystemClock()

        self.manufacturing = ManufacturingOrderService(
            session, inventory, self.events, self.clock, settings.manufacturing,
        )
        self.requirements = RequirementService(session, self.events, self.clock)
        self.purchase_orders = PurchaseOrderService(
            session, inventory, self.events, self.clock, settings.procurement,
            requirements=self.requirements,
        )
        self.consolidation = ConsolidationService(
            session, self.purchase_orders, self.requirements, self.manufacturing,
            suppliers=suppliers,
        )
        self.approvals = ApprovalWorkflowService(
            session, self.manufacturing, self.events, self.clock, settings.approval,
        )
        self.costing = CostVarianceService(
            session, self.manufacturing, self.events, self.clock, settings.costing,
        )
        self.integration = InventoryIntegrationService(
            inventory, self.manufacturing, self.requirements, self.consolidation,
        )
        self.bulk = BulkOperationsService(
            self.manufacturing, self.requirements, self.integration,
        )


def build_orchestrator(
    session: Session,
    inventory: InventoryAdapter,
    config_path: Path | None = None,
    events: EventSink | None = None,
    clock: Clock | None = None,
    suppliers: SupplierDirectory | None = None,
) -> ManufacturingOrchestrator:
    """Build a ManufacturingOrchestrator from the active settings file."""
    return ManufacturingOrchestrator(
        session,
        inventory,
        get_active_settings(config_path),
        events=events,
        clock=clock,
        suppliers=suppliers,
    )
