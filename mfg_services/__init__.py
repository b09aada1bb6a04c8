"""
Manufacturing Services.

Cross-module orchestration over the lifecycle managers:
- Bulk operations over batches of manufacturing orders
- Inventory integration (availability, shortage procurement, reorder alerts)
- The orchestrator that wires every module service for a session
"""

from mfg_services.bulk_operations import (
    BulkItemResult,
    BulkOperationResult,
    BulkOperationsService,
)
from mfg_services.inventory_integration import (
    AvailabilityCheck,
    AvailabilityStatus,
    InventoryIntegrationService,
    MaterialAvailability,
    OverallAvailability,
    ReorderAlert,
    ReorderUrgency,
    ShortageProcurement,
)
from mfg_services.orchestrator import ManufacturingOrchestrator, build_orchestrator

__all__ = [
    "AvailabilityCheck",
    "AvailabilityStatus",
    "BulkItemResult",
    "BulkOperationResult",
    "BulkOperationsService",
    "InventoryIntegrationService",
    "ManufacturingOrchestrator",
    "MaterialAvailability",
    "OverallAvailability",
    "ReorderAlert",
    "ReorderUrgency",
    "ShortageProcurement",
    "build_orchestrator",
]
