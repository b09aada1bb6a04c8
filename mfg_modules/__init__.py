"""
Manufacturing Modules.

Lifecycle managers over the kernel and engines.  Each module contains:
- Domain models (the nouns)
- ORM persistence with optimistic version counters
- Workflows (state machines)
- Configuration schemas
- A service owning the transaction boundary

Modules:
- Manufacturing: Manufacturing orders, stages, reservations, consumption
- Procurement: Purchase orders, receiving, requirements, consolidation
- Approval: Multi-level MO approval chains with SLA escalation
- Costing: Labor time entries and cost variance
"""

from mfg_modules import (
    approval,
    costing,
    manufacturing,
    procurement,
)

__all__ = [
    "approval",
    "costing",
    "manufacturing",
    "procurement",
]
