"""
Approval Module (``mfg_modules.approval``).

Responsibility
--------------
Amount-banded, multi-level approval of manufacturing orders with role
checks, delegation and SLA escalation.

Architecture position
---------------------
**Modules layer** -- request model and ORM, band configuration, and
``ApprovalWorkflowService``.  Routing itself is the pure
``mfg_engines.approval`` engine.
"""

from mfg_modules.approval.config import DEFAULT_THRESHOLDS, ApprovalConfig
from mfg_modules.approval.models import ApprovalRequest

__all__ = [
    "ApprovalConfig",
    "ApprovalRequest",
    "DEFAULT_THRESHOLDS",
]
