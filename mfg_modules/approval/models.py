"""
Approval Domain Models.

The approval request raised for a manufacturing order: its amount band,
level chain and overall status.  Chain level and threshold value objects
live in ``mfg_kernel.domain.approval`` so the pure engine can share them.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from mfg_kernel.domain.approval import ChainLevel, LevelStatus, RequestStatus


@dataclass(frozen=True)
class ApprovalRequest:
    """Multi-level approval request for one MO."""
    id: UUID
    mo_id: UUID
    mo_number: str
    threshold_id: str
    total_amount: Decimal
    currency: str
    approval_chain: tuple[ChainLevel, ...]
    current_level: int
    total_levels: int
    status: RequestStatus
    requested_by: str
    requested_at: datetime
    expires_at: datetime | None = None
    completed_at: datetime | None = None
    version: int = 1

    @property
    def current_entry(self) -> ChainLevel | None:
        for entry in self.approval_chain:
            if entry.level == self.current_level:
                return entry
        return None

    @property
    def approved_levels(self) -> int:
        return sum(1 for e in self.approval_chain if e.status == LevelStatus.APPROVED)
