"""
Module: mfg_modules.approval.orm
Responsibility: SQLAlchemy ORM persistence for MO approval requests.

Architecture position: Modules > Approval > ORM.  Inherits from TrackedBase.
    The level chain is stored as a JSON document on the request row; it is
    always rewritten whole from the engine's output.

Invariants enforced:
    - ``version`` is the optimistic lock counter.
    - Chain datetimes are stored as ISO-8601 strings with offset.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from mfg_kernel.db.base import TrackedBase, version_column
from mfg_kernel.domain.approval import ChainLevel, LevelStatus, RequestStatus
from mfg_modules.approval.models import ApprovalRequest


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def chain_to_json(chain: tuple[ChainLevel, ...]) -> list[dict]:
    return [
        {
            "level": e.level,
            "name": e.name,
            "required_role": e.required_role,
            "status": e.status.value,
            "sla_hours": e.sla_hours,
            "sla_due_at": _iso(e.sla_due_at),
            "acted_by": e.acted_by,
            "acted_at": _iso(e.acted_at),
            "notes": e.notes,
            "delegated_to": e.delegated_to,
        }
        for e in chain
    ]


def chain_from_json(data: list[dict]) -> tuple[ChainLevel, ...]:
    return tuple(
        ChainLevel(
            level=d["level"],
            name=d["name"],
            required_role=d["required_role"],
            status=LevelStatus(d["status"]),
            sla_hours=d["sla_hours"],
            sla_due_at=_parse(d["sla_due_at"]),
            acted_by=d.get("acted_by"),
            acted_at=_parse(d.get("acted_at")),
            notes=d.get("notes"),
            delegated_to=d.get("delegated_to"),
        )
        for d in data
    )


class ApprovalRequestModel(TrackedBase):
    """
    ORM model for approval requests.

    Maps to: mfg_modules.approval.models.ApprovalRequest.
    """

    __tablename__ = "mfg_approval_requests"

    __table_args__ = (
        Index("idx_mfg_apr_mo", "mo_id"),
        Index("idx_mfg_apr_status", "status"),
    )

    mo_id: Mapped[UUID] = mapped_column()
    mo_number: Mapped[str] = mapped_column(String(50))
    threshold_id: Mapped[str] = mapped_column(String(50))
    total_amount: Mapped[Decimal] = mapped_column()
    currency: Mapped[str] = mapped_column(String(3), default="UGX")
    approval_chain: Mapped[list] = mapped_column(JSON, default=list)
    current_level: Mapped[int] = mapped_column(Integer)
    total_levels: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default=RequestStatus.PENDING.value)
    requested_by: Mapped[str] = mapped_column(String(100))
    requested_at: Mapped[datetime] = mapped_column()
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = version_column()

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    def chain(self) -> tuple[ChainLevel, ...]:
        return chain_from_json(self.approval_chain or [])

    def set_chain(self, chain: tuple[ChainLevel, ...]) -> None:
        self.approval_chain = chain_to_json(chain)

    def to_dto(self) -> ApprovalRequest:
        return ApprovalRequest(
            id=self.id,
            mo_id=self.mo_id,
            mo_number=self.mo_number,
            threshold_id=self.threshold_id,
            total_amount=self.total_amount,
            currency=self.currency,
            approval_chain=self.chain(),
            current_level=self.current_level,
            total_levels=self.total_levels,
            status=RequestStatus(self.status),
            requested_by=self.requested_by,
            requested_at=self.requested_at,
            expires_at=self.expires_at,
            completed_at=self.completed_at,
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<ApprovalRequestModel {self.mo_number} L{self.current_level} [{self.status}]>"
