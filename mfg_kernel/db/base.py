"""
Module: mfg_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, the type annotation map, the TrackedBase
    audit mixin, and the version counter helpers used for optimistic locking.
Architecture position: Kernel > DB.  Lowest-level import target for every
    module ``orm.py``.  MUST NOT import from modules, services or engines.

Invariants enforced:
    - UUID primary keys stored as String(36) for cross-database portability.
    - Decimal maps to Numeric(38, 9).  NEVER use float for money.
    - datetimes are always returned timezone-aware (UTC), including on
      backends such as SQLite that drop tzinfo on storage.
    - Versioned rows carry an application-managed ``version`` counter that
      SQLAlchemy includes in every UPDATE's WHERE clause.

Failure modes:
    - StaleDataError on flush when a versioned row was changed by another
      transaction since it was read.  Translated to OptimisticLockError by
      ``mfg_kernel.db.unit_of_work``.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime that survives backends without tz support.

    Guarantees:
        - Naive values read back are tagged UTC.
        - Aware values are normalized to UTC before storage.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all manufacturing ORM models.

    Guarantees:
        - id is always a uuid4-generated UUID.
        - Decimal maps to Numeric(38, 9).
        - datetime maps to UTCDateTime.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamp and actor tracking.

    ``created_by`` / ``updated_by`` are opaque user ids supplied by the
    caller (authentication is an external concern).
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)


def version_column() -> Any:
    """Column definition for an application-managed optimistic lock counter.

    Usage inside a model body::

        version: Mapped[int] = version_column()
        __mapper_args__ = {"version_id_col": version, "version_id_generator": False}
    """
    return mapped_column(Integer, nullable=False, default=1)


def bump_version(row: Any, actor_id: str | None = None) -> None:
    """Mark a versioned row as modified.

    The next flush issues ``UPDATE ... WHERE version = <old>`` and stores
    ``old + 1``.  Every business write on a versioned aggregate calls this,
    including writes that only touch child rows.
    """
    row.version = (row.version or 0) + 1
    if actor_id is not None:
        row.updated_by = actor_id


# Re-export UUID for convenience
UUID = PyUUID
