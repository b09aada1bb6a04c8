"""
Human-readable document numbers (``mfg_kernel.numbering``).

``MO-2024-0007`` / ``PO-2024-0012`` / ``PO-FIN-2024-0003``.  The sequence is
the count of existing documents for the same subsidiary, prefix and year,
plus one.  Numbers are display identifiers only: they are not gap-free and
two concurrent creators can compute the same value, in which case the unique
constraint on the number column rejects the second insert.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

SEQUENCE_WIDTH = 4


def format_number(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:0{SEQUENCE_WIDTH}d}"


def next_document_number(
    session: Session,
    *,
    number_column: Any,
    subsidiary_column: Any,
    subsidiary: str,
    prefix: str,
    at: datetime,
) -> str:
    """Count this year's documents for ``subsidiary`` under ``prefix`` and add one."""
    year = at.year
    pattern = f"{prefix}-{year}-%"
    stmt = (
        select(func.count())
        .where(subsidiary_column == subsidiary)
        .where(number_column.like(pattern))
    )
    existing = session.execute(stmt).scalar_one()
    return format_number(prefix, year, existing + 1)
