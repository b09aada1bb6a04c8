"""Persistence primitives: declarative base, engine, units of work."""

from mfg_kernel.db.base import Base, TrackedBase, UUIDString, bump_version, version_column
from mfg_kernel.db.types import round_money, to_decimal
from mfg_kernel.db.unit_of_work import unit_of_work

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "bump_version",
    "version_column",
    "round_money",
    "to_decimal",
    "unit_of_work",
]
