"""
Settings Loader (``mfg_config.loader``).

Responsibility
--------------
Reads a settings YAML file and builds the four module configuration
schemas from its sections.  Runtime callers go through
``mfg_config.get_active_settings()``; this module is the parsing layer
underneath it and the seam tests use to load ad-hoc files.

Invariants enforced
-------------------
* YAML is read with ``yaml.safe_load`` only.
* Unknown top-level sections are rejected; unknown keys inside a section
  are ignored by the module ``from_dict`` constructors.
* ``compute_checksum`` is deterministic over the parsed mapping.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML, a non-mapping document or section, or a value a module
  schema rejects  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from mfg_kernel.exceptions import ConfigurationError
from mfg_modules.approval.config import ApprovalConfig
from mfg_modules.costing.config import CostingConfig
from mfg_modules.manufacturing.config import ManufacturingConfig
from mfg_modules.procurement.config import ProcurementConfig

SECTIONS = ("manufacturing", "procurement", "approval", "costing")


@dataclass(frozen=True)
class ManufacturingSettings:
    """Module configuration resolved from one settings document."""

    manufacturing: ManufacturingConfig
    procurement: ProcurementConfig
    approval: ApprovalConfig
    costing: CostingConfig
    checksum: str
    source: str = "<defaults>"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Parse ``path``; an empty file yields an empty mapping."""
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Malformed settings file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Settings section '{name}' must be a mapping")
    return section


def parse_settings(data: dict[str, Any], source: str = "<dict>") -> ManufacturingSettings:
    """Build settings from an already-parsed mapping."""
    unknown = sorted(set(data) - set(SECTIONS))
    if unknown:
        raise ConfigurationError(f"Unknown settings sections: {', '.join(unknown)}")
    try:
        return ManufacturingSettings(
            manufacturing=ManufacturingConfig.from_dict(_section(data, "manufacturing")),
            procurement=ProcurementConfig.from_dict(_section(data, "procurement")),
            approval=ApprovalConfig.from_dict(_section(data, "approval")),
            costing=CostingConfig.from_dict(_section(data, "costing")),
            checksum=compute_checksum(data),
            source=source,
        )
    except ConfigurationError:
        raise
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise ConfigurationError(f"Invalid settings in {source}: {exc}") from exc


def load_settings(path: Path) -> ManufacturingSettings:
    return parse_settings(load_yaml_file(path), source=str(path))
