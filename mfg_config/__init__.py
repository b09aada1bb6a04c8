"""
mfg_config -- single public entrypoint for manufacturing settings.

Responsibility:
    ``get_active_settings()`` resolves the settings file (an explicit path,
    else the ``MFG_CONFIG_PATH`` environment variable, else the packaged
    ``defaults.yaml``), parses it and returns a frozen
    ``ManufacturingSettings`` holding every module configuration.

Architecture position:
    Configuration -- sits above ``mfg_kernel`` and the module config
    schemas.  The kernel never imports from ``mfg_config``.

Audit relevance:
    Every successful call emits an ``MFG_CONFIG_TRACE`` log entry with the
    source path and checksum, tying behaviour to an exact settings version.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from mfg_config.loader import (
    ManufacturingSettings,
    compute_checksum,
    load_settings,
    parse_settings,
)

_logger = logging.getLogger("mfg_kernel.config")

CONFIG_PATH_ENV = "MFG_CONFIG_PATH"
DEFAULT_SETTINGS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_settings(config_path: Path | None = None) -> ManufacturingSettings:
    """Load the active settings.

    Raises:
        FileNotFoundError: the resolved settings file does not exist.
        ConfigurationError: the file is malformed or holds invalid values.
    """
    env_path = os.environ.get(CONFIG_PATH_ENV)
    path = config_path or (Path(env_path) if env_path else DEFAULT_SETTINGS_PATH)
    settings = load_settings(path)

    _logger.info(
        "MFG_CONFIG_TRACE",
        extra={
            "trace_type": "MFG_CONFIG_TRACE",
            "config_source": settings.source,
            "checksum": settings.checksum,
            "threshold_count": len(settings.approval.thresholds),
        },
    )
    return settings


__all__ = [
    "CONFIG_PATH_ENV",
    "DEFAULT_SETTINGS_PATH",
    "ManufacturingSettings",
    "compute_checksum",
    "get_active_settings",
    "load_settings",
    "parse_settings",
]
