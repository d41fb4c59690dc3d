"""
lending_config -- single public entrypoint for lending configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains database
    settings, the lending policy and the default checklist catalog.  The
    kernel never imports this package; scripts and request handlers read
    the config and hand the pieces to ``Storage.from_config`` and
    ``InventoryCoordinator``.

Resolution order:
    1. ``path`` argument
    2. ``LENDING_CONFIG`` environment variable
    3. the packaged ``defaults.yaml``

    ``DATABASE_URL``, when set, overrides ``database.url``.

Audit relevance:
    Every successful call emits a ``LENDING_CONFIG_TRACE`` log entry with
    the source path and checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from lending_config.loader import compute_checksum, load_yaml_file, parse_config
from lending_config.schema import (
    CatalogDefaults,
    DatabaseSettings,
    LendingConfig,
    LendingPolicy,
)

__all__ = [
    "CatalogDefaults",
    "DatabaseSettings",
    "LendingConfig",
    "LendingPolicy",
    "compute_checksum",
    "get_active_config",
]

_logger = logging.getLogger("lending_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "LENDING_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> LendingConfig:
    """
    Load, parse and trace the active configuration.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError / KeyError: If the file does not parse.
    """
    resolved = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    data = load_yaml_file(resolved)
    config = parse_config(
        data,
        source=str(resolved),
        database_url=os.environ.get(DATABASE_URL_ENV_VAR) or None,
    )

    _logger.info(
        "LENDING_CONFIG_TRACE",
        extra={
            "trace_type": "LENDING_CONFIG_TRACE",
            "source": config.source,
            "checksum": config.checksum,
            "dialect": config.database.url.split(":", 1)[0],
            "default_loan_days": config.policy.default_loan_days,
            "strict_condition_catalog": config.policy.strict_condition_catalog,
            "checklist_parts": len(config.catalog.checklist),
        },
    )
    return config
