"""
Configuration Loader (``lending_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the frozen
``lending_config.schema`` dataclasses.  Runtime callers go through
``lending_config.get_active_config()``.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``database.url``  -> ``KeyError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from lending_config.schema import (
    CatalogDefaults,
    DatabaseSettings,
    LendingConfig,
    LendingPolicy,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _int(section: str, data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
    return value


def _bool(section: str, data: dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be true or false, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    """Parse the ``database`` section.  ``url`` is required."""
    url = data["url"]
    if not isinstance(url, str) or not url.strip():
        raise ValueError("database.url must be a non-empty string")
    return DatabaseSettings(
        url=url.strip(),
        echo=_bool("database", data, "echo", False),
        pool_size=_int("database", data, "pool_size", 20),
        max_overflow=_int("database", data, "max_overflow", 10),
        pool_timeout=_int("database", data, "pool_timeout", 30),
        pool_recycle=_int("database", data, "pool_recycle", 1800),
        lock_timeout_ms=_int("database", data, "lock_timeout_ms", 5000),
    )


def parse_policy(data: dict[str, Any]) -> LendingPolicy:
    """Parse the ``policy`` section; every key is optional."""
    return LendingPolicy(
        default_loan_days=_int("policy", data, "default_loan_days", 15),
        strict_condition_catalog=_bool("policy", data, "strict_condition_catalog", True),
        max_code_attempts=_int("policy", data, "max_code_attempts", 5),
        code_segment_width=_int("policy", data, "code_segment_width", 6),
        serial_width=_int("policy", data, "serial_width", 3),
    )


def parse_catalog(data: dict[str, Any]) -> CatalogDefaults:
    """
    Parse the ``catalog`` section.

    ``checklist`` is a list of ``{name, options}`` mappings so that the
    display order survives the round trip through YAML.
    """
    parts = []
    for index, entry in enumerate(data.get("checklist") or []):
        name = entry["name"]
        options = entry["options"]
        if not isinstance(options, list) or not options:
            raise ValueError(
                f"catalog.checklist[{index}] ({name}): options must be a non-empty list"
            )
        parts.append((str(name), tuple(str(o) for o in options)))
    return CatalogDefaults(checklist=tuple(parts))


def parse_config(
    data: dict[str, Any],
    source: str = "",
    database_url: str | None = None,
) -> LendingConfig:
    """
    Build a LendingConfig from a parsed YAML mapping.

    Args:
        data: Parsed YAML.
        source: Where the data came from (recorded for the trace log).
        database_url: Overrides ``database.url`` when given.
    """
    database = dict(data.get("database") or {})
    if database_url:
        database["url"] = database_url
    return LendingConfig(
        database=parse_database(database),
        policy=parse_policy(data.get("policy") or {}),
        catalog=parse_catalog(data.get("catalog") or {}),
        lending_rules=tuple(str(r) for r in data.get("lending_rules") or ()),
        checksum=compute_checksum(data),
        source=source,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
