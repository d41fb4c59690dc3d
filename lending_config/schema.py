"""
LendingConfig schema.

Frozen dataclasses that the loader builds from YAML.  ``LendingPolicy`` is
owned by the kernel (``lending_kernel.domain.policy``) so that the kernel
never imports this package; it is re-exported here for convenience.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from lending_kernel.domain.policy import LendingPolicy

__all__ = [
    "CatalogDefaults",
    "DatabaseSettings",
    "LendingConfig",
    "LendingPolicy",
]


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection and lock settings handed to ``Storage.from_config``."""

    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    lock_timeout_ms: int = 5000


@dataclass(frozen=True)
class CatalogDefaults:
    """Checklist parts seeded into an empty store, in display order."""

    checklist: tuple[tuple[str, tuple[str, ...]], ...] = ()

    def as_mapping(self) -> dict[str, tuple[str, ...]]:
        return dict(self.checklist)


@dataclass(frozen=True)
class LendingConfig:
    """The whole runtime configuration plus its source checksum."""

    database: DatabaseSettings
    policy: LendingPolicy = field(default_factory=LendingPolicy)
    catalog: CatalogDefaults = field(default_factory=CatalogDefaults)
    lending_rules: tuple[str, ...] = ()
    checksum: str = ""
    source: str = ""
