"""Database layer - storage handle, base classes, types."""

from lending_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from lending_kernel.db.engine import Storage, translate_storage_error
from lending_kernel.db.types import money_from_value, round_money

__all__ = [
    "Storage",
    "translate_storage_error",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "money_from_value",
    "round_money",
]
