"""
Condition snapshots -- validated part -> option mappings.

Responsibility:
    A condition snapshot records, for each checklist part (cover, spine,
    ...), the option chosen when a copy is handed out or returned.  It is
    stored as an open JSON mapping so that the checklist catalog can evolve
    without migrations, but every snapshot entering the kernel is coerced
    into a ``ConditionSnapshot`` and checked against the catalog here.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The catalog is
    loaded by the caller (ReferenceDataService) and passed in.

Failure modes:
    - InvalidConditionError for non-string parts/options, unknown parts
      (strict mode), or options the part does not allow.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from lending_kernel.exceptions import InvalidConditionError


class ConditionSnapshot(Mapping[str, str]):
    """
    Immutable mapping from checklist-part name to selected option.

    Entries whose option is None or blank are dropped: they mean "not
    assessed", not a condition.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, str] | None = None):
        self._data: dict[str, str] = dict(data or {})

    @classmethod
    def from_raw(cls, raw: Any) -> "ConditionSnapshot":
        if raw is None:
            return cls()
        if isinstance(raw, ConditionSnapshot):
            return raw
        if not isinstance(raw, Mapping):
            raise InvalidConditionError(
                "<snapshot>", None, f"expected a mapping, got {type(raw).__name__}"
            )
        data: dict[str, str] = {}
        for part, option in raw.items():
            if not isinstance(part, str) or not part.strip():
                raise InvalidConditionError(str(part), None, "part name must be text")
            if option is None or (isinstance(option, str) and not option.strip()):
                continue
            if not isinstance(option, str):
                raise InvalidConditionError(part, str(option), "option must be text")
            data[part.strip()] = option.strip()
        return cls(data)

    def to_dict(self) -> dict[str, str]:
        return dict(self._data)

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"ConditionSnapshot({self._data!r})"


@dataclass(frozen=True)
class ConditionCatalog:
    """
    Allowed options per checklist part.

    Contract:
        With ``strict=True`` a snapshot may only name parts present in the
        catalog.  With ``strict=False`` unknown parts pass through, but a
        known part must still use one of its options.
    """

    parts: Mapping[str, tuple[str, ...]]
    strict: bool = True

    @classmethod
    def from_pairs(
        cls, pairs: list[tuple[str, list[str] | tuple[str, ...]]], strict: bool = True
    ) -> "ConditionCatalog":
        return cls(parts={name: tuple(options) for name, options in pairs}, strict=strict)

    def validate(self, raw: Any) -> ConditionSnapshot:
        """Coerce ``raw`` and check every entry against the catalog."""
        snapshot = ConditionSnapshot.from_raw(raw)
        for part, option in snapshot.items():
            allowed = self.parts.get(part)
            if allowed is None:
                if self.strict:
                    raise InvalidConditionError(part, option, "unknown checklist part")
                continue
            if option not in allowed:
                raise InvalidConditionError(
                    part, option, f"option '{option}' not in {list(allowed)}"
                )
        return snapshot
