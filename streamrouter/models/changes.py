"""Diff and filter data structures."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final


class _Missing:
    """Marks an absent value. Distinct from ``None``, which is a stored null."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()


class ChangeKind(StrEnum):
    """Classification of a single detected difference."""

    NEW_ATTRIBUTE = "new_attribute"
    REMOVE_ATTRIBUTE = "remove_attribute"
    FIELD_CLEARED = "field_cleared"
    CHANGED_ATTRIBUTE = "changed_attribute"
    NEW_ITEM_IN_COLLECTION = "new_item_in_collection"
    REMOVE_ITEM_FROM_COLLECTION = "remove_item_from_collection"
    CHANGED_ITEM_IN_COLLECTION = "changed_item_in_collection"


@dataclass(frozen=True)
class AttributeChange:
    """One difference between two value trees at a dotted path."""

    path: str
    kind: ChangeKind
    old_value: Any = MISSING
    new_value: Any = MISSING

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"path": self.path, "kind": self.kind.value}
        if self.old_value is not MISSING:
            out["old_value"] = self.old_value
        if self.new_value is not MISSING:
            out["new_value"] = self.new_value
        return out


@dataclass
class DiffResult:
    """Ordered change records produced by ``diff_attributes``."""

    changes: list[AttributeChange] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def paths(self) -> list[str]:
        return [c.path for c in self.changes]


def _normalise_kinds(value: ChangeKind | str | Iterable[ChangeKind | str] | None) -> frozenset[ChangeKind] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return frozenset({ChangeKind(value)})
    # an empty collection means "no kind restriction", same as None
    return frozenset(ChangeKind(v) for v in value) or None


@dataclass(frozen=True)
class FilterSpec:
    """Handler-supplied filter over a MODIFY record.

    ``old_field_value`` / ``new_field_value`` default to ``MISSING`` so that a
    filter for an explicit ``None`` stays expressible. Both are meaningless
    without ``attribute``; such a spec never matches.
    """

    attribute: str | None = None
    change_kinds: frozenset[ChangeKind] | None = None
    old_field_value: Any = MISSING
    new_field_value: Any = MISSING

    def __post_init__(self) -> None:
        # an empty path names no attribute
        if self.attribute == "":
            object.__setattr__(self, "attribute", None)
        object.__setattr__(self, "change_kinds", _normalise_kinds(self.change_kinds))

    @property
    def has_value_filters(self) -> bool:
        return self.old_field_value is not MISSING or self.new_field_value is not MISSING

    @property
    def is_empty(self) -> bool:
        return self.attribute is None and self.change_kinds is None and not self.has_value_filters
