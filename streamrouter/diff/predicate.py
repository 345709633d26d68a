"""Match predicate over a diff result and a handler's filter spec.

Watching a path also watches everything beneath it: a change recorded at
``preferences.theme`` matches ``attribute="preferences"``. The inverse never
holds. Malformed specs (value filters without an attribute) do not match
rather than raise, so a misconfigured handler stays silent instead of
breaking record processing.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from streamrouter.diff.engine import deep_equal, get_nested_value
from streamrouter.models.changes import MISSING, ChangeKind, DiffResult, FilterSpec


def _kind_set(change_kinds: ChangeKind | str | Iterable[ChangeKind | str]) -> set[str]:
    if isinstance(change_kinds, str):
        return {str(change_kinds)}
    return {str(k) for k in change_kinds}


def has_attribute_change(
    diff: DiffResult,
    attribute: str | None,
    change_kinds: ChangeKind | str | Iterable[ChangeKind | str] | None = None,
) -> bool:
    """Return True if *attribute* or a descendant changed with one of *change_kinds*.

    Multiple kinds are OR-ed. Omitting *change_kinds* accepts any kind.
    """
    if not attribute:
        return False
    descendant_prefix = attribute + "."
    candidates = [c for c in diff.changes if c.path == attribute or c.path.startswith(descendant_prefix)]
    if not candidates:
        return False
    if change_kinds is None:
        return True
    wanted = _kind_set(change_kinds)
    if not wanted:
        return True
    return any(c.kind.value in wanted for c in candidates)


def matches_value_filters(old: Any, new: Any, spec: FilterSpec) -> bool:
    """Check ``old_field_value`` / ``new_field_value`` against the images.

    Both filters are AND-ed and independent of change kind. A value filter
    without an attribute path never matches; a path that does not resolve
    never equals a filter value.
    """
    if not spec.has_value_filters:
        return True
    if not spec.attribute:
        return False
    if spec.old_field_value is not MISSING:
        current = get_nested_value(old, spec.attribute)
        if current is MISSING or not deep_equal(current, spec.old_field_value):
            return False
    if spec.new_field_value is not MISSING:
        current = get_nested_value(new, spec.attribute)
        if current is MISSING or not deep_equal(current, spec.new_field_value):
            return False
    return True


def matches_filter(spec: FilterSpec | None, diff: DiffResult, old: Any = None, new: Any = None) -> bool:
    """Decide whether a MODIFY handler with *spec* fires for this diff.

    An empty spec always matches. With an attribute the change-kind check
    goes through ``has_attribute_change``; kinds without an attribute match
    any change record of those kinds.
    """
    if spec is None or spec.is_empty:
        return True
    if spec.attribute:
        if not has_attribute_change(diff, spec.attribute, spec.change_kinds):
            return False
    elif spec.change_kinds is not None:
        if not any(c.kind in spec.change_kinds for c in diff.changes):
            return False
    return matches_value_filters(old, new, spec)
