"""Structural diff between two value trees.

A value tree is built from mappings, sequences (``list``/``tuple``), sets
(``set``/``frozenset``) and scalars. ``diff_attributes`` walks the key union
of two mappings depth-first and emits one ``AttributeChange`` per detected
difference, tagged with a dotted path:

* key only in new                -> new_attribute (no recursion)
* key only in old                -> remove_attribute (no recursion)
* non-null old, ``None`` new     -> field_cleared
* list/list or set/set           -> one collection-level record
* mapping/mapping                -> changed_attribute at the parent AND the
                                    nested records beneath it
* anything else                  -> changed_attribute

Absence and ``None`` are distinct states throughout. Every function here is
pure and total: nothing logs, nothing raises for any input tree.
"""

from __future__ import annotations

import json
import math
from collections import Counter
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from streamrouter.models.changes import MISSING, AttributeChange, ChangeKind, DiffResult


def _is_map(value: Any) -> bool:
    return isinstance(value, Mapping)


def _is_list(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _is_set(value: Any) -> bool:
    return isinstance(value, (set, frozenset))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _is_nan(value: Any) -> bool:
    if isinstance(value, Decimal):
        return value.is_nan()
    return isinstance(value, float) and math.isnan(value)


def _is_container(value: Any) -> bool:
    return _is_map(value) or _is_list(value) or _is_set(value)


def _number_text(value: int | float | Decimal) -> str:
    d = value if isinstance(value, Decimal) else Decimal(value)
    if not d.is_finite():
        return str(d)
    if d.is_zero():
        return "0"
    sign, digits, exponent = d.as_tuple()
    # strip trailing zeros by hand; Decimal.normalize() rounds to context precision
    while len(digits) > 1 and digits[-1] == 0:
        digits = digits[:-1]
        exponent += 1  # type: ignore[operator]
    return f"{'-' if sign else ''}{''.join(map(str, digits))}e{exponent}"


def canonical_form(value: Any) -> str:
    """Render *value* as a deterministic string.

    Two values are ``deep_equal`` exactly when their canonical forms match, so
    the forms serve as multiset keys for list and set comparison. Mapping keys
    and set members are sorted; numbers are normalised so ``1``, ``1.0`` and
    ``Decimal("1.00")`` collapse together while ``True`` stays distinct.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if _is_number(value):
        return "n:" + _number_text(value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "b:" + bytes(value).hex()
    if _is_map(value):
        items = sorted((str(k), canonical_form(v)) for k, v in value.items())
        return "{" + ",".join(f"{json.dumps(k)}:{v}" for k, v in items) + "}"
    if _is_list(value):
        return "[" + ",".join(canonical_form(v) for v in value) + "]"
    if _is_set(value):
        return "<" + ",".join(sorted(canonical_form(v) for v in value)) + ">"
    return "o:" + repr(value)


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality over value trees.

    Sequences compare in order, sets compare as multisets of canonical forms,
    mappings compare by key set and per-key value. ``None`` equals only
    ``None`` and booleans never equal numbers.
    """
    if a is b:
        return True
    if a is None or b is None:
        return False
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if _is_number(a) and _is_number(b):
        if _is_nan(a) or _is_nan(b):
            # NaN never compares equal, and a signalling NaN raises on ==
            return canonical_form(a) == canonical_form(b)
        return bool(a == b)
    if _is_map(a) and _is_map(b):
        if len(a) != len(b):
            return False
        return all(k in b and deep_equal(v, b[k]) for k, v in a.items())
    if _is_list(a) and _is_list(b):
        if len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b, strict=True))
    if _is_set(a) and _is_set(b):
        if len(a) != len(b):
            return False
        return Counter(canonical_form(v) for v in a) == Counter(canonical_form(v) for v in b)
    if _is_container(a) or _is_container(b):
        return False
    if type(a) is not type(b) and not (isinstance(a, str) and isinstance(b, str)):
        return canonical_form(a) == canonical_form(b)
    return bool(a == b)


def get_nested_value(tree: Any, path: str) -> Any:
    """Walk *path* segment by segment through mappings.

    Returns ``MISSING`` when any segment is absent or an intermediate value is
    ``None`` or not a mapping. A terminal ``None`` is returned as ``None``.
    """
    current = tree
    for segment in path.split("."):
        if not _is_map(current) or segment not in current:
            return MISSING
        current = current[segment]
    return current


def _list_change(old: list[Any] | tuple[Any, ...], new: list[Any] | tuple[Any, ...]) -> ChangeKind | None:
    old_counts = Counter(canonical_form(v) for v in old)
    new_counts = Counter(canonical_form(v) for v in new)

    added = any(count > old_counts[key] for key, count in new_counts.items())
    removed = any(count > new_counts[key] for key, count in old_counts.items())

    changed_in_place = False
    for before, after in zip(old, new, strict=False):
        if deep_equal(before, after):
            continue
        if canonical_form(before) not in new_counts and canonical_form(after) not in old_counts:
            changed_in_place = True
            break

    if changed_in_place or (added and removed):
        return ChangeKind.CHANGED_ITEM_IN_COLLECTION
    if added:
        return ChangeKind.NEW_ITEM_IN_COLLECTION
    if removed:
        return ChangeKind.REMOVE_ITEM_FROM_COLLECTION
    # same multiset, different order: lists are position-sensitive
    return ChangeKind.CHANGED_ITEM_IN_COLLECTION


def _set_change(old: set[Any] | frozenset[Any], new: set[Any] | frozenset[Any]) -> ChangeKind | None:
    old_members = {canonical_form(v) for v in old}
    new_members = {canonical_form(v) for v in new}
    added = bool(new_members - old_members)
    removed = bool(old_members - new_members)
    if added and removed:
        return ChangeKind.CHANGED_ITEM_IN_COLLECTION
    if added:
        return ChangeKind.NEW_ITEM_IN_COLLECTION
    if removed:
        return ChangeKind.REMOVE_ITEM_FROM_COLLECTION
    return None


def _diff_maps(old: Any, new: Any, prefix: str, changes: list[AttributeChange]) -> None:
    old_map: Mapping[Any, Any] = old if _is_map(old) else {}
    new_map: Mapping[Any, Any] = new if _is_map(new) else {}

    keys = list(old_map) + [k for k in new_map if k not in old_map]
    for key in keys:
        path = f"{prefix}.{key}" if prefix else str(key)

        if key not in old_map:
            changes.append(AttributeChange(path, ChangeKind.NEW_ATTRIBUTE, new_value=new_map[key]))
            continue
        if key not in new_map:
            changes.append(AttributeChange(path, ChangeKind.REMOVE_ATTRIBUTE, old_value=old_map[key]))
            continue

        before, after = old_map[key], new_map[key]
        if deep_equal(before, after):
            continue

        if after is None:
            changes.append(AttributeChange(path, ChangeKind.FIELD_CLEARED, before, after))
        elif _is_list(before) and _is_list(after):
            kind = _list_change(before, after)
            if kind is not None:
                changes.append(AttributeChange(path, kind, before, after))
        elif _is_set(before) and _is_set(after):
            kind = _set_change(before, after)
            if kind is not None:
                changes.append(AttributeChange(path, kind, before, after))
        elif _is_map(before) and _is_map(after):
            changes.append(AttributeChange(path, ChangeKind.CHANGED_ATTRIBUTE, before, after))
            _diff_maps(before, after, path, changes)
        else:
            changes.append(AttributeChange(path, ChangeKind.CHANGED_ATTRIBUTE, before, after))


def diff_attributes(old: Any = None, new: Any = None) -> DiffResult:
    """Compute the ordered change records between two value trees.

    Either side may be ``None`` (insert has no old image, remove no new one);
    a side that is absent or not a mapping contributes no keys. Records follow
    old-key order first, then keys only present in *new*.
    """
    changes: list[AttributeChange] = []
    _diff_maps(old, new, "", changes)
    return DiffResult(changes=changes)
