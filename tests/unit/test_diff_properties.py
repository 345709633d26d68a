"""Property-based tests for the diff engine and match predicate.

Uses hypothesis to generate value trees and checks the laws the router relies
on:
 1. Diffing a tree against a deep copy of itself yields no changes
 2. Added / removed keys produce exactly one new_attribute / remove_attribute
 3. Clearing a non-null value is field_cleared; the reverse never is
 4. A change at ``p.c`` is always visible when watching ``p``
 5. Multiple change kinds combine with OR
 6. Neither function raises for any pair of trees
"""

from __future__ import annotations

import copy

from hypothesis import given, settings
from hypothesis import strategies as st

from streamrouter.diff import deep_equal, diff_attributes, has_attribute_change, matches_filter
from streamrouter.models.changes import ChangeKind, FilterSpec

# ---------------------------------------------------------------------------
# Hypothesis strategies
# ---------------------------------------------------------------------------

# Dots are path separators, so generated keys never contain them
_keys = st.text(alphabet="abcdefgh", min_size=1, max_size=4)

_scalars = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-1000, max_value=1000),
    st.text(max_size=8),
)

_hashable_members = st.one_of(st.integers(min_value=-50, max_value=50), st.text(max_size=4))

_trees = st.recursive(
    _scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(_keys, children, max_size=4),
        st.frozensets(_hashable_members, max_size=4),
    ),
    max_leaves=12,
)

_images = st.dictionaries(_keys, _trees, max_size=5)

_non_null = _trees.filter(lambda v: v is not None)

_kinds = st.lists(st.sampled_from(list(ChangeKind)), min_size=1, max_size=3)


# ---------------------------------------------------------------------------
# Laws
# ---------------------------------------------------------------------------


class TestNoChangeIdempotence:
    @given(image=_images)
    @settings(max_examples=200)
    def test_self_diff_is_empty(self, image) -> None:
        result = diff_attributes(image, copy.deepcopy(image))
        assert not result.has_changes
        assert result.changes == []

    @given(tree=_trees)
    @settings(max_examples=200)
    def test_deep_equal_is_reflexive(self, tree) -> None:
        assert deep_equal(tree, copy.deepcopy(tree))


class TestKeyPresenceLaws:
    @given(old=_images, key=_keys, value=_trees)
    @settings(max_examples=150)
    def test_added_key(self, old, key, value) -> None:
        old.pop(key, None)
        new = {**copy.deepcopy(old), key: value}
        changes = [c for c in diff_attributes(old, new).changes if c.path == key]
        assert len(changes) == 1
        assert changes[0].kind is ChangeKind.NEW_ATTRIBUTE
        assert changes[0].new_value is value

    @given(new=_images, key=_keys, value=_trees)
    @settings(max_examples=150)
    def test_removed_key(self, new, key, value) -> None:
        new.pop(key, None)
        old = {**copy.deepcopy(new), key: value}
        changes = [c for c in diff_attributes(old, new).changes if c.path == key]
        assert len(changes) == 1
        assert changes[0].kind is ChangeKind.REMOVE_ATTRIBUTE
        assert changes[0].old_value is value


class TestFieldClearedExclusivity:
    @given(value=_non_null)
    @settings(max_examples=100)
    def test_clearing_is_field_cleared(self, value) -> None:
        [change] = diff_attributes({"a": value}, {"a": None}).changes
        assert change.kind is ChangeKind.FIELD_CLEARED

    @given(value=_non_null)
    @settings(max_examples=100)
    def test_setting_from_null_is_changed_attribute(self, value) -> None:
        [change] = diff_attributes({"a": None}, {"a": value}).changes
        assert change.kind is ChangeKind.CHANGED_ATTRIBUTE


class TestCollectionDisjointness:
    @given(base=st.frozensets(_hashable_members, max_size=5), extra=st.frozensets(_hashable_members, min_size=1))
    @settings(max_examples=100)
    def test_set_additions_only(self, base, extra) -> None:
        extra = extra - base
        if not extra:
            return
        [change] = diff_attributes({"s": base}, {"s": base | extra}).changes
        assert change.kind is ChangeKind.NEW_ITEM_IN_COLLECTION
        [change] = diff_attributes({"s": base | extra}, {"s": base}).changes
        assert change.kind is ChangeKind.REMOVE_ITEM_FROM_COLLECTION

    @given(base=st.lists(_hashable_members, max_size=5), extra=st.lists(_hashable_members, min_size=1, max_size=3))
    @settings(max_examples=100)
    def test_list_append_only(self, base, extra) -> None:
        [change] = diff_attributes({"l": base}, {"l": base + extra}).changes
        assert change.kind is ChangeKind.NEW_ITEM_IN_COLLECTION
        [change] = diff_attributes({"l": base + extra}, {"l": base}).changes
        assert change.kind is ChangeKind.REMOVE_ITEM_FROM_COLLECTION


class TestPredicateLaws:
    @given(old=_images, new=_images)
    @settings(max_examples=200)
    def test_parent_catches_child(self, old, new) -> None:
        diff = diff_attributes(old, new)
        for change in diff.changes:
            segments = change.path.split(".")
            for depth in range(1, len(segments) + 1):
                assert has_attribute_change(diff, ".".join(segments[:depth]))

    @given(old=_images, new=_images, kinds=_kinds)
    @settings(max_examples=200)
    def test_or_semantics(self, old, new, kinds) -> None:
        diff = diff_attributes(old, new)
        for change in diff.changes:
            combined = has_attribute_change(diff, change.path, kinds)
            individually = any(has_attribute_change(diff, change.path, k) for k in kinds)
            assert combined == individually

    @given(old=_images, new=_images, attribute=_keys, kinds=st.none() | _kinds, value=_trees)
    @settings(max_examples=200)
    def test_total_over_any_input(self, old, new, attribute, kinds, value) -> None:
        diff = diff_attributes(old, new)
        assert diff.has_changes == bool(diff.changes)
        spec = FilterSpec(attribute=attribute, change_kinds=kinds, new_field_value=value)
        assert isinstance(matches_filter(spec, diff, old, new), bool)
