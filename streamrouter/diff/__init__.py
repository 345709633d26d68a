"""Attribute diff engine and match predicate.

Submodules:
    engine     -- diff_attributes / deep_equal / get_nested_value over value trees.
    predicate  -- has_attribute_change and filter-spec evaluation.
"""

from streamrouter.diff.engine import canonical_form, deep_equal, diff_attributes, get_nested_value
from streamrouter.diff.predicate import has_attribute_change, matches_filter, matches_value_filters

__all__ = [
    "canonical_form",
    "deep_equal",
    "diff_attributes",
    "get_nested_value",
    "has_attribute_change",
    "matches_filter",
    "matches_value_filters",
]
