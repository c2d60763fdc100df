"""Submission sync kernel utilities."""

from .canonical_json import CanonicalJsonTypeError, canonical_dumps, ensure_json_tree, json_clone
from .field_path import FieldPathError, get_path, has_path, parse_field_path, set_path

__all__ = [
    "CanonicalJsonTypeError",
    "FieldPathError",
    "canonical_dumps",
    "ensure_json_tree",
    "get_path",
    "has_path",
    "json_clone",
    "parse_field_path",
    "set_path",
]
