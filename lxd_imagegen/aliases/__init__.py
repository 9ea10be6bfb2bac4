"""Image alias management module."""

from lxd_imagegen.aliases.reconcile import (
    AliasConflictError,
    ensure_image_aliases,
    filter_visible_aliases,
    reconcile_aliases,
)

__all__ = [
    "AliasConflictError",
    "ensure_image_aliases",
    "filter_visible_aliases",
    "reconcile_aliases",
]
