"""Image alias reconciliation.

This module handles:
- Diffing an existing alias set against a desired one
- Conflict detection for aliases requested at image creation
- Applying alias changes best-effort, deletions before creations
- Filtering copied aliases out of the aliases reported for an image

A failed alias operation is logged and recorded in the returned report;
it never stops the remaining operations. Callers that need every alias
bound must inspect ``ReconcileReport.ok``.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from lxd_imagegen.store.errors import ImageStoreError, NotFoundError
from lxd_imagegen.types import AliasAction, AliasOutcome, ReconcileReport

if TYPE_CHECKING:
    from lxd_imagegen.store.client import ImageAliasEntry, ImageStoreClient

logger = logging.getLogger(__name__)


class AliasConflictError(Exception):
    """Raised when requested aliases are already bound to another image."""

    def __init__(
        self,
        conflicts: dict[str, str],
        code: str = "alias_conflict",
    ) -> None:
        names = ", ".join(sorted(conflicts))
        super().__init__(f"Image alias already exists on destination: {names}")
        self.conflicts = conflicts
        self.code = code


@dataclass(frozen=True)
class AliasPlan:
    """Alias operations needed to move from one alias set to another."""

    to_delete: list[str]
    to_add: list[str]

    @property
    def empty(self) -> bool:
        """Whether the plan changes nothing."""
        return not self.to_delete and not self.to_add


def plan_alias_changes(
    existing: Iterable[str],
    desired: Iterable[str],
) -> AliasPlan:
    """Compute which aliases to delete and which to create.

    Args:
        existing: Aliases currently bound.
        desired: Aliases that should be bound.

    Returns:
        AliasPlan with sorted names.
    """
    existing_set = set(existing)
    desired_set = set(desired)
    return AliasPlan(
        to_delete=sorted(existing_set - desired_set),
        to_add=sorted(desired_set - existing_set),
    )


def find_existing_aliases(
    names: Sequence[str],
    all_aliases: Iterable[ImageAliasEntry],
) -> list[ImageAliasEntry]:
    """Return the store alias entries whose names are in ``names``.

    Args:
        names: Alias names, sorted.
        all_aliases: Every alias entry in the store.

    Returns:
        Matching alias entries, in store order.
    """
    existing: list[ImageAliasEntry] = []
    for alias in all_aliases:
        pos = bisect.bisect_left(names, alias.name)
        if pos < len(names) and names[pos] == alias.name:
            existing.append(alias)
    return existing


def check_alias_conflicts(
    client: ImageStoreClient,
    names: Iterable[str],
) -> None:
    """Verify that no requested alias exists in the store yet.

    Runs before the image is built, so any existing binding is a conflict.

    Args:
        client: Target image store.
        names: Requested alias names.

    Raises:
        AliasConflictError: If any name is already bound.
    """
    sorted_names = sorted(set(names))
    if not sorted_names:
        return

    conflicts = {
        alias.name: alias.target
        for alias in find_existing_aliases(sorted_names, client.list_image_aliases())
    }
    if conflicts:
        for name, target in sorted(conflicts.items()):
            logger.error("Alias %s is already bound to %s", name, target)
        raise AliasConflictError(conflicts)


def _delete_alias(client: ImageStoreClient, name: str) -> AliasOutcome:
    try:
        client.delete_image_alias(name)
    except NotFoundError:
        logger.debug("Alias %s already absent", name)
    except ImageStoreError as e:
        logger.warning("Failed to remove alias %s: %s", name, e)
        return AliasOutcome(name, AliasAction.DELETE, success=False, error=str(e))
    return AliasOutcome(name, AliasAction.DELETE, success=True)


def _create_alias(
    client: ImageStoreClient, name: str, fingerprint: str
) -> AliasOutcome:
    try:
        client.create_image_alias(name, fingerprint)
    except ImageStoreError as e:
        logger.warning("Failed to create alias %s: %s", name, e)
        return AliasOutcome(name, AliasAction.CREATE, success=False, error=str(e))
    return AliasOutcome(name, AliasAction.CREATE, success=True)


def reconcile_aliases(
    client: ImageStoreClient,
    existing: Iterable[str],
    desired: Iterable[str],
    fingerprint: str,
) -> ReconcileReport:
    """Move the store from the ``existing`` alias set to the ``desired`` one.

    All deletions are issued before any creation, so an alias moving to a
    new image is expressed as delete-then-create.

    Args:
        client: Target image store.
        existing: Aliases currently bound to the image.
        desired: Aliases that should be bound to the image.
        fingerprint: Image the created aliases point at.

    Returns:
        ReconcileReport with one outcome per alias operation.
    """
    plan = plan_alias_changes(existing, desired)
    report = ReconcileReport(fingerprint=fingerprint)

    if plan.empty:
        logger.debug("Aliases for %s already up to date", fingerprint)
        return report

    logger.info(
        "Reconciling aliases for %s: -%s +%s",
        fingerprint,
        plan.to_delete,
        plan.to_add,
    )
    for name in plan.to_delete:
        report.outcomes.append(_delete_alias(client, name))
    for name in plan.to_add:
        report.outcomes.append(_create_alias(client, name, fingerprint))

    if not report.ok:
        logger.warning(
            "%d alias operation(s) failed for %s",
            len(report.failures),
            fingerprint,
        )
    return report


def ensure_image_aliases(
    client: ImageStoreClient,
    names: Iterable[str],
    fingerprint: str,
) -> ReconcileReport:
    """Bind aliases to a freshly imported image.

    Conflicts are checked with ``check_alias_conflicts`` before the build;
    an alias claimed in between shows up as a failed outcome.

    Args:
        client: Target image store.
        names: Requested alias names.
        fingerprint: Fingerprint of the new image.

    Returns:
        ReconcileReport for the created aliases.
    """
    return reconcile_aliases(client, [], names, fingerprint)


def filter_visible_aliases(
    image_aliases: Iterable[str],
    configured: Iterable[str],
    copied: Iterable[str],
) -> list[str]:
    """Filter aliases attached to an image down to the visible set.

    Aliases copied onto the image by another mechanism are hidden unless
    they were also configured explicitly. An alias is visible when it is
    configured, or when it is not a tracked copy.

    Args:
        image_aliases: Alias names reported by the store, in store order.
        configured: Aliases the caller configured.
        copied: Aliases tracked as copied.

    Returns:
        Visible alias names in store order.
    """
    configured_set = set(configured)
    copied_set = set(copied)

    visible: list[str] = []
    for name in image_aliases:
        if name in configured_set or name not in copied_set:
            visible.append(name)
        else:
            logger.debug("Filtered copied alias %s", name)
    return visible


__all__ = [
    "AliasConflictError",
    "AliasPlan",
    "check_alias_conflicts",
    "ensure_image_aliases",
    "filter_visible_aliases",
    "find_existing_aliases",
    "plan_alias_changes",
    "reconcile_aliases",
]
