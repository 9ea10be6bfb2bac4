"""Shared type definitions for lxd_imagegen.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class ResourceState(str, Enum):
    """Lifecycle state of a built image resource."""

    ABSENT = "absent"
    CREATING = "creating"
    PRESENT = "present"
    UPDATING = "updating"
    DELETING = "deleting"


class OperationStatus(int, Enum):
    """LXD operation status codes."""

    CREATED = 100
    STARTED = 101
    STOPPED = 102
    RUNNING = 103
    CANCELLING = 104
    PENDING = 105
    STARTING = 106
    STOPPING = 107
    ABORTING = 108
    FREEZING = 109
    FROZEN = 110
    THAWED = 111
    ERROR = 112
    READY = 113
    SUCCESS = 200
    FAILURE = 400
    CANCELLED = 401

    @property
    def is_final(self) -> bool:
        """Whether the operation has finished (successfully or not)."""
        return self.value >= 200


class AliasAction(str, Enum):
    """Kind of alias operation issued by the reconciler."""

    DELETE = "delete"
    CREATE = "create"


@dataclass
class AliasOutcome:
    """Result of a single alias operation."""

    name: str
    action: AliasAction
    success: bool
    error: str | None = None


@dataclass
class ReconcileReport:
    """Aggregate result of an alias reconciliation.

    Individual failures are collected here instead of being raised, so a
    report can describe a partially applied alias set.
    """

    fingerprint: str
    outcomes: list[AliasOutcome] = field(default_factory=list)

    @property
    def deleted(self) -> list[str]:
        """Aliases successfully deleted."""
        return [
            o.name
            for o in self.outcomes
            if o.action is AliasAction.DELETE and o.success
        ]

    @property
    def created(self) -> list[str]:
        """Aliases successfully created."""
        return [
            o.name
            for o in self.outcomes
            if o.action is AliasAction.CREATE and o.success
        ]

    @property
    def failures(self) -> list[AliasOutcome]:
        """Alias operations that failed."""
        return [o for o in self.outcomes if not o.success]

    @property
    def ok(self) -> bool:
        """True when every alias operation succeeded."""
        return not self.failures


__all__ = [
    "AliasAction",
    "AliasOutcome",
    "OperationStatus",
    "ReconcileReport",
    "ResourceState",
]
