"""Record type for built image resources.

BuiltImage is the mutable record the lifecycle operations read and write.
Its ``state`` follows a fixed state machine; ``id`` holds the composite
``<remote>/<fingerprint>`` identity and is only set while the image exists.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lxd_imagegen.identity import ResourceID
from lxd_imagegen.types import ResourceState

# Fields that can only change by replacing the resource
IMMUTABLE_FIELDS = ("template", "remote")

ALLOWED_TRANSITIONS: dict[ResourceState, frozenset[ResourceState]] = {
    ResourceState.ABSENT: frozenset({ResourceState.CREATING}),
    ResourceState.CREATING: frozenset({ResourceState.PRESENT, ResourceState.ABSENT}),
    ResourceState.PRESENT: frozenset(
        {ResourceState.UPDATING, ResourceState.DELETING, ResourceState.ABSENT}
    ),
    ResourceState.UPDATING: frozenset({ResourceState.PRESENT}),
    ResourceState.DELETING: frozenset({ResourceState.ABSENT, ResourceState.PRESENT}),
}


class InvalidStateError(Exception):
    """Raised when a lifecycle operation is invalid in the current state."""

    def __init__(
        self,
        current: ResourceState,
        target: ResourceState,
        code: str = "invalid_state",
    ) -> None:
        super().__init__(
            f"Cannot move built image from '{current.value}' to '{target.value}'"
        )
        self.current = current
        self.target = target
        self.code = code


class ImmutableFieldError(Exception):
    """Raised when an update tries to change a field fixed at creation."""

    def __init__(self, field: str, code: str = "immutable_field") -> None:
        super().__init__(
            f"Field '{field}' cannot be updated; the image must be recreated"
        )
        self.field = field
        self.code = code


class BuiltImage(BaseModel):
    """A built image resource.

    Attributes:
        id: Composite identity ``<remote>/<fingerprint>``; empty when absent.
        template: distrobuilder template text (immutable).
        remote: Remote name; empty selects the default remote (immutable).
        fingerprint: Fingerprint of the imported image.
        aliases: Aliases the caller wants bound to the image.
        copied_aliases: Aliases attached by another mechanism, hidden on read
            unless also configured.
        created_at: Image creation time as unix seconds.
        state: Lifecycle state; defaults to present when built from an
            identity, absent otherwise.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = ""
    template: str
    remote: str = ""
    fingerprint: str = ""
    aliases: list[str] = Field(default_factory=list)
    copied_aliases: list[str] = Field(default_factory=list)
    created_at: int | None = None
    state: ResourceState = ResourceState.ABSENT

    def model_post_init(self, context: Any, /) -> None:
        if self.id and "state" not in self.model_fields_set:
            self.state = ResourceState.PRESENT

    def resource_id(self) -> ResourceID:
        """Parse the composite identity.

        Raises:
            InvalidResourceIDError: If the identity is empty or malformed.
        """
        return ResourceID.parse(self.id)

    def transition(self, target: ResourceState) -> None:
        """Move to another lifecycle state.

        Raises:
            InvalidStateError: If the transition is not allowed.
        """
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateError(self.state, target)
        self.state = target

    def mark_absent(self) -> None:
        """Clear the identity and move to the absent state."""
        self.id = ""
        self.fingerprint = ""
        self.created_at = None
        if self.state is not ResourceState.ABSENT:
            self.transition(ResourceState.ABSENT)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "BuiltImage",
    "IMMUTABLE_FIELDS",
    "ImmutableFieldError",
    "InvalidStateError",
]
