"""Composite identity for built images.

A built image is tracked by the remote it was imported into and the
fingerprint the store assigned to it, serialized as ``<remote>/<fingerprint>``.
"""

from dataclasses import dataclass

SEPARATOR = "/"


class InvalidResourceIDError(ValueError):
    """Raised when a resource ID string cannot be parsed."""

    def __init__(self, value: str, code: str = "invalid_resource_id") -> None:
        super().__init__(
            f"Invalid resource ID '{value}': expected '<remote>/<fingerprint>'"
        )
        self.value = value
        self.code = code


@dataclass(frozen=True)
class ResourceID:
    """Identity of an image in a specific remote store.

    Attributes:
        remote: Remote name (may be empty for the default remote).
        fingerprint: Store-assigned content fingerprint.
    """

    remote: str
    fingerprint: str

    def __post_init__(self) -> None:
        """Validate the parts."""
        if SEPARATOR in self.remote:
            raise ValueError(f"remote must not contain '{SEPARATOR}'")
        if not self.fingerprint:
            raise ValueError("fingerprint must be non-empty")

    @classmethod
    def parse(cls, value: str) -> "ResourceID":
        """Parse a ``<remote>/<fingerprint>`` string.

        Only the first separator splits; anything after it is the fingerprint.

        Raises:
            InvalidResourceIDError: If the value is malformed.
        """
        remote, sep, fingerprint = value.partition(SEPARATOR)
        if not sep or not fingerprint:
            raise InvalidResourceIDError(value)
        return cls(remote=remote, fingerprint=fingerprint)

    def resource_id(self) -> str:
        """Serialize to ``<remote>/<fingerprint>``."""
        return f"{self.remote}{SEPARATOR}{self.fingerprint}"

    def __str__(self) -> str:
        return self.resource_id()


__all__ = ["InvalidResourceIDError", "ResourceID", "SEPARATOR"]
