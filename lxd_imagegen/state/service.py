"""State service for tracked built images.

This module maps BuiltImage records to and from the database. Only images
with an identity are stored; an image whose identity was cleared (for
example by read() finding it gone) is removed instead.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from lxd_imagegen.resources.models import BuiltImage
from lxd_imagegen.state.models import ResourceRecord


class ResourceNotFoundError(Exception):
    """Raised when no resource is tracked under a name."""

    def __init__(self, name: str, code: str = "resource_not_found") -> None:
        self.name = name
        self.code = code
        super().__init__(f"Built image not found: {name}")


class ResourceExistsError(Exception):
    """Raised when creating a resource under a name already in use."""

    def __init__(self, name: str, code: str = "resource_exists") -> None:
        self.name = name
        self.code = code
        super().__init__(f"Built image already exists: {name}")


def record_to_image(record: ResourceRecord) -> BuiltImage:
    """Convert a ResourceRecord to a present BuiltImage."""
    return BuiltImage(
        id=record.resource_id,
        template=record.template,
        remote=record.remote,
        fingerprint=record.fingerprint,
        aliases=list(record.aliases or []),
        copied_aliases=list(record.copied_aliases or []),
        created_at=record.created_at,
    )


def get_record(session: Session, name: str) -> ResourceRecord | None:
    """Get the record for a name, or None."""
    stmt = select(ResourceRecord).where(ResourceRecord.name == name)
    return session.execute(stmt).scalar_one_or_none()


def load_resource(session: Session, name: str) -> BuiltImage:
    """Load a tracked image by name.

    Raises:
        ResourceNotFoundError: If nothing is tracked under the name.
    """
    record = get_record(session, name)
    if record is None:
        raise ResourceNotFoundError(name)
    return record_to_image(record)


def ensure_name_available(session: Session, name: str) -> None:
    """Raise ResourceExistsError if a name is already tracked."""
    if get_record(session, name) is not None:
        raise ResourceExistsError(name)


def save_resource(
    session: Session, name: str, image: BuiltImage
) -> ResourceRecord | None:
    """Persist an image under a name.

    An image without an identity is not stored; any existing record under
    the name is removed.

    Returns:
        The saved record, or None if the image has no identity.
    """
    record = get_record(session, name)

    if not image.id:
        if record is not None:
            session.delete(record)
            session.flush()
        return None

    if record is None:
        record = ResourceRecord(name=name)
        session.add(record)

    record.resource_id = image.id
    record.template = image.template
    record.remote = image.remote
    record.fingerprint = image.fingerprint
    record.aliases = list(image.aliases)
    record.copied_aliases = list(image.copied_aliases)
    record.created_at = image.created_at
    session.flush()
    return record


def remove_resource(session: Session, name: str) -> None:
    """Stop tracking a name.

    Raises:
        ResourceNotFoundError: If nothing is tracked under the name.
    """
    record = get_record(session, name)
    if record is None:
        raise ResourceNotFoundError(name)
    session.delete(record)
    session.flush()


def list_resources(session: Session) -> list[ResourceRecord]:
    """List every tracked record, ordered by name."""
    stmt = select(ResourceRecord).order_by(ResourceRecord.name)
    return list(session.execute(stmt).scalars().all())


__all__ = [
    "ResourceExistsError",
    "ResourceNotFoundError",
    "ensure_name_available",
    "get_record",
    "list_resources",
    "load_resource",
    "record_to_image",
    "remove_resource",
    "save_resource",
]
