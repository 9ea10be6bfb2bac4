"""Persisted state ORM model.

A ResourceRecord stores the last known state of one built image under a
local name, most importantly its composite ``<remote>/<fingerprint>``
identity.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from lxd_imagegen.db import Base


class ResourceRecord(Base):
    """ORM model for tracked built images.

    Attributes:
        id: Primary key.
        name: Unique local name for the resource.
        resource_id: Composite identity ``<remote>/<fingerprint>``.
        template: distrobuilder template text.
        remote: Remote as configured (empty for the default remote).
        fingerprint: Image fingerprint.
        aliases: JSON array of configured aliases.
        copied_aliases: JSON array of aliases tracked as copied.
        created_at: Image creation time as unix seconds.
        recorded_at: Timestamp when the record was first saved.
        updated_at: Timestamp of the last save.
    """

    __tablename__ = "built_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)

    template: Mapped[str] = mapped_column(Text, nullable=False)
    remote: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    fingerprint: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    aliases: Mapped[list[str] | None] = mapped_column(JSON, nullable=True, default=list)
    copied_aliases: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True, default=list
    )

    created_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        """Return string representation of ResourceRecord."""
        return f"<ResourceRecord(name='{self.name}', resource_id='{self.resource_id}')>"


__all__ = ["ResourceRecord"]
