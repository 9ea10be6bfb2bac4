"""Shared fixtures: an in-memory image store and a fake distrobuilder."""

import hashlib
import stat
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from lxd_imagegen.config import Settings
from lxd_imagegen.resources.context import ProviderContext
from lxd_imagegen.store.client import (
    ImageAlias,
    ImageAliasEntry,
    ImageDescriptor,
    ImageRecord,
)
from lxd_imagegen.store.errors import ImageStoreError, NotFoundError
from lxd_imagegen.store.operations import Operation
from lxd_imagegen.types import OperationStatus

CREATED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

# Writes the definition itself as the metadata archive, so distinct
# templates produce distinct fingerprints
FAKE_DISTROBUILDER = """#!/bin/sh
echo "building $2"
cat "$2" > lxd.tar.xz
printf 'rootfs' > rootfs.squashfs
"""


class FakeImageStore:
    """In-memory stand-in for ImageStoreClient.

    Fingerprints are sha256(metadata + rootfs) like a real store. Uploads
    and deletions return real Operation handles that finish on the first
    wait.
    """

    def __init__(self) -> None:
        self.images: dict[str, ImageRecord] = {}
        self.aliases: dict[str, str] = {}
        self.operations: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.cancelled: list[str] = []
        self.fail_alias_create: set[str] = set()
        self.fail_alias_delete: set[str] = set()
        self.fail_upload: ImageStoreError | None = None
        self.upload_result: dict[str, Any] | None = None
        self.closed = False

    def _start(self, final: dict[str, Any]) -> Operation:
        operation_id = uuid.uuid4().hex
        self.operations[operation_id] = final
        return Operation(
            self, operation_id, {"status_code": OperationStatus.RUNNING.value}
        )

    def add_image(self, fingerprint: str, aliases: list[str] | None = None) -> None:
        self.images[fingerprint] = ImageRecord(
            fingerprint=fingerprint, created_at=CREATED_AT
        )
        for name in aliases or []:
            self.aliases[name] = fingerprint

    def get_image(self, fingerprint: str) -> ImageRecord:
        if fingerprint not in self.images:
            raise NotFoundError("Image not found")
        record = self.images[fingerprint]
        bound = [
            ImageAlias(name=n)
            for n, t in sorted(self.aliases.items())
            if t == fingerprint
        ]
        return record.model_copy(update={"aliases": bound})

    def create_image(
        self,
        descriptor: ImageDescriptor,
        metadata_file,
        rootfs_file,
        metadata_name: str = "metadata",
        rootfs_name: str = "rootfs",
        progress=None,
    ) -> Operation:
        self.calls.append(("upload", descriptor.filename))
        if self.fail_upload is not None:
            raise self.fail_upload
        data = metadata_file.read() + rootfs_file.read()
        fingerprint = hashlib.sha256(data).hexdigest()
        self.images[fingerprint] = ImageRecord(
            fingerprint=fingerprint,
            created_at=CREATED_AT,
            filename=descriptor.filename,
            size=len(data),
        )
        result = self.upload_result
        if result is None:
            result = {"fingerprint": fingerprint}
        return self._start({"status_code": 200, "metadata": result})

    def delete_image(self, fingerprint: str) -> Operation:
        self.calls.append(("delete_image", fingerprint))
        if fingerprint not in self.images:
            raise NotFoundError("Image not found")
        del self.images[fingerprint]
        self.aliases = {n: t for n, t in self.aliases.items() if t != fingerprint}
        return self._start({"status_code": 200, "metadata": {}})

    def list_image_aliases(self) -> list[ImageAliasEntry]:
        return [
            ImageAliasEntry(name=n, target=t) for n, t in sorted(self.aliases.items())
        ]

    def create_image_alias(
        self, name: str, target: str, description: str = ""
    ) -> None:
        self.calls.append(("create_alias", name))
        if name in self.fail_alias_create:
            raise ImageStoreError(f"Failed to create alias {name}", status_code=500)
        if name in self.aliases:
            raise ImageStoreError("Alias already exists", status_code=409)
        self.aliases[name] = target

    def delete_image_alias(self, name: str) -> None:
        self.calls.append(("delete_alias", name))
        if name in self.fail_alias_delete:
            raise ImageStoreError(f"Failed to delete alias {name}", status_code=500)
        if name not in self.aliases:
            raise NotFoundError("Alias not found")
        del self.aliases[name]

    def wait_operation(self, operation_id: str, timeout: int) -> dict[str, Any]:
        return self.operations[operation_id]

    def cancel_operation(self, operation_id: str) -> None:
        self.cancelled.append(operation_id)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_store() -> FakeImageStore:
    """Empty in-memory image store."""
    return FakeImageStore()


@pytest.fixture
def fake_builder(tmp_path: Path) -> Path:
    """Executable script standing in for distrobuilder."""
    script = tmp_path / "distrobuilder"
    script.write_text(FAKE_DISTROBUILDER)
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return script


@pytest.fixture
def settings(tmp_path: Path, fake_builder: Path) -> Settings:
    """Settings running the fake builder without privileges."""
    return Settings(
        builder_command=str(fake_builder),
        privilege_wrapper=[],
        tmp_dir=tmp_path / "builds",
        build_timeout=60,
        db_url="sqlite:///:memory:",
    )


@pytest.fixture
def ctx(settings: Settings, fake_store: FakeImageStore):
    """Provider context whose every remote is the fake store."""
    with ProviderContext(settings, client_factory=lambda remote: fake_store) as c:
        yield c
