"""Build artifact location and description.

distrobuilder's ``build-lxd`` subcommand writes a split LXD image into its
working directory: a metadata archive and a squashfs root filesystem, both
under fixed names. This module locates that pair and describes it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

METADATA_ARTIFACT = "lxd.tar.xz"
ROOTFS_ARTIFACT = "rootfs.squashfs"


class ArtifactMissingError(Exception):
    """Raised when the builder exited cleanly but an artifact is absent."""

    def __init__(
        self,
        workdir: Path,
        missing: list[str],
        code: str = "artifact_missing",
    ) -> None:
        super().__init__(
            f"Build artifact(s) not found in {workdir}: {', '.join(missing)}"
        )
        self.workdir = workdir
        self.missing = missing
        self.code = code


@dataclass(frozen=True)
class BuildArtifacts:
    """The metadata/rootfs pair produced by one build.

    Attributes:
        metadata_path: Path to the metadata archive.
        rootfs_path: Path to the root filesystem image.
        workdir: Build working directory holding both files.
    """

    metadata_path: Path
    rootfs_path: Path
    workdir: Path


def locate_artifacts(workdir: Path) -> BuildArtifacts:
    """Locate the artifact pair in a build working directory.

    Existence is the only check performed; contents are not validated.

    Args:
        workdir: Build working directory.

    Returns:
        BuildArtifacts for the directory.

    Raises:
        ArtifactMissingError: If either artifact is absent.
    """
    metadata_path = workdir / METADATA_ARTIFACT
    rootfs_path = workdir / ROOTFS_ARTIFACT

    missing = [p.name for p in (metadata_path, rootfs_path) if not p.is_file()]
    if missing:
        logger.error("Artifact(s) %s not found at %s", ", ".join(missing), workdir)
        raise ArtifactMissingError(workdir, missing)

    return BuildArtifacts(
        metadata_path=metadata_path,
        rootfs_path=rootfs_path,
        workdir=workdir,
    )


def describe_artifacts(artifacts: BuildArtifacts) -> dict[str, Any]:
    """Describe an artifact pair for logging and CLI output.

    Args:
        artifacts: Artifact pair.

    Returns:
        Dictionary with file names and sizes.
    """
    return {
        "workdir": str(artifacts.workdir),
        "metadata": {
            "filename": artifacts.metadata_path.name,
            "size_bytes": artifacts.metadata_path.stat().st_size,
        },
        "rootfs": {
            "filename": artifacts.rootfs_path.name,
            "size_bytes": artifacts.rootfs_path.stat().st_size,
        },
    }


__all__ = [
    "ArtifactMissingError",
    "BuildArtifacts",
    "METADATA_ARTIFACT",
    "ROOTFS_ARTIFACT",
    "describe_artifacts",
    "locate_artifacts",
]
