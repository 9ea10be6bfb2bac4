"""Build orchestration module.

This module handles:
- Isolated build workspaces
- Running distrobuilder
- Locating the metadata/rootfs artifact pair
"""

from lxd_imagegen.builds.artifacts import ArtifactMissingError, BuildArtifacts
from lxd_imagegen.builds.runner import (
    BuildCancelledError,
    BuildExecutionError,
    build_image,
)

__all__ = [
    "ArtifactMissingError",
    "BuildArtifacts",
    "BuildCancelledError",
    "BuildExecutionError",
    "build_image",
]
