"""Image transfer into a remote image store.

Streams a built artifact pair to the store as a split image, waits for
the server-side import operation and returns the fingerprint the store
assigned to the new image.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lxd_imagegen.store.client import (
    ImageDescriptor,
    ProgressCallback,
    TransferProgress,
)
from lxd_imagegen.store.errors import ImageStoreError, ImageStoreProtocolError
from lxd_imagegen.store.operations import DEFAULT_POLL_INTERVAL

if TYPE_CHECKING:
    from lxd_imagegen.builds.artifacts import BuildArtifacts
    from lxd_imagegen.cancel import CancelToken
    from lxd_imagegen.store.client import ImageStoreClient

logger = logging.getLogger(__name__)


class ImageTransferError(Exception):
    """Raised when the store rejects an upload or the import fails."""

    def __init__(self, message: str, code: str = "transfer_failed") -> None:
        super().__init__(message)
        self.code = code


def log_transfer_progress(progress: TransferProgress) -> None:
    """Default progress handler: log progress at DEBUG."""
    percent = progress.percent
    if percent is None:
        logger.debug(
            "Image transfer progress: %s %d bytes", progress.name, progress.bytes_sent
        )
    else:
        logger.debug("Image transfer progress: %s %.0f%%", progress.name, percent)


def transfer_image(
    client: ImageStoreClient,
    artifacts: BuildArtifacts,
    filename: str | None = None,
    cancel_token: CancelToken | None = None,
    progress: ProgressCallback | None = log_transfer_progress,
    timeout: float | None = None,
    poll_interval: int = DEFAULT_POLL_INTERVAL,
) -> str:
    """Import an artifact pair into the store.

    Args:
        client: Target image store.
        artifacts: Built metadata/rootfs pair.
        filename: Filename recorded with the image (defaults to the
            metadata archive's name).
        cancel_token: Token that aborts the wait, cancelling the import
            server-side.
        progress: Callback receiving upload progress.
        timeout: Timeout for the import operation in seconds.
        poll_interval: Length of each server-side wait slice in seconds.

    Returns:
        Fingerprint of the imported image.

    Raises:
        ImageTransferError: If the upload is rejected or the import fails.
        OperationCancelledError: If the token is cancelled.
        ImageStoreProtocolError: If the store does not report a fingerprint.
    """
    metadata_name = artifacts.metadata_path.name
    rootfs_name = artifacts.rootfs_path.name
    descriptor = ImageDescriptor(filename=filename or metadata_name)

    logger.info("Transferring image %s + %s", metadata_name, rootfs_name)
    try:
        with (
            artifacts.metadata_path.open("rb") as metadata_file,
            artifacts.rootfs_path.open("rb") as rootfs_file,
        ):
            operation = client.create_image(
                descriptor,
                metadata_file,
                rootfs_file,
                metadata_name=metadata_name,
                rootfs_name=rootfs_name,
                progress=progress,
            )
            result = operation.wait(
                timeout=timeout,
                cancel_token=cancel_token,
                poll_interval=poll_interval,
            )
    except ImageStoreError as e:
        logger.error("Image transfer failed: %s", e)
        raise ImageTransferError(f"Image transfer failed: {e}") from e

    fingerprint = result.get("fingerprint")
    if not isinstance(fingerprint, str) or not fingerprint:
        raise ImageStoreProtocolError(
            f"Import operation {operation.id} reported no fingerprint: {result!r}"
        )

    logger.info("Image imported with fingerprint: %s", fingerprint)
    return fingerprint


__all__ = ["ImageTransferError", "log_transfer_progress", "transfer_image"]
