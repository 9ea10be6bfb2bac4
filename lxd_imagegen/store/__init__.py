"""Remote image store module.

This module handles:
- The LXD image store HTTP client
- Asynchronous operation handles with cancelable waits
- Streaming build artifacts into a store
"""

from lxd_imagegen.store.client import (
    ImageAliasEntry,
    ImageRecord,
    ImageStoreClient,
    connect,
)
from lxd_imagegen.store.errors import (
    ImageStoreError,
    ImageStoreProtocolError,
    NotFoundError,
    OperationFailedError,
    OperationTimeoutError,
)
from lxd_imagegen.store.operations import Operation
from lxd_imagegen.store.transfer import ImageTransferError, transfer_image

__all__ = [
    "ImageAliasEntry",
    "ImageRecord",
    "ImageStoreClient",
    "ImageStoreError",
    "ImageStoreProtocolError",
    "ImageTransferError",
    "NotFoundError",
    "Operation",
    "OperationFailedError",
    "OperationTimeoutError",
    "connect",
    "transfer_image",
]
