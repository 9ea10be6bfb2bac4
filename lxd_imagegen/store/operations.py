"""Handles for asynchronous image store operations.

Image uploads and deletions return immediately with a server-side
operation. The caller blocks on the operation with a cancelable wait:
the wait runs in short server-side slices, and between slices checks the
cancel token. When the token fires (or the waiting thread is interrupted),
a cancel request is sent to the server before the wait gives up, so the
server-side operation is not left running unattended.
"""

from __future__ import annotations

import logging
import math
import time
from typing import TYPE_CHECKING, Any

from lxd_imagegen.cancel import OperationCancelledError
from lxd_imagegen.store.errors import (
    ImageStoreError,
    OperationFailedError,
    OperationTimeoutError,
)
from lxd_imagegen.types import OperationStatus

if TYPE_CHECKING:
    from lxd_imagegen.cancel import CancelToken
    from lxd_imagegen.store.client import ImageStoreClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1


class Operation:
    """A server-side operation started by the image store.

    Attributes:
        id: Operation UUID.
    """

    def __init__(
        self,
        client: ImageStoreClient,
        operation_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._client = client
        self.id = operation_id
        self._metadata: dict[str, Any] = metadata or {}

    def __repr__(self) -> str:
        """Return string representation of Operation."""
        return f"<Operation(id='{self.id}', status='{self._metadata.get('status')}')>"

    @property
    def metadata(self) -> dict[str, Any]:
        """Last known operation record."""
        return self._metadata

    @property
    def status(self) -> OperationStatus | None:
        """Last known status, or None if the server never reported one."""
        code = self._metadata.get("status_code")
        if code is None:
            return None
        try:
            return OperationStatus(code)
        except ValueError:
            return None

    @property
    def result(self) -> dict[str, Any]:
        """Result metadata of the operation (e.g. the image fingerprint)."""
        return self._metadata.get("metadata") or {}

    @property
    def error(self) -> str:
        """Error message reported by the server, if any."""
        return self._metadata.get("err") or ""

    def get(self) -> dict[str, Any]:
        """Refresh and return the operation record."""
        self._metadata = self._client.get_operation(self.id)
        return self._metadata

    def cancel(self) -> None:
        """Ask the server to cancel the operation."""
        self._client.cancel_operation(self.id)

    def _request_cancel(self) -> None:
        """Send a best-effort cancel request; failures are logged."""
        logger.warning("Requesting cancellation of operation %s", self.id)
        try:
            self.cancel()
        except ImageStoreError as e:
            logger.warning("Failed to cancel operation %s: %s", self.id, e)

    def _is_final(self) -> bool:
        status = self.status
        return status is not None and status.is_final

    def wait(
        self,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
        poll_interval: int = DEFAULT_POLL_INTERVAL,
    ) -> dict[str, Any]:
        """Block until the operation finishes.

        Args:
            timeout: Overall timeout in seconds (None = wait forever).
            cancel_token: Token that aborts the wait when cancelled.
            poll_interval: Length of each server-side wait slice in seconds.

        Returns:
            The operation's result metadata.

        Raises:
            OperationFailedError: If the operation failed or was cancelled
                server-side.
            OperationTimeoutError: If the timeout expired.
            OperationCancelledError: If the token was cancelled.
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        try:
            while not self._is_final():
                if cancel_token is not None and cancel_token.cancelled:
                    self._request_cancel()
                    raise OperationCancelledError(
                        f"Operation {self.id} cancelled: {cancel_token.reason}"
                    )

                wait_slice = poll_interval
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        self._request_cancel()
                        raise OperationTimeoutError(self.id, timeout or 0)
                    wait_slice = max(1, min(poll_interval, math.ceil(remaining)))

                self._metadata = self._client.wait_operation(self.id, wait_slice)
        except KeyboardInterrupt:
            self._request_cancel()
            raise

        status = self.status
        if status is not OperationStatus.SUCCESS:
            raise OperationFailedError(
                self.id,
                self.error or (status.name.lower() if status else "unknown status"),
                status_code=status.value if status else None,
            )

        logger.debug("Operation %s succeeded", self.id)
        return self.result


__all__ = ["DEFAULT_POLL_INTERVAL", "Operation"]
