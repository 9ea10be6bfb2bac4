"""Error types raised by the image store client.

Every error carries a stable ``code`` for structured handling; NotFoundError
is kept distinct so callers can treat a missing image or alias as a state
rather than a failure.
"""

from __future__ import annotations


class ImageStoreError(Exception):
    """Raised when the image store rejects a request or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str = "image_store_error",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class NotFoundError(ImageStoreError):
    """Raised when the store reports that an object does not exist."""

    def __init__(self, message: str = "not found", code: str = "not_found") -> None:
        super().__init__(message, status_code=404, code=code)


class OperationFailedError(ImageStoreError):
    """Raised when an asynchronous operation finishes unsuccessfully."""

    def __init__(
        self,
        operation_id: str,
        message: str,
        status_code: int | None = None,
        code: str = "operation_failed",
    ) -> None:
        super().__init__(
            f"Operation {operation_id} failed: {message}",
            status_code=status_code,
            code=code,
        )
        self.operation_id = operation_id


class OperationTimeoutError(ImageStoreError):
    """Raised when an asynchronous operation does not finish in time."""

    def __init__(
        self,
        operation_id: str,
        timeout: float,
        code: str = "operation_timeout",
    ) -> None:
        super().__init__(
            f"Operation {operation_id} did not finish within {timeout} seconds",
            code=code,
        )
        self.operation_id = operation_id
        self.timeout = timeout


class ImageStoreProtocolError(Exception):
    """Raised when the store answers in a shape this client cannot handle.

    This is a contract violation, not an operational failure; it carries no
    code and is never translated into another error.
    """


__all__ = [
    "ImageStoreError",
    "ImageStoreProtocolError",
    "NotFoundError",
    "OperationFailedError",
    "OperationTimeoutError",
]
