"""Cancellation tokens shared by the build and image store waits.

A single CancelToken is passed into both the builder subprocess wait and
the image store operation wait, so an interrupt stops whichever stage is
currently blocking and lets it clean up (terminate the builder, or send a
cancel request for the server-side operation).
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from types import FrameType

logger = logging.getLogger(__name__)


class OperationCancelledError(Exception):
    """Raised when a blocking wait is interrupted by its cancel token."""

    def __init__(
        self,
        message: str = "Operation cancelled",
        code: str = "cancelled",
    ) -> None:
        super().__init__(message)
        self.code = code


class CancelToken:
    """Thread-safe, one-shot cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Reason given to the first cancel() call."""
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. Later calls keep the first reason."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or the timeout expires.

        Returns:
            True if the token was cancelled.
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self.cancelled:
            raise OperationCancelledError(f"Operation cancelled: {self._reason}")


@contextmanager
def cancel_on_signals(
    token: CancelToken,
    signals: Sequence[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[CancelToken]:
    """Route process signals to a cancel token for the duration of a block.

    Signal handlers can only be installed from the main thread; elsewhere
    this is a no-op and the token is yielded unchanged.

    Args:
        token: Token to cancel when a signal arrives.
        signals: Signals to intercept.

    Yields:
        The token.
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def _handler(signum: int, frame: FrameType | None) -> None:
        name = signal.Signals(signum).name
        logger.warning("Received %s, cancelling", name)
        token.cancel(name)

    previous = {sig: signal.signal(sig, _handler) for sig in signals}
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


__all__ = ["CancelToken", "OperationCancelledError", "cancel_on_signals"]
