"""Shared provider context for lifecycle operations.

The context carries the read-only settings and lazily opens one image
store client per remote. It is passed explicitly to every lifecycle
operation instead of living in module-level state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from lxd_imagegen.config import get_settings
from lxd_imagegen.store.client import ImageStoreClient, connect

if TYPE_CHECKING:
    from lxd_imagegen.config import Settings
    from lxd_imagegen.resources.models import BuiltImage

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], ImageStoreClient]


class UnknownRemoteError(Exception):
    """Raised when a resource names a remote that is not configured."""

    def __init__(self, remote: str, code: str = "unknown_remote") -> None:
        super().__init__(f"Unknown remote: {remote}")
        self.remote = remote
        self.code = code


class ProviderContext:
    """Settings plus per-remote image store clients.

    Args:
        settings: Application settings.
        client_factory: Callable opening a client for a remote name;
            defaults to connecting with the configured remote settings.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.settings = settings if settings is not None else get_settings()
        self._client_factory = client_factory or self._connect
        self._clients: dict[str, ImageStoreClient] = {}

    def __enter__(self) -> ProviderContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _connect(self, remote: str) -> ImageStoreClient:
        try:
            remote_config = self.settings.get_remote(remote)
        except KeyError:
            raise UnknownRemoteError(remote) from None
        return connect(remote_config, request_timeout=self.settings.request_timeout)

    def select_remote(self, image: BuiltImage) -> str:
        """Return the remote an image lives in (or will be imported into)."""
        return image.remote or self.settings.default_remote

    def get_image_server(self, remote: str) -> ImageStoreClient:
        """Return the client for a remote, opening it on first use."""
        client = self._clients.get(remote)
        if client is None:
            logger.debug("Opening image store client for remote %s", remote)
            client = self._client_factory(remote)
            self._clients[remote] = client
        return client

    def close(self) -> None:
        """Close every opened client."""
        for client in self._clients.values():
            client.close()
        self._clients.clear()


__all__ = ["ClientFactory", "ProviderContext", "UnknownRemoteError"]
