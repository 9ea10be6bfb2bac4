"""HTTP client for the LXD image store API.

This module handles:
- Connecting to a remote over a unix socket or HTTPS with client certificates
- Image lookup, upload and deletion
- Image alias listing, creation and deletion
- Operation polling and cancellation
- Translating LXD error responses into typed exceptions

Only the subset of the LXD REST API needed for image management is covered.
"""

from __future__ import annotations

import logging
import ssl
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO
from urllib.parse import quote, urlencode

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from lxd_imagegen.store.errors import (
    ImageStoreError,
    ImageStoreProtocolError,
    NotFoundError,
)
from lxd_imagegen.store.operations import Operation

if TYPE_CHECKING:
    from lxd_imagegen.config import RemoteConfig

logger = logging.getLogger(__name__)

API_PREFIX = "/1.0"

# Base URL used for unix socket connections (host part is ignored)
UNIX_BASE_URL = "http://lxd"

# Timeout for regular API requests (seconds)
REQUEST_TIMEOUT = 30.0

# Extra read time allowed on top of a server-side operation wait
WAIT_READ_MARGIN = 10.0


class ImageAlias(BaseModel):
    """Alias attached to an image record."""

    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""


class ImageAliasEntry(BaseModel):
    """Alias entry from the store's alias namespace."""

    model_config = ConfigDict(extra="ignore")

    name: str
    target: str
    description: str = ""


class ImageRecord(BaseModel):
    """Image record held by the store, keyed by fingerprint."""

    model_config = ConfigDict(extra="ignore")

    fingerprint: str
    created_at: datetime | None = None
    uploaded_at: datetime | None = None
    aliases: list[ImageAlias] = Field(default_factory=list)
    filename: str = ""
    size: int = 0
    public: bool = False
    properties: dict[str, str] = Field(default_factory=dict)

    @field_validator("aliases", "properties", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any, info: ValidationInfo) -> Any:
        """LXD reports empty collections as null."""
        if v is None:
            return [] if info.field_name == "aliases" else {}
        return v

    @property
    def alias_names(self) -> list[str]:
        """Names of the aliases attached to this image."""
        return [a.name for a in self.aliases]


class ImageDescriptor(BaseModel):
    """Descriptor sent along with an image upload."""

    filename: str = ""
    public: bool = False
    properties: dict[str, str] = Field(default_factory=dict)


@dataclass(frozen=True)
class TransferProgress:
    """Progress of one uploaded stream."""

    name: str
    bytes_sent: int
    total_bytes: int | None

    @property
    def percent(self) -> float | None:
        """Percentage sent, if the total size is known."""
        if not self.total_bytes:
            return None
        return 100.0 * self.bytes_sent / self.total_bytes


ProgressCallback = Callable[[TransferProgress], None]


class ProgressReader:
    """File wrapper reporting read progress while httpx streams it."""

    def __init__(
        self,
        file: BinaryIO,
        name: str,
        callback: ProgressCallback,
        total_bytes: int | None = None,
    ) -> None:
        self._file = file
        self._name = name
        self._callback = callback
        self._total = total_bytes
        self._sent = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._file.read(size)
        if chunk:
            self._sent += len(chunk)
            self._callback(TransferProgress(self._name, self._sent, self._total))
        return chunk

    def seek(self, offset: int, whence: int = 0) -> int:
        position = self._file.seek(offset, whence)
        self._sent = position
        return position

    def tell(self) -> int:
        return self._file.tell()

    def fileno(self) -> int:
        return self._file.fileno()


def _stream_size(file: BinaryIO) -> int | None:
    """Return the size of a file object, if it can be determined."""
    try:
        current = file.tell()
        size = file.seek(0, 2)
        file.seek(current)
        return size
    except (OSError, ValueError):
        return None


class ImageStoreClient:
    """Client for one LXD image store.

    Args:
        http_client: Configured httpx client whose base URL points at the
            store (``http://lxd`` for unix sockets).
        project: LXD project to scope requests to.
        request_timeout: Timeout for regular requests in seconds.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        project: str | None = None,
        request_timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._http = http_client
        self.project = project
        self.request_timeout = request_timeout

    def __enter__(self) -> ImageStoreClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._http.close()

    # Low-level helpers

    def _params(self, extra: dict[str, Any] | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if self.project:
            params["project"] = self.project
        if extra:
            params.update(extra)
        return params

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        timeout: float | httpx.Timeout | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Send a request and return the decoded LXD response envelope.

        Raises:
            NotFoundError: If the store reports 404.
            ImageStoreError: For any other error response or transport error.
        """
        url = f"{API_PREFIX}{path}"
        try:
            response = self._http.request(
                method,
                url,
                params=self._params(params),
                timeout=self.request_timeout if timeout is None else timeout,
                **kwargs,
            )
        except httpx.HTTPError as e:
            raise ImageStoreError(
                f"{method} {url} failed: {e}",
                code="connection_error",
            ) from e

        try:
            envelope = response.json()
        except ValueError:
            envelope = {}
        if not isinstance(envelope, dict):
            envelope = {}

        error_code = envelope.get("error_code") or response.status_code
        if envelope.get("type") == "error" or response.status_code >= 400:
            message = envelope.get("error") or response.reason_phrase
            if error_code == 404:
                raise NotFoundError(message)
            raise ImageStoreError(
                f"{method} {url} failed: {message}",
                status_code=error_code,
            )

        if "type" not in envelope:
            raise ImageStoreProtocolError(
                f"Unexpected response from {method} {url}: {response.text[:200]}"
            )
        return envelope

    def _operation_from(self, envelope: dict[str, Any]) -> Operation:
        """Build an Operation handle from an async response envelope."""
        path = envelope.get("operation")
        if envelope.get("type") != "async" or not path:
            raise ImageStoreProtocolError(
                f"Expected an asynchronous response, got: {envelope.get('type')}"
            )
        operation_id = path.rstrip("/").rsplit("/", 1)[-1]
        return Operation(self, operation_id, envelope.get("metadata") or {})

    # Images

    def get_image(self, fingerprint: str) -> ImageRecord:
        """Fetch an image record by fingerprint.

        Raises:
            NotFoundError: If no image has this fingerprint.
        """
        envelope = self._request("GET", f"/images/{quote(fingerprint, safe='')}")
        return ImageRecord.model_validate(envelope["metadata"])

    def create_image(
        self,
        descriptor: ImageDescriptor,
        metadata_file: BinaryIO,
        rootfs_file: BinaryIO,
        metadata_name: str = "metadata",
        rootfs_name: str = "rootfs",
        progress: ProgressCallback | None = None,
    ) -> Operation:
        """Upload a split image (metadata archive + rootfs image).

        Both streams are sent as one multipart body; the upload itself has
        no read/write timeout.

        Returns:
            Handle to the server-side import operation.
        """
        headers = {"X-LXD-public": "1" if descriptor.public else "0"}
        if descriptor.filename:
            headers["X-LXD-filename"] = descriptor.filename
        if descriptor.properties:
            headers["X-LXD-properties"] = urlencode(descriptor.properties)

        meta_stream: Any = metadata_file
        rootfs_stream: Any = rootfs_file
        if progress is not None:
            meta_stream = ProgressReader(
                metadata_file, metadata_name, progress, _stream_size(metadata_file)
            )
            rootfs_stream = ProgressReader(
                rootfs_file, rootfs_name, progress, _stream_size(rootfs_file)
            )

        files = {
            "metadata": (metadata_name, meta_stream, "application/octet-stream"),
            "rootfs": (rootfs_name, rootfs_stream, "application/octet-stream"),
        }
        envelope = self._request(
            "POST",
            "/images",
            headers=headers,
            files=files,
            timeout=httpx.Timeout(None, connect=self.request_timeout),
        )
        operation = self._operation_from(envelope)
        logger.info("Image upload accepted as operation %s", operation.id)
        return operation

    def delete_image(self, fingerprint: str) -> Operation:
        """Delete an image by fingerprint.

        Returns:
            Handle to the server-side deletion operation.
        """
        envelope = self._request("DELETE", f"/images/{quote(fingerprint, safe='')}")
        return self._operation_from(envelope)

    # Aliases

    def list_image_aliases(self) -> list[ImageAliasEntry]:
        """List every alias in the store's alias namespace."""
        envelope = self._request("GET", "/images/aliases", params={"recursion": 1})
        return [ImageAliasEntry.model_validate(a) for a in envelope["metadata"] or []]

    def create_image_alias(
        self, name: str, target: str, description: str = ""
    ) -> None:
        """Bind an alias name to a fingerprint."""
        self._request(
            "POST",
            "/images/aliases",
            json={"name": name, "target": target, "description": description},
        )

    def delete_image_alias(self, name: str) -> None:
        """Delete an alias by name."""
        self._request("DELETE", f"/images/aliases/{quote(name, safe='')}")

    # Operations

    def get_operation(self, operation_id: str) -> dict[str, Any]:
        """Fetch the current record of an operation."""
        envelope = self._request("GET", f"/operations/{operation_id}")
        return envelope["metadata"]

    def wait_operation(self, operation_id: str, timeout: int) -> dict[str, Any]:
        """Wait server-side for up to ``timeout`` seconds for an operation."""
        envelope = self._request(
            "GET",
            f"/operations/{operation_id}/wait",
            params={"timeout": timeout},
            timeout=timeout + WAIT_READ_MARGIN,
        )
        return envelope["metadata"]

    def cancel_operation(self, operation_id: str) -> None:
        """Ask the server to cancel an operation."""
        self._request("DELETE", f"/operations/{operation_id}")


def _ssl_context(remote: RemoteConfig) -> ssl.SSLContext:
    """Build the TLS context for an HTTPS remote."""
    if remote.server_cert is not None:
        # A pinned server certificate is trusted regardless of hostname
        context = ssl.create_default_context(cafile=str(remote.server_cert))
        context.check_hostname = False
    else:
        context = ssl.create_default_context()
        if not remote.verify_tls:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

    if remote.client_cert is not None:
        key = str(remote.client_key) if remote.client_key is not None else None
        context.load_cert_chain(str(remote.client_cert), key)
    return context


def connect(
    remote: RemoteConfig,
    request_timeout: float = REQUEST_TIMEOUT,
) -> ImageStoreClient:
    """Open a client for a configured remote.

    Args:
        remote: Remote connection settings.
        request_timeout: Timeout for regular requests in seconds.

    Returns:
        ImageStoreClient for the remote.
    """
    if remote.is_unix:
        socket_path = Path(remote.address.removeprefix("unix://"))
        logger.debug("Connecting to image store via socket %s", socket_path)
        http_client = httpx.Client(
            transport=httpx.HTTPTransport(uds=str(socket_path)),
            base_url=UNIX_BASE_URL,
            timeout=request_timeout,
        )
    else:
        logger.debug("Connecting to image store at %s", remote.address)
        verify: ssl.SSLContext | bool = True
        if remote.address.startswith("https://"):
            verify = _ssl_context(remote)
        http_client = httpx.Client(
            base_url=remote.address,
            verify=verify,
            timeout=request_timeout,
        )

    return ImageStoreClient(
        http_client,
        project=remote.project,
        request_timeout=request_timeout,
    )


__all__ = [
    "ImageAlias",
    "ImageAliasEntry",
    "ImageDescriptor",
    "ImageRecord",
    "ImageStoreClient",
    "ProgressCallback",
    "ProgressReader",
    "TransferProgress",
    "connect",
]
