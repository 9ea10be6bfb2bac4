"""Lifecycle operations for built image resources.

This module provides the create/read/update/delete/exists contract:
- create(): build the template, import the artifacts, bind aliases
- read(): refresh the record from the store (clears it if the image vanished)
- update(): reconcile aliases, the only mutable field
- delete(): delete the image and wait for the store to finish
- exists(): cheap existence check

Stages of create() run strictly in sequence; a failure in any stage
leaves the record without an identity. Requested aliases are checked for
conflicts before anything is built. An image that was imported before a
later stage failed is not removed from the store.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lxd_imagegen.aliases.reconcile import (
    check_alias_conflicts,
    ensure_image_aliases,
    filter_visible_aliases,
    reconcile_aliases,
)
from lxd_imagegen.builds.runner import build_image
from lxd_imagegen.identity import ResourceID
from lxd_imagegen.resources.models import IMMUTABLE_FIELDS, ImmutableFieldError
from lxd_imagegen.store.errors import NotFoundError
from lxd_imagegen.store.transfer import transfer_image
from lxd_imagegen.types import ReconcileReport, ResourceState

if TYPE_CHECKING:
    from lxd_imagegen.builds.runner import LogSink
    from lxd_imagegen.cancel import CancelToken
    from lxd_imagegen.resources.context import ProviderContext
    from lxd_imagegen.resources.models import BuiltImage
    from lxd_imagegen.store.client import ImageStoreClient

logger = logging.getLogger(__name__)


def _resolve(
    image: BuiltImage, ctx: ProviderContext
) -> tuple[ResourceID, ImageStoreClient]:
    """Parse the identity and open the client for its remote."""
    rid = image.resource_id()
    remote = rid.remote or ctx.settings.default_remote
    return rid, ctx.get_image_server(remote)


def create(
    image: BuiltImage,
    ctx: ProviderContext,
    cancel_token: CancelToken | None = None,
    log_sink: LogSink | None = None,
) -> ReconcileReport | None:
    """Build, import and alias a new image.

    Args:
        image: Record in the absent state; ``template``, ``remote`` and
            ``aliases`` are read from it.
        ctx: Provider context.
        cancel_token: Token that aborts the build or the import wait.
        log_sink: Callable receiving builder output lines.

    Returns:
        Alias report if aliases were requested, else None.

    Raises:
        BuildExecutionError: If the builder fails.
        ArtifactMissingError: If the builder did not produce both artifacts.
        ImageTransferError: If the import fails.
        AliasConflictError: If a requested alias is already bound.
        OperationCancelledError: If the token is cancelled.
    """
    image.transition(ResourceState.CREATING)
    remote = ctx.select_remote(image)
    settings = ctx.settings
    fingerprint: str | None = None
    report: ReconcileReport | None = None

    try:
        client = ctx.get_image_server(remote)
        check_alias_conflicts(client, image.aliases)

        with build_image(
            image.template,
            settings=settings,
            cancel_token=cancel_token,
            log_sink=log_sink,
        ) as artifacts:
            fingerprint = transfer_image(
                client,
                artifacts,
                cancel_token=cancel_token,
                timeout=settings.operation_timeout,
                poll_interval=settings.operation_poll_interval,
            )

        if image.aliases:
            report = ensure_image_aliases(client, image.aliases, fingerprint)
    except BaseException:
        if fingerprint is not None:
            logger.warning(
                "Image %s was imported into %s but is not tracked", fingerprint, remote
            )
        image.mark_absent()
        raise

    image.id = ResourceID(remote, fingerprint).resource_id()
    image.fingerprint = fingerprint
    image.transition(ResourceState.PRESENT)
    logger.info("Created built image %s", image.id)

    read(image, ctx)
    return report


def read(image: BuiltImage, ctx: ProviderContext) -> None:
    """Refresh a record from the store.

    A store that no longer has the image is not an error: the record's
    identity is cleared and it moves to the absent state.

    Args:
        image: Record with an identity.
        ctx: Provider context.
    """
    rid, client = _resolve(image, ctx)

    try:
        record = client.get_image(rid.fingerprint)
    except NotFoundError:
        logger.info("Image %s no longer exists, clearing identity", image.id)
        image.mark_absent()
        return

    image.fingerprint = rid.fingerprint
    image.created_at = (
        int(record.created_at.timestamp()) if record.created_at is not None else None
    )
    image.aliases = filter_visible_aliases(
        record.alias_names,
        configured=image.aliases,
        copied=image.copied_aliases,
    )


def update(
    image: BuiltImage,
    previous: BuiltImage,
    ctx: ProviderContext,
) -> ReconcileReport:
    """Apply an alias change to an existing image.

    Args:
        image: Record carrying the desired aliases.
        previous: Record as it was before the change.
        ctx: Provider context.

    Returns:
        ReconcileReport; failed alias operations are reported, not raised.

    Raises:
        ImmutableFieldError: If a field fixed at creation was changed.
    """
    for field in IMMUTABLE_FIELDS:
        if getattr(image, field) != getattr(previous, field):
            raise ImmutableFieldError(field)

    rid, client = _resolve(image, ctx)
    if set(image.aliases) == set(previous.aliases):
        return ReconcileReport(fingerprint=rid.fingerprint)

    image.transition(ResourceState.UPDATING)
    try:
        report = reconcile_aliases(
            client,
            existing=previous.aliases,
            desired=image.aliases,
            fingerprint=rid.fingerprint,
        )
    finally:
        image.transition(ResourceState.PRESENT)
    return report


def delete(
    image: BuiltImage,
    ctx: ProviderContext,
    cancel_token: CancelToken | None = None,
) -> None:
    """Delete the image from its store.

    Args:
        image: Record with an identity.
        ctx: Provider context.
        cancel_token: Token that aborts the wait, cancelling the deletion
            server-side.
    """
    rid, client = _resolve(image, ctx)
    settings = ctx.settings

    image.transition(ResourceState.DELETING)
    try:
        operation = client.delete_image(rid.fingerprint)
        operation.wait(
            timeout=settings.operation_timeout,
            cancel_token=cancel_token,
            poll_interval=settings.operation_poll_interval,
        )
    except BaseException:
        image.transition(ResourceState.PRESENT)
        raise

    logger.info("Deleted built image %s", image.id)
    image.mark_absent()


def exists(image: BuiltImage, ctx: ProviderContext) -> bool:
    """Check whether the image still exists in its store.

    Returns:
        False if the store reports the image missing.

    Raises:
        ImageStoreError: For any failure other than not-found.
    """
    rid, client = _resolve(image, ctx)
    try:
        client.get_image(rid.fingerprint)
    except NotFoundError:
        return False
    return True


__all__ = ["create", "delete", "exists", "read", "update"]
