"""Thin CLI wrapper for lxd_imagegen.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from lxd_imagegen import __version__
from lxd_imagegen.aliases.reconcile import AliasConflictError
from lxd_imagegen.builds.artifacts import ArtifactMissingError
from lxd_imagegen.builds.runner import BuildExecutionError
from lxd_imagegen.cancel import CancelToken, OperationCancelledError, cancel_on_signals
from lxd_imagegen.config import get_settings, print_settings_json
from lxd_imagegen.db import open_state
from lxd_imagegen.identity import InvalidResourceIDError
from lxd_imagegen.resources import lifecycle
from lxd_imagegen.resources.context import ProviderContext, UnknownRemoteError
from lxd_imagegen.resources.models import BuiltImage, InvalidStateError
from lxd_imagegen.store.errors import ImageStoreError
from lxd_imagegen.store.transfer import ImageTransferError
from lxd_imagegen.types import ReconcileReport

app = typer.Typer(
    name="lxd-imagegen",
    help="LXD Image Generator - build, import and alias LXD images",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

# Errors reported to the user as a failed command rather than a traceback
DOMAIN_ERRORS = (
    AliasConflictError,
    ArtifactMissingError,
    BuildExecutionError,
    ImageStoreError,
    ImageTransferError,
    InvalidResourceIDError,
    InvalidStateError,
    OperationCancelledError,
    UnknownRemoteError,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"lxd-imagegen version {__version__}")
        raise typer.Exit()


def _configure_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """LXD Image Generator - build, import and alias LXD images."""
    _configure_logging("DEBUG" if verbose else get_settings().log_level)


def _image_to_dict(name: str, image: BuiltImage) -> dict[str, Any]:
    return {
        "name": name,
        "id": image.id,
        "remote": image.remote,
        "fingerprint": image.fingerprint,
        "aliases": image.aliases,
        "created_at": image.created_at,
    }


def _print_image(name: str, image: BuiltImage) -> None:
    console.print(f"  [green]{name}[/green]")
    console.print(f"    ID: {image.id}")
    console.print(f"    Fingerprint: {image.fingerprint}")
    if image.aliases:
        console.print(f"    Aliases: {', '.join(image.aliases)}")
    if image.created_at is not None:
        console.print(f"    Created at: {image.created_at}")


def _print_report(report: ReconcileReport | None) -> None:
    if report is None:
        return
    for alias in report.deleted:
        console.print(f"  [blue]- alias {alias}[/blue]")
    for alias in report.created:
        console.print(f"  [blue]+ alias {alias}[/blue]")
    for failure in report.failures:
        console.print(
            f"  [yellow]Warning: failed to {failure.action.value} alias "
            f"{failure.name}: {failure.error}[/yellow]"
        )


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]{message}[/red]")
    return typer.Exit(code=1)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
        return

    tmp_dir_display = str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Remotes:[/bold]")
    for remote_name, remote in settings.remotes.items():
        marker = " (default)" if remote_name == settings.default_remote else ""
        console.print(f"  {remote_name}{marker}: {remote.address}")
    console.print()
    console.print("[bold]Builder:[/bold]")
    wrapper = " ".join(settings.privilege_wrapper) or "(none)"
    console.print(f"  Command:             {settings.builder_command}")
    console.print(f"  Subcommand:          {settings.builder_subcommand}")
    console.print(f"  Privilege wrapper:   {wrapper}")
    console.print(f"  Temp directory:      {tmp_dir_display}")
    console.print()
    console.print("[bold]State:[/bold]")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print(f"  Operation timeout:   {settings.operation_timeout}")
    console.print(f"  Request timeout:     {settings.request_timeout}")


@app.command()
def create(
    name: Annotated[str, typer.Argument(help="Local name for the image")],
    template: Annotated[
        Path,
        typer.Option(
            "--template",
            "-t",
            exists=True,
            dir_okay=False,
            readable=True,
            help="distrobuilder template file",
        ),
    ],
    remote: Annotated[
        str,
        typer.Option("--remote", "-r", help="Remote to import into"),
    ] = "",
    aliases: Annotated[
        list[str] | None,
        typer.Option("--alias", "-a", help="Alias to bind (can be repeated)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build an image from a template and import it."""
    from lxd_imagegen.state.service import (
        ResourceExistsError,
        ensure_name_available,
        save_resource,
    )

    factory = open_state()
    with factory() as session:
        try:
            ensure_name_available(session, name)
        except ResourceExistsError as e:
            raise _fail(str(e)) from None

    image = BuiltImage(
        template=template.read_text(encoding="utf-8"),
        remote=remote,
        aliases=aliases or [],
    )

    token = CancelToken()
    with ProviderContext() as ctx, cancel_on_signals(token):
        try:
            if not json_output:
                console.print(f"[blue]Building image {name}...[/blue]")
            report = lifecycle.create(image, ctx, cancel_token=token)
        except DOMAIN_ERRORS as e:
            raise _fail(f"Failed to create image {name}: {e}") from None

    with factory() as session:
        save_resource(session, name, image)
        session.commit()

    if json_output:
        output = _image_to_dict(name, image)
        output["alias_failures"] = (
            [f.name for f in report.failures] if report is not None else []
        )
        console.print(json.dumps(output, indent=2))
    else:
        console.print(f"[green]✓ Image created: {image.id}[/green]")
        _print_image(name, image)
        _print_report(report)


@app.command()
def show(
    name: Annotated[str, typer.Argument(help="Local name of the image")],
    refresh: Annotated[
        bool,
        typer.Option("--refresh", help="Refresh from the image store first"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show a tracked image."""
    from lxd_imagegen.state.service import (
        ResourceNotFoundError,
        load_resource,
        save_resource,
    )

    factory = open_state()
    with factory() as session:
        try:
            image = load_resource(session, name)
        except ResourceNotFoundError as e:
            raise _fail(str(e)) from None

        if refresh:
            with ProviderContext() as ctx:
                try:
                    lifecycle.read(image, ctx)
                except DOMAIN_ERRORS as e:
                    raise _fail(f"Failed to read image {name}: {e}") from None
            save_resource(session, name, image)
            session.commit()

            if not image.id:
                console.print(
                    f"[yellow]Image {name} no longer exists in the store; "
                    "stopped tracking it[/yellow]"
                )
                return

    if json_output:
        console.print(json.dumps(_image_to_dict(name, image), indent=2))
    else:
        _print_image(name, image)


@app.command("set-aliases")
def set_aliases(
    name: Annotated[str, typer.Argument(help="Local name of the image")],
    aliases: Annotated[
        list[str] | None,
        typer.Option("--alias", "-a", help="Alias to bind (can be repeated)"),
    ] = None,
) -> None:
    """Replace the aliases bound to a tracked image."""
    from lxd_imagegen.state.service import (
        ResourceNotFoundError,
        load_resource,
        save_resource,
    )

    factory = open_state()
    with factory() as session:
        try:
            previous = load_resource(session, name)
        except ResourceNotFoundError as e:
            raise _fail(str(e)) from None

        image = previous.model_copy(deep=True)
        image.aliases = aliases or []

        with ProviderContext() as ctx:
            try:
                report = lifecycle.update(image, previous, ctx)
                lifecycle.read(image, ctx)
            except DOMAIN_ERRORS as e:
                raise _fail(f"Failed to update aliases of {name}: {e}") from None

        save_resource(session, name, image)
        session.commit()

    if report.outcomes:
        console.print(f"[green]✓ Aliases updated for {name}[/green]")
    else:
        console.print(f"[yellow]Aliases of {name} already up to date[/yellow]")
    _print_report(report)


@app.command()
def destroy(
    name: Annotated[str, typer.Argument(help="Local name of the image")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation"),
    ] = False,
) -> None:
    """Delete a tracked image from its store."""
    from lxd_imagegen.state.service import (
        ResourceNotFoundError,
        load_resource,
        remove_resource,
    )

    factory = open_state()
    with factory() as session:
        try:
            image = load_resource(session, name)
        except ResourceNotFoundError as e:
            raise _fail(str(e)) from None

        if not yes:
            typer.confirm(f"Delete image {image.id}?", abort=True)

        token = CancelToken()
        with ProviderContext() as ctx, cancel_on_signals(token):
            try:
                lifecycle.delete(image, ctx, cancel_token=token)
            except DOMAIN_ERRORS as e:
                raise _fail(f"Failed to delete image {name}: {e}") from None

        remove_resource(session, name)
        session.commit()

    console.print(f"[green]✓ Image {name} deleted[/green]")


@app.command()
def exists(
    name: Annotated[str, typer.Argument(help="Local name of the image")],
) -> None:
    """Check whether a tracked image still exists (exit code 0 or 1)."""
    from lxd_imagegen.state.service import ResourceNotFoundError, load_resource

    factory = open_state()
    with factory() as session:
        try:
            image = load_resource(session, name)
        except ResourceNotFoundError as e:
            raise _fail(str(e)) from None

    with ProviderContext() as ctx:
        try:
            found = lifecycle.exists(image, ctx)
        except DOMAIN_ERRORS as e:
            raise _fail(f"Failed to check image {name}: {e}") from None

    if found:
        console.print(f"[green]{name} exists ({image.id})[/green]")
    else:
        console.print(f"[yellow]{name} does not exist ({image.id})[/yellow]")
        raise typer.Exit(code=1)


@app.command("list")
def list_images(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List tracked images."""
    from lxd_imagegen.state.service import list_resources, record_to_image

    factory = open_state()
    with factory() as session:
        records = list_resources(session)
        images = [(r.name, record_to_image(r)) for r in records]

    if json_output:
        console.print(
            json.dumps([_image_to_dict(n, img) for n, img in images], indent=2)
        )
        return

    if not images:
        console.print("[yellow]No images tracked[/yellow]")
        return

    console.print(f"[bold]Found {len(images)} image(s):[/bold]")
    console.print()
    for image_name, image in images:
        _print_image(image_name, image)
        console.print()


if __name__ == "__main__":
    app()
