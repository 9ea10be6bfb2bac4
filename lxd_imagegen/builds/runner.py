"""Build runner for executing distrobuilder.

This module handles:
- Creating an isolated, throw-away working directory per build
- Writing the template to the build definition file
- Composing and executing the builder command with subprocess
- Streaming builder output to a log sink while waiting for exit
- Enforcing build timeouts and honouring cancellation

The working directory is owned by exactly one build and is removed on
every exit path, so artifacts are only valid inside ``build_image``.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import tempfile
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, TYPE_CHECKING

from lxd_imagegen.builds.artifacts import (
    BuildArtifacts,
    describe_artifacts,
    locate_artifacts,
)
from lxd_imagegen.cancel import OperationCancelledError
from lxd_imagegen.config import get_settings

if TYPE_CHECKING:
    from lxd_imagegen.cancel import CancelToken
    from lxd_imagegen.config import Settings

logger = logging.getLogger(__name__)
output_logger = logging.getLogger("lxd_imagegen.builds.output")

DEFINITION_FILENAME = "distrobuilder.yaml"
WORKSPACE_PREFIX = "distrobuilder"

# Seconds between exit/cancel/timeout checks
POLL_INTERVAL = 0.5

# Seconds to wait after SIGTERM before SIGKILL
TERMINATE_GRACE_PERIOD = 10.0

# Seconds to wait for the output reader after the process exits
READER_JOIN_TIMEOUT = 5.0

LogSink = Callable[[str], None]


class BuildExecutionError(Exception):
    """Raised when build execution fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


class BuildCancelledError(OperationCancelledError):
    """Raised when a running build is cancelled."""

    def __init__(self, message: str = "Build cancelled") -> None:
        super().__init__(message, code="build_cancelled")


@dataclass
class BuildResult:
    """Result of a builder execution.

    Attributes:
        exit_code: Process exit code.
        command: The command that was executed.
        started_at: Build start time.
        finished_at: Build finish time.
        output_lines: Number of output lines forwarded to the log sink.
    """

    exit_code: int
    command: str
    started_at: datetime
    finished_at: datetime
    output_lines: int = 0

    @property
    def success(self) -> bool:
        """Whether the builder exited with status 0."""
        return self.exit_code == 0

    @property
    def duration(self) -> float:
        """Wall-clock duration in seconds."""
        return (self.finished_at - self.started_at).total_seconds()


def _log_output_line(line: str) -> None:
    """Default log sink: forward builder output to the output logger."""
    output_logger.info("%s", line)


@contextmanager
def build_workspace(
    tmp_dir: Path | None = None,
    privilege_wrapper: Sequence[str] = (),
) -> Iterator[Path]:
    """Create a fresh build working directory, removed on exit.

    Args:
        tmp_dir: Parent directory (system default if None).
        privilege_wrapper: Command prefix used to remove files the builder
            wrote as another user.

    Yields:
        Path to the working directory.
    """
    if tmp_dir is not None:
        tmp_dir.mkdir(parents=True, exist_ok=True)
    workdir = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=tmp_dir))
    logger.debug("Created build workspace %s", workdir)
    try:
        yield workdir
    finally:
        _remove_workspace(workdir, privilege_wrapper)


def _remove_workspace(workdir: Path, privilege_wrapper: Sequence[str]) -> None:
    """Remove a workspace, retrying through the privilege wrapper."""
    try:
        shutil.rmtree(workdir)
    except OSError as e:
        if not privilege_wrapper:
            logger.warning("Build workspace %s left behind: %s", workdir, e)
            return
        # Output of a privileged builder is owned by the wrapper's user
        cmd = [*privilege_wrapper, "rm", "-rf", "--", str(workdir)]
        logger.debug("Retrying workspace removal: %s", shlex.join(cmd))
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as run_error:
            logger.warning("Build workspace %s left behind: %s", workdir, run_error)
            return
        if proc.returncode != 0:
            logger.warning(
                "Build workspace %s left behind: %s exited with %d: %s",
                workdir,
                shlex.join(cmd),
                proc.returncode,
                proc.stderr.strip(),
            )
            return
    logger.debug("Removed build workspace %s", workdir)


def write_definition(workdir: Path, template: str) -> Path:
    """Write the template verbatim to the build definition file.

    Args:
        workdir: Build working directory.
        template: Template text.

    Returns:
        Path to the written definition file.
    """
    definition = workdir / DEFINITION_FILENAME
    definition.write_text(template, encoding="utf-8")
    definition.chmod(0o644)
    return definition


def compose_build_command(
    definition: Path,
    settings: Settings | None = None,
) -> list[str]:
    """Compose the builder command line.

    Args:
        definition: Path to the build definition file.
        settings: Application settings.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    if settings is None:
        settings = get_settings()

    cmd = list(settings.privilege_wrapper)
    cmd.append(settings.builder_command)
    cmd.append(settings.builder_subcommand)
    cmd.append(str(definition))
    cmd.extend(settings.builder_args)
    return cmd


def _drain_output(stream: IO[str], sink: LogSink, counter: list[int]) -> None:
    """Forward each output line to the sink until EOF."""
    for line in stream:
        sink(line.rstrip("\r\n"))
        counter[0] += 1


def _terminate(proc: subprocess.Popen[str]) -> None:
    """Terminate a process, escalating to SIGKILL after a grace period."""
    if proc.poll() is not None:
        return
    logger.warning("Terminating builder (pid %d)", proc.pid)
    proc.terminate()
    try:
        proc.wait(timeout=TERMINATE_GRACE_PERIOD)
    except subprocess.TimeoutExpired:
        logger.warning("Builder did not exit, killing (pid %d)", proc.pid)
        proc.kill()
        proc.wait()


def _wait_for_exit(
    proc: subprocess.Popen[str],
    timeout: float | None,
    cancel_token: CancelToken | None,
    poll_interval: float,
) -> int:
    """Block until the process exits, the token fires or the timeout expires."""
    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        try:
            return proc.wait(timeout=poll_interval)
        except subprocess.TimeoutExpired:
            pass

        if cancel_token is not None and cancel_token.cancelled:
            raise BuildCancelledError(f"Build cancelled: {cancel_token.reason}")
        if deadline is not None and time.monotonic() >= deadline:
            raise BuildExecutionError(
                f"Build timed out after {timeout} seconds",
                exit_code=-1,
                code="build_timeout",
            )


def run_builder(
    cmd: list[str],
    workdir: Path,
    timeout: float | None = None,
    cancel_token: CancelToken | None = None,
    log_sink: LogSink | None = None,
    poll_interval: float = POLL_INTERVAL,
) -> BuildResult:
    """Execute the builder and wait for it to exit.

    Standard output (with standard error merged in) is drained by a
    background thread into ``log_sink`` line by line; the reader never
    blocks the wait for process exit.

    Args:
        cmd: Command to execute.
        workdir: Working directory for the process.
        timeout: Build timeout in seconds (None = no timeout).
        cancel_token: Token that aborts the build when cancelled.
        log_sink: Callable receiving each output line.
        poll_interval: Seconds between cancellation/timeout checks.

    Returns:
        BuildResult with execution details.

    Raises:
        BuildExecutionError: If the builder cannot start or times out.
        BuildCancelledError: If the token is cancelled while building.
    """
    if cancel_token is not None and cancel_token.cancelled:
        raise BuildCancelledError(f"Build cancelled: {cancel_token.reason}")

    sink = log_sink or _log_output_line
    cmd_str = shlex.join(cmd)
    logger.info("Executing build: %s", cmd_str)
    logger.info("Working directory: %s", workdir)

    started_at = datetime.now(timezone.utc)
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=workdir,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
    except OSError as e:
        error_message = f"Failed to execute build: {e}"
        logger.error(error_message)
        raise BuildExecutionError(
            error_message,
            exit_code=None,
            code="execution_error",
        ) from e

    assert proc.stdout is not None
    counter = [0]
    reader = threading.Thread(
        target=_drain_output,
        args=(proc.stdout, sink, counter),
        name="builder-output",
        daemon=True,
    )
    reader.start()

    try:
        exit_code = _wait_for_exit(proc, timeout, cancel_token, poll_interval)
    except BaseException:
        _terminate(proc)
        raise
    finally:
        reader.join(timeout=READER_JOIN_TIMEOUT)
        if reader.is_alive():
            logger.debug("Builder output still open after exit, detaching reader")
        else:
            proc.stdout.close()

    finished_at = datetime.now(timezone.utc)
    if exit_code != 0:
        logger.error("Build failed with exit code %d", exit_code)

    return BuildResult(
        exit_code=exit_code,
        command=cmd_str,
        started_at=started_at,
        finished_at=finished_at,
        output_lines=counter[0],
    )


@contextmanager
def build_image(
    template: str,
    settings: Settings | None = None,
    cancel_token: CancelToken | None = None,
    log_sink: LogSink | None = None,
) -> Iterator[BuildArtifacts]:
    """Build an LXD image from a template.

    The working directory and both artifacts are removed when the
    context exits, whether the body succeeded or not.

    Args:
        template: distrobuilder template text.
        settings: Application settings.
        cancel_token: Token that aborts the build when cancelled.
        log_sink: Callable receiving each builder output line.

    Yields:
        BuildArtifacts for the produced metadata/rootfs pair.

    Raises:
        BuildExecutionError: If the builder fails, cannot start or times out.
        BuildCancelledError: If the build is cancelled.
        ArtifactMissingError: If the builder succeeded without producing
            both artifacts.
    """
    if settings is None:
        settings = get_settings()

    with build_workspace(settings.tmp_dir, settings.privilege_wrapper) as workdir:
        definition = write_definition(workdir, template)
        cmd = compose_build_command(definition, settings)

        result = run_builder(
            cmd,
            workdir,
            timeout=settings.build_timeout,
            cancel_token=cancel_token,
            log_sink=log_sink,
        )
        if not result.success:
            raise BuildExecutionError(
                f"Build failed with exit code {result.exit_code}",
                exit_code=result.exit_code,
                code="build_failed",
            )

        artifacts = locate_artifacts(workdir)
        logger.info(
            "Build finished in %.1fs: %s",
            result.duration,
            describe_artifacts(artifacts),
        )
        yield artifacts


__all__ = [
    "BuildCancelledError",
    "BuildExecutionError",
    "BuildResult",
    "DEFINITION_FILENAME",
    "build_image",
    "build_workspace",
    "compose_build_command",
    "run_builder",
    "write_definition",
]
