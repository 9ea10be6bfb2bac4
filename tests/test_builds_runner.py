"""Tests for builds/runner.py module.

Tests build command composition and execution. Execution tests run a
throw-away shell script in place of distrobuilder.
"""

import stat
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from lxd_imagegen.builds.artifacts import ArtifactMissingError
from lxd_imagegen.builds.runner import (
    DEFINITION_FILENAME,
    BuildCancelledError,
    BuildExecutionError,
    build_image,
    build_workspace,
    compose_build_command,
    run_builder,
    write_definition,
)
from lxd_imagegen.cancel import CancelToken
from lxd_imagegen.config import Settings

TEMPLATE = "image:\n  distribution: alpine\n  release: edge\n"

# Fake builder: echoes its arguments, checks the definition, writes artifacts
FAKE_BUILDER = """#!/bin/sh
echo "subcommand=$1"
echo "definition=$2"
test -f "$2" || exit 3
printf 'meta' > lxd.tar.xz
printf 'root' > rootfs.squashfs
echo "done" >&2
"""


def _make_script(tmp_path: Path, body: str, name: str = "fake-builder") -> Path:
    script = tmp_path / name
    script.write_text(body)
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return script


def _settings(tmp_path: Path, script: Path) -> Settings:
    return Settings(
        builder_command=str(script),
        privilege_wrapper=[],
        tmp_dir=tmp_path / "builds",
        build_timeout=60,
    )


class TestComposeBuildCommand:
    """Tests for compose_build_command function."""

    def test_default_command(self, tmp_path):
        """Should prefix sudo and use build-lxd."""
        settings = Settings()
        definition = tmp_path / DEFINITION_FILENAME

        cmd = compose_build_command(definition, settings)

        assert cmd == ["sudo", "distrobuilder", "build-lxd", str(definition)]

    def test_no_wrapper_and_extra_args(self, tmp_path):
        """Should honour an empty wrapper and append extra args."""
        settings = Settings(
            privilege_wrapper=[],
            builder_command="/usr/local/bin/distrobuilder",
            builder_args=["--cache-dir", "/var/cache/db"],
        )
        definition = tmp_path / DEFINITION_FILENAME

        cmd = compose_build_command(definition, settings)

        assert cmd == [
            "/usr/local/bin/distrobuilder",
            "build-lxd",
            str(definition),
            "--cache-dir",
            "/var/cache/db",
        ]


class TestBuildWorkspace:
    """Tests for build_workspace and write_definition."""

    def test_workspace_removed_on_exit(self, tmp_path):
        """The workspace should be removed after the block."""
        with build_workspace(tmp_path) as workdir:
            assert workdir.is_dir()
            assert workdir.parent == tmp_path
            assert workdir.name.startswith("distrobuilder")
            (workdir / "file").write_text("x")

        assert not workdir.exists()

    def test_workspace_removed_on_error(self, tmp_path):
        """The workspace should be removed when the block raises."""
        with pytest.raises(RuntimeError):
            with build_workspace(tmp_path) as workdir:
                raise RuntimeError("boom")

        assert not workdir.exists()

    def test_workspaces_are_unique(self, tmp_path):
        """Concurrent builds get distinct workspaces."""
        with build_workspace(tmp_path) as first, build_workspace(tmp_path) as second:
            assert first != second

    def test_removal_retried_through_wrapper(self, tmp_path):
        """A workspace the user cannot remove is removed through the wrapper."""
        with patch(
            "lxd_imagegen.builds.runner.shutil.rmtree",
            side_effect=PermissionError("Permission denied"),
        ):
            with build_workspace(tmp_path, privilege_wrapper=["env"]) as workdir:
                (workdir / "rootfs.squashfs").write_text("x")

        assert not workdir.exists()

    def test_leftover_without_wrapper_warns(self, tmp_path, caplog):
        """Without a wrapper a failed removal is reported as left behind."""
        with patch(
            "lxd_imagegen.builds.runner.shutil.rmtree",
            side_effect=PermissionError("Permission denied"),
        ):
            with build_workspace(tmp_path) as workdir:
                pass

        assert workdir.exists()
        assert f"Build workspace {workdir} left behind" in caplog.text

    def test_leftover_when_wrapper_fails(self, tmp_path, caplog):
        """A failing wrapper removal is reported with its exit status."""
        with patch(
            "lxd_imagegen.builds.runner.shutil.rmtree",
            side_effect=PermissionError("Permission denied"),
        ):
            with build_workspace(tmp_path, privilege_wrapper=["false"]) as workdir:
                pass

        assert workdir.exists()
        assert "left behind" in caplog.text
        assert "exited with 1" in caplog.text

    def test_write_definition(self, tmp_path):
        """Template should be written verbatim and world-readable."""
        definition = write_definition(tmp_path, TEMPLATE)

        assert definition.name == DEFINITION_FILENAME
        assert definition.read_text() == TEMPLATE
        assert stat.S_IMODE(definition.stat().st_mode) == 0o644


class TestRunBuilder:
    """Tests for run_builder function."""

    def test_success_streams_output(self, tmp_path):
        """Output lines (stdout and stderr) reach the sink."""
        script = _make_script(tmp_path, "#!/bin/sh\necho one\necho two >&2\n")
        lines: list[str] = []

        result = run_builder(
            [str(script)], tmp_path, timeout=30, log_sink=lines.append
        )

        assert result.success
        assert result.exit_code == 0
        assert lines == ["one", "two"]
        assert result.output_lines == 2
        assert result.duration >= 0

    def test_nonzero_exit(self, tmp_path):
        """A failing builder yields an unsuccessful result."""
        script = _make_script(tmp_path, "#!/bin/sh\nexit 4\n")

        result = run_builder([str(script)], tmp_path, timeout=30, log_sink=print)

        assert not result.success
        assert result.exit_code == 4

    def test_missing_executable(self, tmp_path):
        """A builder that cannot start raises execution_error."""
        with pytest.raises(BuildExecutionError) as exc_info:
            run_builder([str(tmp_path / "does-not-exist")], tmp_path)

        assert exc_info.value.code == "execution_error"
        assert exc_info.value.exit_code is None

    def test_timeout_terminates(self, tmp_path):
        """A builder running past the timeout is terminated."""
        script = _make_script(tmp_path, "#!/bin/sh\nexec sleep 30\n")

        with pytest.raises(BuildExecutionError) as exc_info:
            run_builder(
                [str(script)],
                tmp_path,
                timeout=0.2,
                log_sink=print,
                poll_interval=0.05,
            )

        assert exc_info.value.code == "build_timeout"

    def test_cancel_before_start(self, tmp_path):
        """A cancelled token prevents the builder from starting."""
        token = CancelToken()
        token.cancel("stop")

        with patch("lxd_imagegen.builds.runner.subprocess.Popen") as popen:
            with pytest.raises(BuildCancelledError):
                run_builder(["true"], tmp_path, cancel_token=token)

        popen.assert_not_called()

    def test_cancel_while_running(self, tmp_path):
        """Cancelling the token terminates a running builder."""
        script = _make_script(tmp_path, "#!/bin/sh\nexec sleep 30\n")
        token = CancelToken()
        timer = threading.Timer(0.2, token.cancel, args=("interrupted",))
        timer.start()

        try:
            with pytest.raises(BuildCancelledError) as exc_info:
                run_builder(
                    [str(script)],
                    tmp_path,
                    timeout=30,
                    cancel_token=token,
                    log_sink=print,
                    poll_interval=0.05,
                )
        finally:
            timer.cancel()

        assert exc_info.value.code == "build_cancelled"
        assert "interrupted" in str(exc_info.value)


class TestBuildImage:
    """Tests for build_image context manager."""

    def test_success_yields_artifacts(self, tmp_path):
        """A successful build yields both artifacts inside the workspace."""
        script = _make_script(tmp_path, FAKE_BUILDER)
        settings = _settings(tmp_path, script)
        lines: list[str] = []

        with build_image(TEMPLATE, settings=settings, log_sink=lines.append) as art:
            assert art.metadata_path.read_bytes() == b"meta"
            assert art.rootfs_path.read_bytes() == b"root"
            assert (art.workdir / DEFINITION_FILENAME).read_text() == TEMPLATE
            workdir = art.workdir

        assert not workdir.exists()
        assert "subcommand=build-lxd" in lines
        assert f"definition={workdir / DEFINITION_FILENAME}" in lines
        assert "done" in lines

    def test_nonzero_exit_raises(self, tmp_path):
        """A failing builder raises build_failed and cleans up."""
        script = _make_script(tmp_path, "#!/bin/sh\necho broken\nexit 2\n")
        settings = _settings(tmp_path, script)

        with pytest.raises(BuildExecutionError) as exc_info:
            with build_image(TEMPLATE, settings=settings, log_sink=print):
                pytest.fail("body must not run")

        assert exc_info.value.exit_code == 2
        assert exc_info.value.code == "build_failed"
        assert list((tmp_path / "builds").iterdir()) == []

    def test_missing_rootfs_never_yields(self, tmp_path):
        """Exit 0 without the rootfs artifact raises before the body runs."""
        script = _make_script(
            tmp_path, "#!/bin/sh\nprintf 'meta' > lxd.tar.xz\nexit 0\n"
        )
        settings = _settings(tmp_path, script)
        reached: list[bool] = []

        with pytest.raises(ArtifactMissingError) as exc_info:
            with build_image(TEMPLATE, settings=settings, log_sink=print):
                reached.append(True)

        assert reached == []
        assert exc_info.value.missing == ["rootfs.squashfs"]
        assert list((tmp_path / "builds").iterdir()) == []

    def test_workspace_removed_when_body_fails(self, tmp_path):
        """The workspace is removed if the caller's block raises."""
        script = _make_script(tmp_path, FAKE_BUILDER)
        settings = _settings(tmp_path, script)

        with pytest.raises(RuntimeError):
            with build_image(TEMPLATE, settings=settings, log_sink=print) as art:
                workdir = art.workdir
                raise RuntimeError("transfer failed")

        assert not workdir.exists()
