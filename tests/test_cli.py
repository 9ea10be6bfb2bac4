"""Tests for the CLI.

The state database lives in a temporary directory, builds run a fake
distrobuilder script and the image store is in memory.
"""

import json

import pytest
from typer.testing import CliRunner

from lxd_imagegen import __version__
from lxd_imagegen.cli import app
from lxd_imagegen.resources.context import ProviderContext

runner = CliRunner()

TEMPLATE = "image:\n  distribution: alpine\n  release: edge\n"


@pytest.fixture
def cli_env(tmp_path, fake_builder, fake_store, monkeypatch):
    """Point the CLI at a temporary database, the fake builder and store."""
    monkeypatch.setenv("LXD_IMG_DB_URL", f"sqlite:///{tmp_path / 'state.sqlite'}")
    monkeypatch.setenv("LXD_IMG_BUILDER_COMMAND", str(fake_builder))
    monkeypatch.setenv("LXD_IMG_PRIVILEGE_WRAPPER", "[]")
    monkeypatch.setenv("LXD_IMG_TMP_DIR", str(tmp_path / "builds"))
    monkeypatch.setenv("LXD_IMG_LOG_LEVEL", "WARNING")
    monkeypatch.setattr(
        "lxd_imagegen.cli.ProviderContext",
        lambda: ProviderContext(client_factory=lambda remote: fake_store),
    )
    template = tmp_path / "alpine.yaml"
    template.write_text(TEMPLATE)
    return template


def _create(template, name="alpine", *extra):
    return runner.invoke(app, ["create", name, "--template", str(template), *extra])


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "LXD Image Generator" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command(self) -> None:
        """CLI config should show all sections."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Remotes:" in result.stdout
        assert "Builder:" in result.stdout
        assert "State:" in result.stdout
        assert "Timeouts (seconds):" in result.stdout
        assert "local (default)" in result.stdout

    def test_config_json(self) -> None:
        """CLI config --json should output valid JSON."""
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["builder_subcommand"] == "build-lxd"
        assert "local" in data["remotes"]


class TestCLILifecycle:
    """Test create/show/set-aliases/destroy/exists/list commands."""

    def test_list_empty(self, cli_env) -> None:
        """list with nothing tracked says so."""
        result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        assert "No images tracked" in result.stdout

    def test_show_unknown(self, cli_env) -> None:
        """show of an unknown name fails."""
        result = runner.invoke(app, ["show", "missing"])
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_create_and_show(self, cli_env, fake_store) -> None:
        """create imports and tracks the image."""
        result = _create(cli_env, "alpine", "--alias", "alpine/edge", "--json")
        assert result.exit_code == 0, result.stdout

        data = json.loads(result.stdout)
        fingerprint = data["fingerprint"]
        assert data["id"] == f"local/{fingerprint}"
        assert data["aliases"] == ["alpine/edge"]
        assert data["alias_failures"] == []
        assert fake_store.aliases == {"alpine/edge": fingerprint}

        result = runner.invoke(app, ["show", "alpine", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["id"] == f"local/{fingerprint}"

        result = runner.invoke(app, ["list", "--json"])
        assert [entry["name"] for entry in json.loads(result.stdout)] == ["alpine"]

    def test_create_duplicate_name(self, cli_env) -> None:
        """A tracked name cannot be created twice."""
        assert _create(cli_env).exit_code == 0

        result = _create(cli_env)
        assert result.exit_code == 1
        assert "already exists" in result.stdout

    def test_create_build_failure(self, cli_env, fake_builder) -> None:
        """A failing build exits 1 and tracks nothing."""
        fake_builder.write_text("#!/bin/sh\nexit 2\n")

        result = _create(cli_env)
        assert result.exit_code == 1
        assert "Failed to create image alpine" in result.stdout

        result = runner.invoke(app, ["list", "--json"])
        assert json.loads(result.stdout) == []

    def test_create_missing_template(self, cli_env, tmp_path) -> None:
        """A missing template file is a usage error."""
        result = _create(tmp_path / "nope.yaml")
        assert result.exit_code != 0

    def test_set_aliases(self, cli_env, fake_store) -> None:
        """set-aliases reconciles the alias set."""
        assert _create(cli_env, "alpine", "--alias", "old").exit_code == 0

        result = runner.invoke(
            app, ["set-aliases", "alpine", "--alias", "new", "--alias", "edge"]
        )
        assert result.exit_code == 0, result.stdout
        assert "Aliases updated" in result.stdout
        assert sorted(fake_store.aliases) == ["edge", "new"]

        result = runner.invoke(app, ["show", "alpine", "--json"])
        assert json.loads(result.stdout)["aliases"] == ["edge", "new"]

    def test_set_aliases_unchanged(self, cli_env, fake_store) -> None:
        """set-aliases with the same set does nothing."""
        assert _create(cli_env, "alpine", "--alias", "a").exit_code == 0
        fake_store.calls.clear()

        result = runner.invoke(app, ["set-aliases", "alpine", "--alias", "a"])
        assert result.exit_code == 0
        assert "already up to date" in result.stdout
        assert fake_store.calls == []

    def test_exists_and_destroy(self, cli_env, fake_store) -> None:
        """destroy removes the image; exists reflects the store."""
        assert _create(cli_env).exit_code == 0

        result = runner.invoke(app, ["exists", "alpine"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["destroy", "alpine", "--yes"])
        assert result.exit_code == 0, result.stdout
        assert fake_store.images == {}

        result = runner.invoke(app, ["exists", "alpine"])
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_destroy_aborted(self, cli_env, fake_store) -> None:
        """destroy asks for confirmation."""
        assert _create(cli_env).exit_code == 0

        result = runner.invoke(app, ["destroy", "alpine"], input="n\n")
        assert result.exit_code != 0
        assert len(fake_store.images) == 1

    def test_exists_gone_from_store(self, cli_env, fake_store) -> None:
        """exists exits 1 when the store lost the image."""
        assert _create(cli_env).exit_code == 0
        fake_store.images.clear()

        result = runner.invoke(app, ["exists", "alpine"])
        assert result.exit_code == 1
        assert "does not exist" in result.stdout

    def test_show_refresh_drops_vanished(self, cli_env, fake_store) -> None:
        """show --refresh stops tracking an image the store lost."""
        assert _create(cli_env).exit_code == 0
        fake_store.images.clear()

        result = runner.invoke(app, ["show", "alpine", "--refresh"])
        assert result.exit_code == 0
        assert "stopped tracking" in result.stdout

        result = runner.invoke(app, ["list", "--json"])
        assert json.loads(result.stdout) == []
