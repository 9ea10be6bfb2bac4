"""Configuration settings for lxd_imagegen.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SOCKET_ADDRESS = "unix:///var/snap/lxd/common/lxd/unix.socket"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "lxd-imagegen" / "state.sqlite"
    return f"sqlite:///{db_path}"


class RemoteConfig(BaseModel):
    """Connection settings for one LXD image store.

    Attributes:
        address: ``unix:///path/to/socket`` or ``https://host:port``.
        client_cert: Client certificate for HTTPS remotes.
        client_key: Client key for HTTPS remotes.
        server_cert: CA/server certificate used to verify HTTPS remotes.
        verify_tls: Whether to verify the server certificate.
        project: LXD project to operate in.
    """

    address: str = DEFAULT_SOCKET_ADDRESS
    client_cert: Path | None = None
    client_key: Path | None = None
    server_cert: Path | None = None
    verify_tls: bool = True
    project: str | None = None

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate the address scheme."""
        if not v.startswith(("unix://", "https://", "http://")):
            raise ValueError(
                f"address must start with unix://, https:// or http://, got '{v}'"
            )
        return v

    @property
    def is_unix(self) -> bool:
        """Whether this remote is reached over a local unix socket."""
        return self.address.startswith("unix://")


def _default_remotes() -> dict[str, RemoteConfig]:
    """Return the default remote map (the local daemon only)."""
    return {"local": RemoteConfig()}


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the LXD_IMG_ prefix.
    Nested values (``remotes``) are given as JSON, e.g.
    ``LXD_IMG_REMOTES='{"lab": {"address": "https://lab:8443"}}'``.
    """

    model_config = SettingsConfigDict(
        env_prefix="LXD_IMG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remotes
    remotes: dict[str, RemoteConfig] = Field(
        default_factory=_default_remotes,
        description="Known image stores keyed by remote name",
    )
    default_remote: str = Field(
        default="local",
        description="Remote used when a resource does not name one",
    )

    # Builder
    builder_command: str = Field(
        default="distrobuilder",
        description="Image builder executable",
    )
    builder_subcommand: str = Field(
        default="build-lxd",
        description="Builder subcommand producing the LXD artifact pair",
    )
    builder_args: list[str] = Field(
        default_factory=list,
        description="Extra arguments appended to the builder command",
    )
    privilege_wrapper: list[str] = Field(
        default_factory=lambda: ["sudo"],
        description="Command prefix used to run the builder with privileges",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Temporary directory for builds (uses system default if not set)",
    )

    # State
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for builds",
    )
    operation_timeout: int = Field(
        default=1800,
        ge=10,
        description="Timeout for asynchronous image store operations",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for individual image store requests",
    )
    operation_poll_interval: int = Field(
        default=1,
        ge=1,
        le=60,
        description="Server-side wait slice between cancellation checks",
    )

    def get_remote(self, name: str) -> RemoteConfig:
        """Return the configuration for a named remote.

        Raises:
            KeyError: If the remote is not configured.
        """
        try:
            return self.remotes[name]
        except KeyError:
            raise KeyError(f"Unknown remote: {name}") from None


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_SOCKET_ADDRESS",
    "RemoteConfig",
    "Settings",
    "get_settings",
    "print_settings_json",
]
