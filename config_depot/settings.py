"""
Process configuration for config-depot.

Loads configuration from environment variables prefixed with CONFIG_DEPOT_.
"""
import os
from pathlib import Path

from config_depot.base import PRIMARY_BRANCH

PREFIX = "CONFIG_DEPOT_"

BACKENDS = ("github", "git", "memory")


def _env(name: str, default: str | None = None) -> str | None:
    return os.getenv(PREFIX + name, default)


def _path(name: str) -> Path | None:
    value = _env(name)
    return Path(value).expanduser() if value else None


class StoreSettings:
    """Configuration for the document store, directory cache and bootstrap."""

    def __init__(self) -> None:
        self.backend = _env("BACKEND", "github")
        if self.backend not in BACKENDS:
            raise ValueError(
                f"{PREFIX}BACKEND must be one of {', '.join(BACKENDS)}, got {self.backend!r}"
            )

        # Remote hosting API
        self.github_base_url = _env("GITHUB_BASE_URL", "https://api.github.com")
        self.github_organisation = _env("GITHUB_ORGANISATION")
        self.github_token = _env("GITHUB_TOKEN")

        # Local clones
        self.git_base_url = _env("GIT_BASE_URL")
        self.git_root = _path("GIT_ROOT") or Path.home() / ".config-depot" / "repos"
        self.ssh_key = _path("SSH_KEY")
        self.known_hosts = _path("KNOWN_HOSTS")

        self.network_timeout = float(_env("NETWORK_TIMEOUT", "30"))
        self.primary_branch = _env("PRIMARY_BRANCH", PRIMARY_BRANCH)

        # Directory cache schedule, in seconds
        self.health_interval = float(_env("HEALTH_INTERVAL", "12"))
        self.listing_interval = float(_env("LISTING_INTERVAL", str(5 * 60)))

        self.environments_file = _path("ENVIRONMENTS_FILE")

        if self.backend == "github" and not self.github_organisation:
            raise ValueError(f"{PREFIX}GITHUB_ORGANISATION environment variable required")
        if self.backend == "git" and not self.git_base_url:
            raise ValueError(f"{PREFIX}GIT_BASE_URL environment variable required")

    def __repr__(self) -> str:
        token = "***" if self.github_token else None
        return (
            f"StoreSettings(backend={self.backend!r}, "
            f"github_organisation={self.github_organisation!r}, "
            f"github_token={token!r}, git_base_url={self.git_base_url!r}, "
            f"git_root='{self.git_root}')"
        )


def get_settings() -> StoreSettings:
    return StoreSettings()
