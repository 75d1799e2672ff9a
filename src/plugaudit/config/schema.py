"""Pydantic models for plugaudit.yaml configuration."""

from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_REGISTRY_URL = (
    "https://raw.githubusercontent.com/obsidianmd/obsidian-releases/master/community-plugins.json"
)


class PathsConfig(BaseModel):
    """Filesystem locations read and written during an audit."""

    vault: str = Field(default=".", description="Root folder of the host application's vault")
    installed_plugins: str = Field(
        default=".obsidian/community-plugins.json",
        description="JSON array of installed plugin ids, relative to the vault",
    )
    plugins_dir: str = Field(
        default=".obsidian/plugins",
        description="Directory holding each installed plugin's manifest.json, relative to the vault",
    )
    cache_dir: str = Field(
        default="~/.plugaudit/cache",
        description="Cache directory for manifests, metadata, downloaded packages and logs",
    )
    state_file: str = Field(
        default="~/.plugaudit/state.json",
        description="Where the CLI records the result of the last audit run",
    )

    def vault_path(self) -> Path:
        return Path(self.vault).expanduser()

    def installed_plugins_path(self) -> Path:
        return self.vault_path() / self.installed_plugins

    def plugins_dir_path(self) -> Path:
        return self.vault_path() / self.plugins_dir

    def cache_dir_path(self) -> Path:
        return Path(self.cache_dir).expanduser()

    def state_file_path(self) -> Path:
        return Path(self.state_file).expanduser()


class GitHubConfig(BaseModel):
    """Repository host and raw file host configuration."""

    api_url: str = Field(default="https://api.github.com", description="Repository host API URL")
    raw_url: str = Field(
        default="https://raw.githubusercontent.com",
        description="Raw file host serving files by owner/repo/branch/path",
    )
    token: str | None = Field(
        default=None,
        description="Optional access token, raises the unauthenticated rate limit",
    )
    user_agent: str = Field(default="plugaudit", description="User-Agent header for requests")


class RegistryConfig(BaseModel):
    """Community plugin registry configuration."""

    url: str = Field(default=DEFAULT_REGISTRY_URL, description="Registry snapshot URL")


class NetworkConfig(BaseModel):
    """Network behaviour for all HTTP calls."""

    timeout: float = Field(default=30.0, description="Request timeout in seconds", gt=0)
    max_workers: int = Field(
        default=4,
        description="Maximum number of plugins acquired concurrently",
        ge=1,
        le=32,
    )


class AuditToolConfig(BaseModel):
    """External audit tool invocation."""

    command: list[str] = Field(
        default=["npm", "audit", "--json"],
        description="Audit command, run inside each plugin's working directory",
    )
    lockfile_command: list[str] = Field(
        default=["npm", "i", "--package-lock-only", "--legacy-peer-deps"],
        description="Command that synthesizes a lockfile when the repository has none",
    )
    timeout: float = Field(default=120.0, description="Subprocess timeout in seconds", gt=0)
    workers: int = Field(
        default=1,
        description="Maximum number of audit subprocesses running at once",
        ge=1,
        le=16,
    )


class PlugauditConfig(BaseModel):
    """Root configuration schema for plugaudit."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    audit: AuditToolConfig = Field(default_factory=AuditToolConfig)
    debug: bool = Field(default=False, description="Enable debug logging")
