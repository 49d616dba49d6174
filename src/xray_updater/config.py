"""Configuration management for the Xray updater."""

import shutil
from functools import lru_cache

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from xray_updater import constants


class Settings(BaseSettings):
    """Updater settings loaded from ``XRAY_UPDATER_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="XRAY_UPDATER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Installed binary
    binary_path: str | None = Field(
        default=None,
        description="Path of the live xray binary (default: found on PATH)",
    )
    product_name: str = Field(
        default=constants.DEFAULT_PRODUCT_NAME,
        description="Product name expected on the version report line",
    )
    version_flag: str = Field(
        default=constants.DEFAULT_VERSION_FLAG, description="Flag that prints the version"
    )
    executable_name: str = Field(
        default=constants.DEFAULT_EXECUTABLE_NAME,
        description="Executable entry expected at the root of the release archive",
    )

    # Release API
    release_repo: str = Field(
        default=constants.DEFAULT_RELEASE_REPO, description="GitHub owner/repo to track"
    )
    github_api_url: str = Field(
        default=constants.DEFAULT_GITHUB_API_URL, description="GitHub API base URL"
    )
    github_token: SecretStr | None = Field(
        default=None, description="Optional token to lift API rate limits"
    )

    # Service
    service_name: str = Field(
        default=constants.DEFAULT_SERVICE_NAME, description="systemd unit to restart"
    )
    init_script: str = Field(
        default=constants.DEFAULT_INIT_SCRIPT, description="Init script used without systemd"
    )

    # Network
    connect_timeout: float = Field(default=constants.CONNECT_TIMEOUT_SECONDS, gt=0)
    request_timeout: float = Field(default=constants.REQUEST_TIMEOUT_SECONDS, gt=0)
    download_timeout: float = Field(
        default=constants.DOWNLOAD_TIMEOUT_SECONDS,
        gt=0,
        description="Upper bound on one archive transfer attempt",
    )
    download_retries: int = Field(default=constants.DOWNLOAD_RETRIES, ge=1, le=10)
    retry_delay: float = Field(default=constants.RETRY_DELAY_SECONDS, ge=0)
    proxy_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("xray_updater_proxy_url", "https_proxy"),
        description="Outbound HTTP proxy; skips connectivity probing when set",
    )
    fallback_proxy_url: str | None = Field(
        default=constants.DEFAULT_FALLBACK_PROXY_URL,
        description="Proxy tried when the release host is not directly reachable",
    )
    probe_proxy: bool = Field(default=True, description="Probe direct connectivity first")
    probe_url: str = Field(default=constants.DEFAULT_PROBE_URL)
    probe_timeout: float = Field(default=constants.PROBE_TIMEOUT_SECONDS, gt=0)

    # Filesystem
    staging_root: str | None = Field(
        default=None, description="Parent of the per-run staging directory"
    )
    lock_path: str = Field(default=constants.DEFAULT_LOCK_PATH)
    command_timeout: float = Field(default=constants.COMMAND_TIMEOUT_SECONDS, gt=0)

    # Logging
    log_file: str | None = Field(
        default=constants.DEFAULT_LOG_FILE, description="Log file appended on every run"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    log_file_max_bytes: int = Field(default=5 * 1024 * 1024, ge=0)
    log_file_backup_count: int = Field(default=3, ge=0)
    environment: str = Field(default="production", description="Environment name")

    @field_validator("proxy_url", "fallback_proxy_url", "binary_path", "log_file", mode="before")
    @classmethod
    def _empty_as_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def resolved_binary_path(self) -> str:
        """Live binary path: configured, else ``xray`` on PATH, else the default."""
        if self.binary_path:
            return self.binary_path
        return shutil.which(self.executable_name) or constants.DEFAULT_BINARY_PATH

    @property
    def latest_release_url(self) -> str:
        """Get the GitHub "latest release" endpoint for the tracked repo."""
        return f"{self.github_api_url.rstrip('/')}/repos/{self.release_repo}/releases/latest"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
