"""Configuration settings for image_builder.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the IMGBLD_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="IMGBLD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Manifest
    manifest_path: Path = Field(
        default=Path("manifest.json"),
        description="Path to the manifest describing repos, images and platforms",
    )

    # Registry naming
    registry_override: str | None = Field(
        default=None,
        description="Registry used instead of the manifest's registry",
    )
    repo_prefix: str | None = Field(
        default=None,
        description="Prefix prepended to every repo name of the manifest",
    )
    source_repo_prefix: str | None = Field(
        default=None,
        description="Repo prefix of the mirror location external base images are pulled from",
    )
    base_override_regex: str | None = Field(
        default=None,
        description="Regular expression matched against FROM references to override",
    )
    base_override_substitution: str | None = Field(
        default=None,
        description="Substitution applied to FROM references matching base_override_regex",
    )
    source_repo_url: str | None = Field(
        default=None,
        description="URL of the source repo used to build Dockerfile commit URLs",
    )

    # Operational modes
    push_enabled: bool = Field(default=False, description="Push built images")
    skip_pulling: bool = Field(
        default=False,
        description="Skip pulling external base images before building",
    )
    no_cache: bool = Field(
        default=False,
        description="Always build, never reuse previously published images",
    )
    dry_run: bool = Field(
        default=False,
        description="Log external commands instead of executing them",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # External tools
    docker_executable: str = Field(default="docker", description="docker CLI to invoke")
    git_executable: str = Field(default="git", description="git CLI to invoke")

    # Timeouts (in seconds)
    registry_timeout: int = Field(
        default=30,
        ge=1,
        description="Timeout for registry queries",
    )
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for a single image build",
    )


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


__all__ = ["Settings", "get_settings", "print_settings_json"]
