"""Gavin configuration: process settings, the inspection file, logging.

Process settings come from ``GAVIN_*`` environment variables or a ``.env``
file (pydantic-settings).  What to inspect and against which standard
versions comes from the YAML inspection file, ``gavinconfig.yml`` by
default::

    standardVersion:
      gitversion: "5.12.0"
      NuGetCommand: "2"
    concurrencyLimit: 8
    dryRun: false
    repositories:
      - https://dev.azure.com/org/project/_git/service-a
      - url: https://dev.azure.com/org/project/_git/service-b
        default_branch: develop
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.console import Console
from rich.logging import RichHandler

from gavin.core.classifier import check_policy
from gavin.core.sources import DEFAULT_PIPELINE_GLOBS
from gavin.models.policy import ValidationPolicy
from gavin.models.repository import Repository


class ConfigError(ValueError):
    """Raised when the inspection file cannot be read or validated."""


class GavinSettings(BaseSettings):
    """Process settings with environment variable overrides.

    Examples
    --------
    ::

        export GAVIN_DB_PATH=/data/inspections.db
        export GAVIN_GIT_TOKEN=...
        export GAVIN_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GAVIN_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Storage and files
    db_path: Path = Path(".gavin/inspections.db")
    config_path: Path = Path("gavinconfig.yml")
    checkout_root: Path | None = None  # system temp dir when unset

    # Git access
    git_username: str | None = None
    git_token: SecretStr | None = None
    git_timeout_seconds: float = 120.0

    # Store retry backoff, seconds per retry
    store_retry_delays: list[float] = Field(default_factory=lambda: [0.05, 0.2, 0.5])

    @property
    def git_token_value(self) -> str | None:
        return self.git_token.get_secret_value() if self.git_token else None


class RepositoryEntry(BaseModel):
    """A repository listed in the inspection file."""

    model_config = ConfigDict(frozen=True)

    url: str
    default_branch: str = "main"

    def to_repository(self) -> Repository:
        return Repository.from_url(self.url, self.default_branch)


class InspectionConfig(BaseModel):
    """Validated content of the inspection file."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    standard_versions: dict[str, str] = Field(default_factory=dict, alias="standardVersion")
    concurrency_limit: int = Field(default=4, gt=0, alias="concurrencyLimit")
    dry_run: bool = Field(default=False, alias="dryRun")
    pipeline_globs: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PIPELINE_GLOBS), alias="pipelineGlobs"
    )
    repositories: list[RepositoryEntry] = Field(default_factory=list)

    @field_validator("standard_versions", mode="before")
    @classmethod
    def _stringify_versions(cls, value: object) -> object:
        # YAML reads `2` and `5.0` as numbers
        if isinstance(value, dict):
            return {
                str(key): (str(version) if version is not None else version)
                for key, version in value.items()
            }
        return value

    @field_validator("repositories", mode="before")
    @classmethod
    def _expand_urls(cls, value: object) -> object:
        if isinstance(value, list):
            return [{"url": item} if isinstance(item, str) else item for item in value]
        return value

    def policy(self) -> ValidationPolicy:
        return ValidationPolicy(standard_versions=self.standard_versions)

    def repository_list(self) -> list[Repository]:
        return [entry.to_repository() for entry in self.repositories]


def load_inspection_config(path: Path) -> InspectionConfig:
    """Load and validate the inspection file.

    A missing file gives the defaults: empty policy, no repositories.

    Raises
    ------
    ConfigError
        If the file cannot be read or validated, or a standard version is
        outside its action shape's syntax.
    """
    if not path.exists():
        return InspectionConfig()
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    if raw is None:
        return InspectionConfig()
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    try:
        config = InspectionConfig.model_validate(raw)
        check_policy(config.policy())
    except (ValidationError, ValueError) as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    return config


def configure_logging(level: str | int = "INFO") -> None:
    """Route all log records through a Rich handler on stderr."""
    logging.basicConfig(
        level=level.upper() if isinstance(level, str) else level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


# Module-level singleton, import as `from gavin.config import settings`
settings = GavinSettings()
