"""Configuration schema for gitedit.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_AUTHOR_EMAIL, DEFAULT_AUTHOR_NAME


def _split_csv(value):
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8000, ge=1, le=65535, description="Bind port")
    session_token: str = Field(
        default="testtoken",
        description="Shared bearer token accepted by the session file API",
    )
    cors_origins: List[str] = Field(
        default=["*"],
        description="Origins allowed by CORS",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_origins(cls, v):
        return _split_csv(v)


class FoldersConfig(BaseModel):
    """On-disk layout for working copies and session sandboxes."""

    base: str = Field(
        default="~/.gitedit/data",
        description="Root folder for all data",
    )
    repositories: str = Field(
        default="repositories",
        description="Working copies, relative to base",
    )
    sessions: str = Field(
        default="sessions",
        description="Session sandboxes, relative to base",
    )

    @property
    def base_dir(self) -> Path:
        return Path(self.base).expanduser()

    @property
    def repositories_dir(self) -> Path:
        return self.base_dir / self.repositories

    @property
    def sessions_dir(self) -> Path:
        return self.base_dir / self.sessions


class GitConfig(BaseModel):
    """Git behavior and repository policy."""

    allowed_repositories: List[str] = Field(
        default_factory=list,
        description="Permitted remote URLs (empty = any)",
    )
    author_name: str = Field(default=DEFAULT_AUTHOR_NAME, description="Commit author name")
    author_email: str = Field(default=DEFAULT_AUTHOR_EMAIL, description="Commit author email")
    lock_ttl: int = Field(
        default=600,
        ge=0,
        description="Seconds before a repository lock is considered abandoned (0 = never)",
    )
    lock_timeout: float = Field(
        default=120.0,
        ge=0,
        description="Seconds to wait for a busy repository",
    )

    @field_validator("allowed_repositories", mode="before")
    @classmethod
    def parse_allowed(cls, v):
        return _split_csv(v)

    @property
    def author(self) -> str:
        return f"{self.author_name} <{self.author_email}>"


class ProvidersConfig(BaseModel):
    """Hosting provider REST endpoints."""

    gitlab_hosts: List[str] = Field(
        default=["gitlab.com"],
        description="Hostnames served by the GitLab merge request API",
    )
    gitlab_api_base: str = Field(default="https://gitlab.com", description="GitLab base URL")
    github_api_base: str = Field(default="https://api.github.com", description="GitHub API base URL")
    timeout: float = Field(default=30.0, gt=0, description="REST call timeout in seconds")

    @field_validator("gitlab_hosts", mode="before")
    @classmethod
    def parse_hosts(cls, v):
        return _split_csv(v)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.gitedit/logs)",
    )
    max_bytes: int = Field(
        default=10485760,  # 10MB
        ge=0,
        description="Maximum log file size in bytes",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log path exists but is not a directory."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class GiteditConfig(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = Field(default=1, ge=1, description="Config schema version")

    server: ServerConfig = Field(default_factory=ServerConfig)
    folders: FoldersConfig = Field(default_factory=FoldersConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "GiteditConfig":
        """Create config with all defaults."""
        return cls()

    def is_repository_allowed(self, repo_url: str) -> bool:
        """Allow-list check; an empty list permits every repository."""
        allowed = self.git.allowed_repositories
        if not allowed:
            return True
        return repo_url in allowed
