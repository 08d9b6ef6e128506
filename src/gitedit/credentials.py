"""Credential resolution for git remotes and hosting-provider APIs.

Per-call username/password come from the client. Provider-specific defaults
(credentials file, then environment) override them field by field when set.
For git operations the resolved pair is embedded in the remote URL userinfo.
"""

from __future__ import annotations

import os
import sys
import warnings
from pathlib import Path
from typing import Iterable, Optional, Tuple
from urllib.parse import quote, urlsplit, urlunsplit

from pydantic import BaseModel, Field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore


CREDENTIALS_FILENAME = "credentials.toml"
USER_CONFIG_DIR = ".gitedit"
ENV_CREDENTIALS_FILE = "GITEDIT_CREDENTIALS"

DEFAULT_GITLAB_HOSTS = ("gitlab.com",)


class ProviderCredentials(BaseModel):
    """Service account for one hosting provider."""

    username: str = Field(default="", description="Git username")
    password: str = Field(default="", description="Password or access token")


class Credentials(BaseModel):
    """Configured defaults, keyed by provider."""

    gitlab: ProviderCredentials = Field(default_factory=ProviderCredentials)
    github: ProviderCredentials = Field(default_factory=ProviderCredentials)


def _get_user_credentials_path() -> Path:
    override = os.getenv(ENV_CREDENTIALS_FILE)
    if override:
        return Path(override).expanduser()
    return Path.home() / USER_CONFIG_DIR / CREDENTIALS_FILENAME


def _apply_env(creds: Credentials) -> Credentials:
    env_map = {
        ("gitlab", "username"): os.getenv("GITLAB_USER"),
        ("gitlab", "password"): os.getenv("GITLAB_PASSWORD"),
        ("github", "username"): os.getenv("GITHUB_USER"),
        ("github", "password"): os.getenv("GITHUB_PASSWORD") or os.getenv("GITHUB_TOKEN"),
    }
    for (provider, field), value in env_map.items():
        if value:
            setattr(getattr(creds, provider), field, value)
    return creds


def load_credentials(path: Optional[Path] = None) -> Credentials:
    """Load provider defaults from credentials.toml, then the environment."""
    path = path or _get_user_credentials_path()
    creds = Credentials()
    if path.exists():
        try:
            with open(path, "rb") as f:
                creds = Credentials.model_validate(tomllib.load(f))
        except Exception as e:
            warnings.warn(f"Error loading credentials from {path}: {e}", UserWarning)
            creds = Credentials()
    return _apply_env(creds)


def host_of(repo_url: str) -> str:
    return (urlsplit(repo_url.strip()).hostname or "").lower()


def is_gitlab(repo_url: str, hosts: Iterable[str] = DEFAULT_GITLAB_HOSTS) -> bool:
    return host_of(repo_url) in {h.lower() for h in hosts}


def provider_credentials(
    repo_url: str,
    creds: Credentials,
    hosts: Iterable[str] = DEFAULT_GITLAB_HOSTS,
) -> ProviderCredentials:
    return creds.gitlab if is_gitlab(repo_url, hosts) else creds.github


def resolve_backend_credentials(
    repo_url: str,
    username: str,
    password: str,
    creds: Credentials,
    hosts: Iterable[str] = DEFAULT_GITLAB_HOSTS,
) -> Tuple[str, str]:
    """Configured provider defaults win over the per-call values when set."""
    configured = provider_credentials(repo_url, creds, hosts)
    return (configured.username or username, configured.password or password)


def api_token(
    repo_url: str,
    password: str,
    creds: Credentials,
    hosts: Iterable[str] = DEFAULT_GITLAB_HOSTS,
) -> str:
    """Token for provider REST calls."""
    return provider_credentials(repo_url, creds, hosts).password or password


def embed_userinfo(repo_url: str, username: str = "", password: str = "") -> str:
    """Return ``repo_url`` carrying ``username:password``; unchanged unless both are set."""
    if not (username and password):
        return repo_url
    parts = urlsplit(repo_url)
    if not parts.hostname:
        return repo_url
    hostport = parts.netloc.rsplit("@", 1)[-1]
    netloc = f"{quote(username, safe='')}:{quote(password, safe='')}@{hostport}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def redact_url(repo_url: str) -> str:
    """Drop any password from a URL for logs and error messages."""
    parts = urlsplit(repo_url)
    if not parts.password:
        return repo_url
    userinfo, hostport = parts.netloc.rsplit("@", 1)
    user = userinfo.split(":", 1)[0]
    return urlunsplit((parts.scheme, f"{user}:***@{hostport}", parts.path, parts.query, parts.fragment))
