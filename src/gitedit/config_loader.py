"""Configuration loading and merging for gitedit.

Handles TOML loading, config discovery, deep merging, and environment overlay.
"""

from __future__ import annotations

import os
import sys
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

# TOML loading: tomllib (3.11+) with tomli fallback
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore

from pydantic import ValidationError

from .config_schema import GiteditConfig


CONFIG_FILENAME = "config.toml"
USER_CONFIG_DIR = ".gitedit"
PROJECT_CONFIG_DIR = ".gitedit"
ENV_CONFIG_FILE = "GITEDIT_CONFIG"

# Environment variable -> (section path, key)
ENV_MAPPING: Dict[str, tuple[list[str], str]] = {
    # Server
    "GITEDIT_HOST": (["server"], "host"),
    "GITEDIT_PORT": (["server"], "port"),
    "GITEDIT_SESSION_TOKEN": (["server"], "session_token"),
    "GITEDIT_CORS_ORIGINS": (["server"], "cors_origins"),
    # Folders
    "GITEDIT_BASE_DIR": (["folders"], "base"),
    "GITEDIT_REPOSITORIES_DIR": (["folders"], "repositories"),
    "GITEDIT_SESSIONS_DIR": (["folders"], "sessions"),
    # Git
    "GITEDIT_ALLOWED_REPOSITORIES": (["git"], "allowed_repositories"),
    "GITEDIT_GIT_AUTHOR": (["git"], "author_name"),
    "GITEDIT_GIT_EMAIL": (["git"], "author_email"),
    "GITEDIT_LOCK_TTL": (["git"], "lock_ttl"),
    "GITEDIT_LOCK_TIMEOUT": (["git"], "lock_timeout"),
    # Providers
    "GITEDIT_GITLAB_HOSTS": (["providers"], "gitlab_hosts"),
    "GITEDIT_GITLAB_API_BASE": (["providers"], "gitlab_api_base"),
    "GITEDIT_GITHUB_API_BASE": (["providers"], "github_api_base"),
    "GITEDIT_PROVIDER_TIMEOUT": (["providers"], "timeout"),
    # Logging
    "GITEDIT_LOG_LEVEL": (["logging"], "level"),
    "GITEDIT_LOG_DIR": (["logging"], "dir"),
    "GITEDIT_LOG_MAX_BYTES": (["logging"], "max_bytes"),
    "GITEDIT_LOG_BACKUP_COUNT": (["logging"], "backup_count"),
    "GITEDIT_LOG_DISABLE_FILE": (["logging"], "disable_file"),
}


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


def _get_user_config_dir() -> Path:
    """Get user-level config directory (~/.gitedit/)."""
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Search upward from project_path for a .gitedit/ directory."""
    if project_path is None:
        project_path = Path.cwd()

    current = project_path.resolve()
    while current != current.parent:
        config_dir = current / PROJECT_CONFIG_DIR
        if config_dir.is_dir():
            return config_dir
        current = current.parent

    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file.

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries.

    Override values take precedence. Nested dicts are merged recursively.
    Lists are replaced, not merged.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Apply GITEDIT_* environment overrides (type conversion left to Pydantic)."""
    result = config_dict.copy()

    for env_var, (section_path, key_name) in ENV_MAPPING.items():
        value = os.getenv(env_var)
        if value is None:
            continue

        current = result
        for section in section_path:
            current[section] = dict(current.get(section, {}))
            current = current[section]
        current[key_name] = value

    return result


def load_config(
    project_path: Optional[Path] = None,
    skip_env: bool = False,
) -> GiteditConfig:
    """Load and merge gitedit configuration.

    Discovery order (later sources override earlier):
    1. Built-in defaults
    2. User config (~/.gitedit/config.toml)
    3. Project config (.gitedit/config.toml, searched upward)
    4. File named by GITEDIT_CONFIG
    5. Environment variables (unless skip_env=True)

    Raises:
        ConfigError: If config files are invalid
    """
    config_dict: Dict[str, Any] = {}

    user_config_path = _get_user_config_dir() / CONFIG_FILENAME
    if user_config_path.exists():
        try:
            config_dict = _deep_merge(config_dict, _load_toml(user_config_path))
        except ConfigError as e:
            # User config is optional, warn but continue
            warnings.warn(
                f"Skipping invalid user config at {user_config_path}: {e}",
                UserWarning,
            )

    project_config_dir = _get_project_config_dir(project_path)
    if project_config_dir:
        project_config_path = project_config_dir / CONFIG_FILENAME
        if project_config_path.exists():
            try:
                config_dict = _deep_merge(config_dict, _load_toml(project_config_path))
            except ConfigError as e:
                raise ConfigError(f"Invalid project config: {e}")

    explicit = os.getenv(ENV_CONFIG_FILE)
    if explicit and not skip_env:
        config_dict = _deep_merge(config_dict, _load_toml(Path(explicit).expanduser()))

    if not skip_env:
        config_dict = _apply_env_overlay(config_dict)

    try:
        return GiteditConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


# Global cached config (thread-safe)
_cached_config: Optional[GiteditConfig] = None
_config_lock = threading.Lock()


def get_config(force_reload: bool = False) -> GiteditConfig:
    """Get cached config, loading it on first use."""
    global _cached_config

    with _config_lock:
        if force_reload or _cached_config is None:
            _cached_config = load_config()
        return _cached_config


def clear_config_cache() -> None:
    """Clear cached config (thread-safe)."""
    global _cached_config
    with _config_lock:
        _cached_config = None
