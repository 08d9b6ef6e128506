"""Runtime wiring for the server: configuration and the shared service."""

from __future__ import annotations

import threading
from importlib import metadata as importlib_metadata
from typing import Optional

from gitedit.config_loader import get_config
from gitedit.config_schema import GiteditConfig

from .edition import EditionService
from .observability import configure_from, log_debug

_SERVICE: Optional[EditionService] = None
_SERVICE_LOCK = threading.Lock()


def get_version() -> str:
    try:
        return importlib_metadata.version("gitedit")
    except importlib_metadata.PackageNotFoundError:
        return "0.0.0-dev"


def get_gitedit_config() -> GiteditConfig:
    """Loaded configuration; environment settings are applied once."""
    config = get_config()
    configure_from(config.logging)
    return config


def get_service() -> EditionService:
    """Process-wide EditionService, built on first use."""
    global _SERVICE
    with _SERVICE_LOCK:
        if _SERVICE is None:
            config = get_gitedit_config()
            _SERVICE = EditionService(config)
            log_debug(
                "Edition service ready",
                repositories=str(config.folders.repositories_dir),
                sessions=str(config.folders.sessions_dir),
            )
        return _SERVICE


def reset_service() -> None:
    """Drop the cached service (configuration reloads, tests)."""
    global _SERVICE
    with _SERVICE_LOCK:
        if _SERVICE is not None:
            _SERVICE.close()
        _SERVICE = None
