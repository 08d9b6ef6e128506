"""Error taxonomy for edition operations.

ValidationError is raised before any side effect. TransportError wraps a
failed git command or hosting-provider call and carries the underlying
message. A missing session file is not an error (see session_store).
"""

from __future__ import annotations


class EditionError(Exception):
    """Base exception for edition operations."""
    pass


class ValidationError(EditionError):
    """Request rejected before any git, network or filesystem side effect."""
    pass


class RepositoryNotAllowed(ValidationError):
    """Repository URL is outside the configured allow-list."""

    def __init__(self, repo_url: str):
        self.repo_url = repo_url
        super().__init__("Repository not allowed")


class SandboxViolation(ValidationError):
    """Path resolves outside the session directory."""

    def __init__(self, path: str):
        self.path = path
        super().__init__("Forbidden")


class TransportError(EditionError):
    """A git command or hosting-provider REST call failed."""
    pass


class RepositoryBusy(TransportError):
    """The per-repository guard could not be acquired in time."""
    pass


class AuthorizationError(EditionError):
    """Session file access denied by the authorizer."""
    pass
