"""Edition operations as returned to clients.

Each public method is one remote operation. It validates its inputs, runs
the git protocol under the repository guard and answers with a wire-format
dict: ``{"success": True, ...}`` or ``{"success": False, "error": msg}``.
Faults never escape a method.
"""

from __future__ import annotations

import functools
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import httpx

from gitedit.config_schema import GiteditConfig
from gitedit.credentials import (
    Credentials,
    api_token,
    embed_userinfo,
    load_credentials,
    resolve_backend_credentials,
)
from gitedit.errors import EditionError, RepositoryNotAllowed, ValidationError
from gitedit.fs import is_valid_session_id, repository_id
from gitedit.session_store import SessionFileStore, StaticTokenAuthorizer, session_dir

from . import git_sync
from .observability import log_error, log_warning, timeit
from .publish import PublishEngine, PublishType, ReviewRequestClient
from .repository import RepositoryHandle, RepositoryRegistry
from .workspace import prepare_session

Result = Dict[str, Any]


def _failure(error: BaseException) -> Result:
    return {"success": False, "error": str(error) or type(error).__name__}


def edition_operation(action: str) -> Callable:
    """Time an operation and turn any fault into a failure result."""

    def decorator(func: Callable[..., Result]) -> Callable[..., Result]:
        @functools.wraps(func)
        def wrapper(self: "EditionService", repo_url: str, *args: Any, **kwargs: Any) -> Result:
            try:
                with timeit(f"edition.{action}", repo=repository_id(repo_url or "")) as info:
                    result = func(self, repo_url, *args, **kwargs)
                    if not result.get("success"):
                        info["outcome"] = "failed"
                    return result
            except EditionError as e:
                log_warning(f"{action} failed", error=str(e), kind=type(e).__name__)
                return _failure(e)
            except Exception as e:
                log_error(f"{action} crashed", error=str(e), kind=type(e).__name__)
                return _failure(e)

        return wrapper

    return decorator


class EditionService:
    """All edition operations over a registry of shared working copies."""

    def __init__(
        self,
        config: GiteditConfig,
        *,
        registry: Optional[RepositoryRegistry] = None,
        credentials: Optional[Credentials] = None,
        authorizer: Optional[StaticTokenAuthorizer] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.config = config
        self.registry = registry or RepositoryRegistry(config.folders.repositories_dir, config.git)
        self.credentials = credentials if credentials is not None else load_credentials()
        self.authorizer = authorizer or StaticTokenAuthorizer(config.server.session_token)
        self.publisher = PublishEngine(ReviewRequestClient(config.providers, http_client))

    @property
    def sessions_root(self) -> Path:
        return self.config.folders.sessions_dir

    def is_allowed(self, repo_url: str) -> bool:
        return self.config.is_repository_allowed(repo_url)

    def _check_allowed(self, repo_url: str) -> None:
        if not repo_url:
            raise ValidationError("No repository URL provided")
        if not self.is_allowed(repo_url):
            raise RepositoryNotAllowed(repo_url)

    def _handle(self, repo_url: str) -> RepositoryHandle:
        self._check_allowed(repo_url)
        return self.registry.get(repo_url)

    def _backend_remote(self, handle: RepositoryHandle, username: str, password: str) -> str:
        user, secret = resolve_backend_credentials(
            handle.repo_url, username, password, self.credentials, self.config.providers.gitlab_hosts
        )
        return self._remote(handle, user, secret)

    @staticmethod
    def _remote(handle: RepositoryHandle, username: str, password: str) -> str:
        target = embed_userinfo(handle.repo_url, username, password)
        return git_sync.ORIGIN if target == handle.repo_url else target

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @edition_operation("checkout")
    def checkout_edition(self, repo_url: str, subdir: str, username: str = "", password: str = "") -> Result:
        handle = self._handle(repo_url)
        remote = self._backend_remote(handle, username, password)
        with handle.exclusive():
            git_sync.checkout_edition(handle, subdir, remote)
        return {"success": True}

    @edition_operation("prepare")
    def prepare_edition(self, repo_url: str, subdir: str) -> Result:
        """Copy the checked-out subtree into a new session sandbox."""
        handle = self._handle(repo_url)
        with handle.exclusive():
            trunk = git_sync.resolve_trunk(handle)
            prepared = prepare_session(handle, subdir, self.sessions_root)
            try:
                divergence = git_sync.compute_divergence(handle, subdir, trunk)
            except EditionError as e:
                log_warning("Divergence unavailable", repo=handle.repo_id, error=str(e))
                divergence = None
        return {
            "success": True,
            "session": prepared.session_id,
            "token": self.authorizer.issue(prepared.session_id),
            "masterSynced": divergence is None or not divergence.trunk_additional,
            "editorSynced": divergence is None or not divergence.editor_additional,
            "masterBranch": trunk,
            "taskEditor": prepared.task_editor,
        }

    @edition_operation("history")
    def history_edition(self, repo_url: str, subdir: str) -> Result:
        handle = self._handle(repo_url)
        with handle.exclusive():
            divergence = git_sync.compute_divergence(handle, subdir)
        return {"success": True, **divergence.to_dict()}

    @edition_operation("checkout_hash")
    def checkout_hash_edition(self, repo_url: str, commit_hash: str) -> Result:
        if not commit_hash:
            raise ValidationError("No hash provided")
        handle = self._handle(repo_url)
        with handle.exclusive():
            git_sync.checkout_hash(handle, commit_hash)
        return {"success": True}

    @edition_operation("last_commits")
    def last_commits(self, repo_url: str, subdir: str, username: str = "", password: str = "") -> Result:
        handle = self._handle(repo_url)
        remote = self._backend_remote(handle, username, password)
        with handle.exclusive():
            commits = git_sync.last_commits(handle, subdir, remote)
        return {"success": bool(commits["master"] and commits["editor"]), **commits}

    @edition_operation("commit")
    def commit_edition(
        self,
        repo_url: str,
        subdir: str,
        session_id: str,
        message: str,
        username: str = "",
        password: str = "",
    ) -> Result:
        """Fold a session into the edit branch and push it.

        The allow-list and the session id are checked before any git work.
        """
        self._check_allowed(repo_url)
        if not session_id:
            raise ValidationError("No session ID provided")
        if not is_valid_session_id(session_id):
            raise ValidationError("Invalid session ID")
        handle = self.registry.get(repo_url)
        remote = self._backend_remote(handle, username, password)
        directory = session_dir(self.sessions_root, session_id)
        with handle.exclusive():
            git_sync.commit_edition(handle, subdir, directory, message, remote)
        return {"success": True}

    @edition_operation("publish")
    def publish_edition(
        self,
        repo_url: str,
        subdir: str,
        publish_type: str = "",
        username: str = "",
        password: str = "",
        title: str = "",
        body: str = "",
    ) -> Result:
        handle = self._handle(repo_url)
        outcome = self.publisher.publish(
            handle,
            subdir,
            PublishType.parse(publish_type),
            title=title,
            body=body,
            caller_remote=self._remote(handle, username, password),
            backend_remote=self._backend_remote(handle, username, password),
            token=api_token(handle.repo_url, password, self.credentials, self.config.providers.gitlab_hosts),
        )
        return outcome.to_dict()

    @edition_operation("diff")
    def diff_edition(
        self,
        repo_url: str,
        subdir: str,
        commit_hash: str,
        target: str = "",
        username: str = "",
        password: str = "",
    ) -> Result:
        handle = self._handle(repo_url)
        remote = self._backend_remote(handle, username, password)
        with handle.exclusive():
            diff = git_sync.diff_edition(handle, subdir, commit_hash, target, remote)
        return {"success": True, "diff": diff}

    # ------------------------------------------------------------------
    # Session files
    # ------------------------------------------------------------------

    def open_session_files(self, session_id: str, token: str) -> SessionFileStore:
        """Authorize a bearer token and open the session's file store.

        Raises ValidationError for malformed ids and AuthorizationError for
        a rejected token.
        """
        return SessionFileStore.open(self.sessions_root, session_id, token, self.authorizer)

    def close(self) -> None:
        self.publisher.client.close()


__all__ = ["EditionService", "edition_operation"]
