"""Repository handles: one shared working copy per remote URL.

A handle resolves a remote URL to a deterministic local path, clones it on
first use and exposes the git primitives the edition engines need. Every
branch-mutating sequence must run inside ``handle.exclusive()``.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from gitedit.config_schema import GitConfig
from gitedit.credentials import redact_url
from gitedit.divergence import CommitHistoryEntry
from gitedit.errors import RepositoryBusy, TransportError
from gitedit.fs import repository_id
from gitedit.lock import AdvisoryLock

from .observability import log_debug, log_warning

_FIELD_SEP = "\x1f"
_LOG_FORMAT = _FIELD_SEP.join(("%h", "%at", "%s (by %an)"))


def _git_error_message(command: str, error: GitCommandError) -> str:
    """git's own stderr, without GitPython's framing or the command line."""
    text = (error.stderr or "").strip()
    prefix = "stderr: '"
    if text.startswith(prefix) and text.endswith("'"):
        text = text[len(prefix):-1].strip()
    return text or f"git {command} failed with exit code {error.status}"


class RepositoryHandle:
    """Working copy of one remote repository plus its exclusive-access guard."""

    def __init__(
        self,
        repo_url: str,
        local_path: Path,
        *,
        author_name: str,
        author_email: str,
        lock_ttl: int = 600,
        lock_timeout: Optional[float] = 120.0,
    ):
        self.repo_url = repo_url.strip()
        self.repo_id = repository_id(repo_url)
        self.local_path = Path(local_path)
        self.author_name = author_name
        self.author_email = author_email
        self.lock_ttl = lock_ttl
        self.lock_timeout = lock_timeout
        self._mutex = threading.Lock()
        self._repo: Optional[Repo] = None

    @property
    def author(self) -> str:
        return f"{self.author_name} <{self.author_email}>"

    @property
    def lock_path(self) -> Path:
        return self.local_path.parent / f".{self.repo_id}.lock"

    # ------------------------------------------------------------------
    # Exclusive access
    # ------------------------------------------------------------------

    @contextmanager
    def exclusive(self) -> Iterator["RepositoryHandle"]:
        """Hold both the in-process mutex and the cross-process file lock."""
        timeout = -1 if self.lock_timeout is None else self.lock_timeout
        if not self._mutex.acquire(timeout=timeout):
            raise RepositoryBusy(f"Repository busy: {redact_url(self.repo_url)}")
        try:
            lock = AdvisoryLock(
                self.lock_path,
                ttl=self.lock_ttl,
                timeout=self.lock_timeout,
                owner=self.repo_id,
            )
            if not lock.acquire():
                log_warning("Repository lock timeout", repo=self.repo_id, holder=lock.get_lock_info())
                raise RepositoryBusy(f"Repository busy: {redact_url(self.repo_url)}")
            try:
                yield self
            finally:
                lock.release()
        finally:
            self._mutex.release()

    # ------------------------------------------------------------------
    # Working copy
    # ------------------------------------------------------------------

    @property
    def repo(self) -> Repo:
        """GitPython Repo for the working copy, cloning it when absent."""
        if self._repo is None:
            if (self.local_path / ".git").exists():
                try:
                    self._repo = Repo(self.local_path)
                except (InvalidGitRepositoryError, NoSuchPathError) as e:
                    raise TransportError(f"Not a git repository: {self.local_path}") from e
            else:
                self._repo = self._clone()
        return self._repo

    def ensure(self) -> None:
        """Clone the working copy now if it does not exist yet."""
        self.repo

    def _clone(self) -> Repo:
        shown = redact_url(self.repo_url)
        log_debug(f"GIT_OP_START: clone {shown}", repo=self.repo_id)
        self.local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            repo = Repo.clone_from(self.repo_url, self.local_path)
        except GitCommandError as e:
            raise TransportError(f"Failed to clone {shown}: {_git_error_message('clone', e)}") from e
        log_debug(f"GIT_OP_END: clone {shown}", repo=self.repo_id)
        with repo.config_writer() as cw:
            cw.set_value("user", "name", self.author_name)
            cw.set_value("user", "email", self.author_email)
            cw.set_value("pull", "rebase", "false")
        return repo

    def _git(self, command: str, *args: str) -> str:
        shown = " ".join(redact_url(a) for a in args)
        log_debug(f"GIT_OP_START: {command} {shown}".rstrip(), repo=self.repo_id)
        try:
            output = getattr(self.repo.git, command)(*args)
        except GitCommandError as e:
            message = _git_error_message(command, e)
            for arg in args:
                message = message.replace(arg, redact_url(arg))
            log_debug(f"GIT_OP_FAIL: {command}", repo=self.repo_id, error=message)
            raise TransportError(message) from e
        log_debug(f"GIT_OP_END: {command}", repo=self.repo_id)
        return output

    # ------------------------------------------------------------------
    # Version-control primitives
    # ------------------------------------------------------------------

    def fetch(self, remote: str = "origin") -> None:
        """Fetch from 'origin', or from a credentialed URL into origin's refs."""
        if remote == "origin":
            self._git("fetch", "origin")
        else:
            self._git("fetch", remote, "+refs/heads/*:refs/remotes/origin/*")

    def checkout(self, ref: str) -> None:
        self._git("checkout", ref)

    def pull(self, remote: str = "origin", branch: Optional[str] = None) -> None:
        if remote == "origin" or not branch:
            self._git("pull")
        else:
            self._git("pull", remote, branch)

    def branch_create(self, name: str) -> None:
        self._git("branch", name)

    def branch_set_upstream(self, name: str, remote_ref: str) -> None:
        self._git("branch", "--set-upstream-to", remote_ref, name)

    def branch_names(self) -> Set[str]:
        """Local branch names plus branches known on ``origin``."""
        names: Set[str] = set()
        for ref in self._git("branch", "-a", "--format=%(refname)").splitlines():
            ref = ref.strip()
            if ref.startswith("refs/heads/"):
                names.add(ref[len("refs/heads/"):])
            elif ref.startswith("refs/remotes/origin/"):
                name = ref[len("refs/remotes/origin/"):]
                if name != "HEAD":
                    names.add(name)
        return names

    def merge(self, ref: str) -> None:
        self._git("merge", "--no-edit", ref)

    def add_all(self) -> None:
        self._git("add", "-A")

    def has_staged_changes(self) -> bool:
        return self.repo.is_dirty(index=True, working_tree=False, untracked_files=False)

    def commit(self, message: str, author: str) -> None:
        self._git("commit", "-m", message, "--author", author)

    def push(self, target: str, refspec: str) -> None:
        self._git("push", target, refspec)

    def diff(self, ref_a: str, ref_b: str, path: str) -> str:
        return self._git("diff", ref_a, ref_b, "--", path or ".")

    def log(self, ref: str, path: str) -> List[CommitHistoryEntry]:
        """Commits of ``ref`` touching ``path``, newest first."""
        output = self._git("log", ref, f"--format={_LOG_FORMAT}", "--", path or ".")
        entries: List[CommitHistoryEntry] = []
        for line in output.splitlines():
            parts = line.split(_FIELD_SEP, 2)
            if len(parts) != 3:
                continue
            entries.append(CommitHistoryEntry(hash=parts[0], timestamp=parts[1], message=parts[2]))
        return entries

    def head_hash(self, path: str) -> str:
        """Full hash of the newest commit on HEAD touching ``path`` ("" if none)."""
        return self._git("log", "-1", "--format=%H", "--", path or ".").strip()


class RepositoryRegistry:
    """Hands out one RepositoryHandle per repository identity."""

    def __init__(self, repositories_dir: Path, git_config: GitConfig):
        self.repositories_dir = Path(repositories_dir)
        self.git_config = git_config
        self._handles: Dict[str, RepositoryHandle] = {}
        self._lock = threading.Lock()

    def get(self, repo_url: str) -> RepositoryHandle:
        key = repository_id(repo_url)
        with self._lock:
            handle = self._handles.get(key)
            if handle is None:
                handle = RepositoryHandle(
                    repo_url,
                    self.repositories_dir / key,
                    author_name=self.git_config.author_name,
                    author_email=self.git_config.author_email,
                    lock_ttl=self.git_config.lock_ttl,
                    lock_timeout=self.git_config.lock_timeout,
                )
                self._handles[key] = handle
            return handle
