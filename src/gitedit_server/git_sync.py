"""Edit-branch synchronization and commit protocols.

Every function here runs a multi-step git sequence against a shared working
copy. Callers must hold ``handle.exclusive()`` for the whole call. None of
the sequences are transactional: a failure partway leaves the working copy
on whatever branch the last successful step checked out.

``remote`` is either ``"origin"`` or a remote URL carrying credentials.
"""

from __future__ import annotations

from pathlib import Path

from gitedit.branches import derive_edit_branch
from gitedit.constants import (
    DIFF_TARGET_EDITOR,
    DIFF_TARGET_TRUNK,
    SIDECAR_FILENAME,
    TRUNK_CANDIDATES,
    TRUNK_FALLBACK,
)
from gitedit.divergence import DivergenceResult, analyze_divergence
from gitedit.errors import EditionError, TransportError, ValidationError
from gitedit.fs import copy_tree, is_within, normalize_subdir

from .observability import log_debug
from .repository import RepositoryHandle

ORIGIN = "origin"


def resolve_trunk(handle: RepositoryHandle) -> str:
    """``master`` if the repository has it, else ``main``, else ``editor``.

    Any git failure (unreachable remote, failed clone) degrades to the
    fallback name instead of propagating.
    """
    try:
        names = handle.branch_names()
    except EditionError as e:
        log_debug("Trunk resolution failed, using fallback", repo=handle.repo_id, error=str(e))
        return TRUNK_FALLBACK
    for candidate in TRUNK_CANDIDATES:
        if candidate in names:
            return candidate
    return TRUNK_FALLBACK


def working_subdir(handle: RepositoryHandle, subdir: str) -> Path:
    """Subtree path inside the working copy; must not leave the repository."""
    root = handle.local_path.resolve()
    target = (root / normalize_subdir(subdir)).resolve()
    if not is_within(target, root) or target.name == ".git" or ".git" in target.relative_to(root).parts:
        raise ValidationError("Invalid path")
    return target


def update_trunk(handle: RepositoryHandle, remote: str = ORIGIN) -> str:
    """Check out the trunk branch and pull it. Returns the trunk name."""
    trunk = resolve_trunk(handle)
    handle.checkout(trunk)
    handle.pull(remote, trunk)
    return trunk


def checkout_edition(handle: RepositoryHandle, subdir: str, remote: str = ORIGIN) -> str:
    """Bring the edit branch of ``subdir`` up to date with its remote.

    fetch; checkout trunk; pull trunk; create the edit branch if absent;
    checkout it; track ``origin/<edit-branch>``; pull it. The first failing
    step aborts the rest. Returns the edit branch name.
    """
    edit_branch = derive_edit_branch(handle.repo_url, subdir)

    handle.fetch(remote)
    update_trunk(handle, remote)
    try:
        handle.branch_create(edit_branch)
    except TransportError as e:
        if "already exists" not in str(e):
            raise
        log_debug("Edit branch already exists", repo=handle.repo_id, branch=edit_branch)
    handle.checkout(edit_branch)
    handle.branch_set_upstream(edit_branch, f"origin/{edit_branch}")
    handle.pull(remote, edit_branch)
    return edit_branch


def commit_edition(
    handle: RepositoryHandle,
    subdir: str,
    session_dir: Path,
    message: str,
    remote: str = ORIGIN,
) -> bool:
    """Fold a session sandbox into the edit branch and push it.

    The sidecar variables file is removed from the session first. The
    session is merged over the subtree: files deleted only inside the session
    stay in the working copy. Returns False when there was nothing to commit
    (the branch is still pushed).
    """
    if not session_dir.is_dir():
        raise ValidationError("Unknown session")
    edit_branch = derive_edit_branch(handle.repo_url, subdir)
    target = working_subdir(handle, subdir)

    handle.checkout(edit_branch)

    sidecar = session_dir / SIDECAR_FILENAME
    if sidecar.exists():
        sidecar.unlink()
    copy_tree(session_dir, target)

    handle.add_all()
    committed = handle.has_staged_changes()
    if committed:
        handle.commit(message, handle.author)
    else:
        log_debug("Nothing to commit", repo=handle.repo_id, branch=edit_branch)
    handle.push(remote, f"{edit_branch}:{edit_branch}")
    return committed


def compute_divergence(handle: RepositoryHandle, subdir: str, trunk: str | None = None) -> DivergenceResult:
    """Compare edit-branch and trunk histories restricted to ``subdir``."""
    trunk = trunk or resolve_trunk(handle)
    path = normalize_subdir(subdir)
    trunk_history = handle.log(trunk, path)
    editor_history = handle.log(derive_edit_branch(handle.repo_url, subdir), path)
    return analyze_divergence(editor_history, trunk_history)


def last_commits(handle: RepositoryHandle, subdir: str, remote: str = ORIGIN) -> dict:
    """Newest commit touching ``subdir`` on the trunk and on the edit branch."""
    path = normalize_subdir(subdir)
    update_trunk(handle, remote)
    trunk_hash = handle.head_hash(path)
    handle.checkout(derive_edit_branch(handle.repo_url, subdir))
    editor_hash = handle.head_hash(path)
    return {"master": trunk_hash, "editor": editor_hash}


def diff_edition(
    handle: RepositoryHandle,
    subdir: str,
    commit_hash: str,
    target: str,
    remote: str = ORIGIN,
) -> str:
    """Diff ``commit_hash`` against ``target`` within ``subdir``.

    ``target`` may be a ref or one of the aliases ``master`` (the resolved
    trunk) and ``editor`` (the edit branch).
    """
    if not commit_hash:
        raise ValidationError("No hash provided")
    edit_branch = derive_edit_branch(handle.repo_url, subdir)
    trunk = update_trunk(handle, remote)
    handle.checkout(edit_branch)

    if target == DIFF_TARGET_TRUNK:
        target = trunk
    elif target == DIFF_TARGET_EDITOR:
        target = edit_branch
    return handle.diff(commit_hash, target or edit_branch, normalize_subdir(subdir))


def checkout_hash(handle: RepositoryHandle, commit_hash: str) -> None:
    if not commit_hash:
        raise ValidationError("No hash provided")
    handle.checkout(commit_hash)
