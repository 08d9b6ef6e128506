"""Session sandboxes materialized from a working-copy subtree."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

from ulid import ULID

from gitedit.constants import SIDECAR_FILENAME, TASK_EDITOR_MARKER
from gitedit.fs import copy_tree
from gitedit.session_store import session_dir

from .git_sync import working_subdir
from .observability import log_debug
from .repository import RepositoryHandle


@dataclass(frozen=True)
class PreparedSession:
    session_id: str
    directory: Path
    task_editor: bool


def new_session_id() -> str:
    return str(ULID())


def prepare_session(handle: RepositoryHandle, subdir: str, sessions_root: Path) -> PreparedSession:
    """Copy the subtree's current working-copy state into a new session.

    The repository-root sidecar file, when present, is copied alongside. The
    caller holds ``handle.exclusive()`` so the checked-out branch is stable
    while copying.
    """
    handle.ensure()
    source = working_subdir(handle, subdir)
    session_id = new_session_id()
    directory = session_dir(sessions_root, session_id)
    directory.mkdir(parents=True)

    if not source.is_dir():
        log_debug("Subtree missing, starting empty session", repo=handle.repo_id, subdir=subdir)
    copy_tree(source, directory)

    sidecar = handle.local_path / SIDECAR_FILENAME
    if sidecar.is_file() and not sidecar.is_symlink():
        shutil.copy2(sidecar, directory / SIDECAR_FILENAME)

    return PreparedSession(
        session_id=session_id,
        directory=directory,
        task_editor=(directory / TASK_EDITOR_MARKER).exists(),
    )
