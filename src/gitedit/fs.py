from __future__ import annotations

import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path


_REPO_ID_PATTERN = re.compile(r"[^A-Za-z0-9]")
_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def repository_id(repo_url: str) -> str:
    """Directory-safe identity of a remote URL.

    Trailing ``.git`` is dropped and every non-alphanumeric character becomes
    ``_``, so ``https://host/org/repo.git`` and ``https://host/org/repo`` share
    one working copy.
    """
    url = repo_url.strip()
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return _REPO_ID_PATTERN.sub("_", url)


def normalize_subdir(subdir: str | None) -> str:
    """Strip whitespace and leading/trailing slashes from a subtree path."""
    return (subdir or "").strip().strip("/")


def is_valid_session_id(session_id: str) -> bool:
    return bool(session_id) and bool(_SESSION_ID_PATTERN.match(session_id))


def _skip_on_copy(directory: str, names) -> set:
    return {
        name for name in names
        if name == ".git" or os.path.islink(os.path.join(directory, name))
    }


def copy_tree(src: Path, dest: Path) -> None:
    """Merge ``src`` into ``dest``.

    Files present in ``src`` overwrite their counterparts; files only present
    in ``dest`` are left in place. ``.git`` and symbolic links are never
    copied.
    """
    dest.mkdir(parents=True, exist_ok=True)
    if not src.is_dir():
        return
    shutil.copytree(src, dest, dirs_exist_ok=True, ignore=_skip_on_copy)


def is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False
