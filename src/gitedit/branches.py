"""Deterministic branch naming.

The edit branch name is the join key between sessions and on-disk git state,
so it must not depend on anything but its inputs.
"""

from __future__ import annotations

import hashlib
import secrets

from .constants import BRANCH_HASH_LENGTH, EDIT_BRANCH_PREFIX, PUBLISH_BRANCH_PREFIX
from .fs import normalize_subdir, repository_id


def derive_edit_branch(repo_url: str, subdir: str) -> str:
    """Edit branch for a (repository, subdirectory) pair.

    ``editor-`` followed by the first 8 hex characters of the md5 of the
    repository identity and the normalized subdirectory.
    """
    key = f"{repository_id(repo_url)}:{normalize_subdir(subdir)}"
    digest = hashlib.md5(key.encode("utf-8")).hexdigest()
    return f"{EDIT_BRANCH_PREFIX}{digest[:BRANCH_HASH_LENGTH]}"


def new_publish_branch() -> str:
    """Fresh, uniquely named publish branch (``publish-`` + 8 random hex)."""
    return f"{PUBLISH_BRANCH_PREFIX}{secrets.token_hex(BRANCH_HASH_LENGTH // 2)}"
