"""Constants shared by the edition engines."""

from __future__ import annotations

# Branch naming
EDIT_BRANCH_PREFIX = "editor-"
PUBLISH_BRANCH_PREFIX = "publish-"
BRANCH_HASH_LENGTH = 8

# Trunk discovery, in priority order
TRUNK_CANDIDATES = ("master", "main")
TRUNK_FALLBACK = "editor"

# Files with special meaning inside a subtree or at the repository root
SIDECAR_FILENAME = "variables.json"      # travels with a session, never committed
TASK_EDITOR_MARKER = "task_editor.json"  # reported by prepareEdition

# Wire aliases for diffEdition targets
DIFF_TARGET_TRUNK = "master"
DIFF_TARGET_EDITOR = "editor"

# Fixed service identity used for edition commits
DEFAULT_AUTHOR_NAME = "Editor"
DEFAULT_AUTHOR_EMAIL = "task-editor@france-ioi.org"
