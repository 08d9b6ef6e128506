"""gitedit: sandboxed, git-backed editing sessions for repository subtrees."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("gitedit")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .lock import AdvisoryLock  # noqa: F401
from .branches import derive_edit_branch, new_publish_branch  # noqa: F401
from .divergence import analyze_divergence  # noqa: F401
from .session_store import SessionFileStore  # noqa: F401

__all__ = [
    "AdvisoryLock",
    "derive_edit_branch",
    "new_publish_branch",
    "analyze_divergence",
    "SessionFileStore",
    "__version__",
]
