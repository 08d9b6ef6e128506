"""gitedit server: HTTP facade over the edition engine.

Clients check out, prepare, edit, commit and publish subtrees of remote git
repositories through JSON operations, and manipulate session files through a
bearer-authenticated file API.
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("gitedit")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .edition import EditionService

__all__ = ["EditionService"]
