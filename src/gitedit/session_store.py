"""Sandboxed file access for one editing session.

Every path is canonicalized and must stay under the session directory before
it is touched. Writes are positional so clients can upload in chunks and
resume. A missing file is reported as ``None`` (read) or ``False`` (delete),
never as an exception.

Concurrent writes to the same file must be serialized by the caller.
"""

from __future__ import annotations

import hmac
import logging
import mimetypes
import os
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Union

from .errors import AuthorizationError, SandboxViolation, ValidationError
from .fs import is_valid_session_id, is_within

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024

Payload = Union[bytes, Iterable[bytes]]

# (token, session_id) -> allowed
Authorizer = Callable[[str, str], bool]


class StaticTokenAuthorizer:
    """Accepts a single shared bearer token for every session.

    Placeholder until per-session tokens exist; ``issue`` hands the same token
    to every prepared session.
    """

    def __init__(self, token: str):
        self.token = token

    def issue(self, session_id: str) -> str:
        return self.token

    def __call__(self, token: str, session_id: str) -> bool:
        if not token or not self.token:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self.token.encode("utf-8"))


def session_dir(sessions_root: Path, session_id: str) -> Path:
    """Directory of a session, rejecting ids that could escape the root."""
    if not is_valid_session_id(session_id):
        raise ValidationError("Invalid session ID")
    return Path(sessions_root) / session_id


class SessionFileStore:
    """File CRUD confined to one session directory."""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    @classmethod
    def open(
        cls,
        sessions_root: Path,
        session_id: str,
        token: str,
        authorizer: Authorizer,
    ) -> "SessionFileStore":
        """Authorize ``token`` for ``session_id`` and return its store."""
        directory = session_dir(sessions_root, session_id)
        if not authorizer(token, session_id):
            raise AuthorizationError("Unauthorized")
        return cls(directory)

    def resolve(self, path: str) -> Path:
        candidate = (self.root / path).resolve()
        if candidate == self.root or not is_within(candidate, self.root):
            logger.warning("Rejected path outside session %s: %r", self.root.name, path)
            raise SandboxViolation(path)
        return candidate

    def exists(self) -> bool:
        return self.root.is_dir()

    def list(self) -> Iterator[str]:
        """Lazily yield relative POSIX paths of every file under the session.

        Directories are walked top-down: a directory's own files come before
        its subdirectories, each level in name order.
        """
        if not self.root.is_dir():
            return
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            base = Path(dirpath)
            for name in sorted(filenames):
                yield (base / name).relative_to(self.root).as_posix()

    def read(self, path: str, chunk_size: int = READ_CHUNK_SIZE) -> Optional[Iterator[bytes]]:
        target = self.resolve(path)
        if not target.is_file():
            return None
        return self._iter_file(target, chunk_size)

    @staticmethod
    def _iter_file(target: Path, chunk_size: int) -> Iterator[bytes]:
        with target.open("rb") as fh:
            while True:
                chunk = fh.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    def content_type(self, path: str) -> str:
        guessed, _ = mimetypes.guess_type(self.resolve(path).name)
        return guessed or "application/octet-stream"

    def write(
        self,
        path: str,
        payload: Payload,
        start: int = 0,
        truncate: bool = False,
    ) -> int:
        """Write ``payload`` at byte offset ``start``.

        ``truncate`` (or a missing file) resets the file to zero length first
        and is only valid with ``start == 0``. Otherwise bytes are overwritten
        in place and the file grows as needed. Returns bytes written.

        The session directory must already exist.
        """
        if start < 0:
            raise ValidationError("Invalid start offset")
        if truncate and start != 0:
            raise ValidationError("truncate requires start=0")
        if not self.exists():
            raise ValidationError("Unknown session")
        target = self.resolve(path)
        if target.is_dir():
            raise ValidationError(f"Is a directory: {path}")
        parent = target.parent
        while parent != self.root:
            if parent.exists() and not parent.is_dir():
                raise ValidationError(f"Not a directory: {parent.relative_to(self.root).as_posix()}")
            parent = parent.parent

        target.parent.mkdir(parents=True, exist_ok=True)
        mode = "w+b" if truncate or not target.exists() else "r+b"
        chunks = [payload] if isinstance(payload, (bytes, bytearray, memoryview)) else payload
        written = 0
        with target.open(mode) as fh:
            fh.seek(start)
            for chunk in chunks:
                written += fh.write(chunk)
        return written

    def delete(self, path: str) -> bool:
        target = self.resolve(path)
        if not target.is_file():
            return False
        target.unlink()
        return True
