from __future__ import annotations

import os
import time
from pathlib import Path


class AdvisoryLock:
    """File-based advisory lock guarding one repository working copy.

    The lock file is created with ``O_EXCL`` so it also excludes other worker
    processes sharing the same repositories folder. A lock older than ``ttl``
    seconds is considered abandoned and broken.

    Environment variables (optional):
    - GITEDIT_LOCK_TTL: seconds to consider a lock stale
    - GITEDIT_LOCK_POLL: polling interval in seconds while waiting
    """

    def __init__(
        self,
        path: Path,
        *,
        ttl: int | None = None,
        timeout: float | None = None,
        owner: str = "",
    ):
        self.path = Path(path)
        self.ttl = ttl if ttl is not None else int(os.getenv("GITEDIT_LOCK_TTL", "600"))
        self.poll = float(os.getenv("GITEDIT_LOCK_POLL", "0.1"))
        self.timeout = timeout
        self.owner = owner
        self.acquired = False

    def _is_stale(self) -> bool:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        return (time.time() - mtime) > self.ttl

    def _write_metadata(self) -> None:
        from .fs import utcnow_iso
        self.path.write_text(
            f"pid={os.getpid()} time={utcnow_iso()} owner={self.owner or '-'}\n",
            encoding="utf-8",
        )

    def get_lock_info(self) -> dict | None:
        """Return the holder's metadata (pid, time, owner) or None when unlocked."""
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        info: dict = {}
        for part in content.split():
            if "=" in part:
                key, value = part.split("=", 1)
                info[key] = value
        if "pid" in info:
            try:
                info["pid"] = int(info["pid"])
            except ValueError:
                pass
        return info or None

    def acquire(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        start = time.time()
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                os.close(fd)
                self._write_metadata()
                self.acquired = True
                return True
            except FileExistsError:
                if self.timeout == 0:
                    return False
                # ttl<=0 means never stale
                if self.ttl > 0 and self._is_stale():
                    try:
                        self.path.unlink()
                    except FileNotFoundError:
                        pass
                    continue
                if self.timeout is not None and (time.time() - start) >= self.timeout:
                    return False
                time.sleep(self.poll)

    def release(self) -> None:
        if self.acquired:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            self.acquired = False

    def __enter__(self):
        if not self.acquire():
            raise TimeoutError(f"Failed to acquire lock {self.path} within timeout")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
