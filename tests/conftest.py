from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path
from typing import Dict, Optional

import pytest

_SRC = Path(__file__).resolve().parents[1] / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

# Keep test runs from writing session log files under ~/.gitedit
os.environ.setdefault("GITEDIT_LOG_DISABLE_FILE", "1")

from git import Repo  # noqa: E402

TASK_DIR = "tasks/t1"


def pytest_sessionstart(session):  # type: ignore[override]
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(_SRC))


def seed_remote(
    remote_path: Path,
    branch: str = "master",
    files: Optional[Dict[str, str]] = None,
    extra_branches: Optional[Dict[str, Dict[str, str]]] = None,
) -> Path:
    """Create a bare remote with one seeded trunk branch.

    ``extra_branches`` maps branch names to files committed on top of the
    trunk for that branch only.
    """
    remote_path.mkdir(parents=True, exist_ok=True)
    Repo.init(remote_path, bare=True)
    workdir = remote_path.parent / f"{remote_path.name}-seed"
    repo = Repo.init(workdir)
    with repo.config_writer() as cw:
        cw.set_value("user", "name", "Seeder")
        cw.set_value("user", "email", "seed@example.com")

    files = files or {
        "README.md": "seed\n",
        "variables.json": '{"lang": "fr"}\n',
        f"{TASK_DIR}/statement.md": "statement\n",
    }
    _write_and_commit(repo, workdir, files, "seed")
    repo.git.branch("-M", branch)
    repo.create_remote("origin", remote_path.as_posix())
    repo.git.push("origin", f"{branch}:{branch}")

    for name, branch_files in (extra_branches or {}).items():
        repo.git.checkout("-b", name, branch)
        _write_and_commit(repo, workdir, branch_files, f"work on {name}")
        repo.git.push("origin", f"{name}:{name}")
        repo.git.checkout(branch)

    Repo(remote_path).git.symbolic_ref("HEAD", f"refs/heads/{branch}")
    shutil.rmtree(workdir)
    return remote_path


def _write_and_commit(repo: Repo, workdir: Path, files: Dict[str, str], message: str) -> None:
    for rel, content in files.items():
        target = workdir / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
    repo.git.add("-A")
    repo.git.commit("-m", message)


def remote_file(remote_path: Path, ref: str, rel: str) -> str:
    return Repo(remote_path).git.show(f"{ref}:{rel}")


def remote_branches(remote_path: Path) -> set:
    return {head.name for head in Repo(remote_path).heads}


@pytest.fixture
def remote(tmp_path) -> Path:
    return seed_remote(tmp_path / "remote.git")


@pytest.fixture
def gitedit_config(tmp_path):
    from gitedit.config_schema import GiteditConfig

    return GiteditConfig.model_validate(
        {
            "folders": {"base": str(tmp_path / "data")},
            "git": {"lock_timeout": 5},
        }
    )


def push_commit(remote_path: Path, branch: str, files: Dict[str, str], message: str = "update") -> str:
    """Commit ``files`` on ``branch`` of the remote from a scratch clone."""
    workdir = remote_path.parent / f"{remote_path.name}-push"
    repo = Repo.clone_from(remote_path.as_posix(), workdir, branch=branch)
    with repo.config_writer() as cw:
        cw.set_value("user", "name", "Pusher")
        cw.set_value("user", "email", "push@example.com")
    _write_and_commit(repo, workdir, files, message)
    repo.git.push("origin", f"{branch}:{branch}")
    sha = repo.head.commit.hexsha
    shutil.rmtree(workdir)
    return sha


def clone_working_copy(remote_path: Path, local_path: Path) -> Path:
    """Pre-clone a working copy, as the server would on first use."""
    repo = Repo.clone_from(remote_path.as_posix(), local_path)
    with repo.config_writer() as cw:
        cw.set_value("user", "name", "Editor")
        cw.set_value("user", "email", "editor@example.com")
        cw.set_value("pull", "rebase", "false")
    return local_path
