from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from git import Repo

from conftest import TASK_DIR, clone_working_copy, remote_file, seed_remote
from gitedit.branches import derive_edit_branch
from gitedit.config_schema import GiteditConfig
from gitedit.credentials import Credentials
from gitedit.errors import AuthorizationError
from gitedit.fs import repository_id
from gitedit_server import git_sync
from gitedit_server.edition import EditionService


def make_service(config: GiteditConfig, requests=None) -> EditionService:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(201, json={"web_url": "https://gitlab.com/mr/1"})

    return EditionService(
        config,
        credentials=Credentials(),
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def seeded(tmp_path: Path, url: str = None, extra_files=None) -> Path:
    remote = tmp_path / "remote.git"
    url = url or remote.as_posix()
    edit = derive_edit_branch(url, TASK_DIR)
    files = {f"{TASK_DIR}/draft.md": "draft\n"}
    files.update(extra_files or {})
    return seed_remote(remote, extra_branches={edit: files})


@pytest.fixture
def service(gitedit_config):
    svc = make_service(gitedit_config)
    yield svc
    svc.close()


# ----------------------------------------------------------------------
# Preconditions
# ----------------------------------------------------------------------

@pytest.mark.parametrize("call", [
    lambda s, url: s.checkout_edition(url, TASK_DIR),
    lambda s, url: s.prepare_edition(url, TASK_DIR),
    lambda s, url: s.history_edition(url, TASK_DIR),
    lambda s, url: s.commit_edition(url, TASK_DIR, "s1", "msg"),
    lambda s, url: s.publish_edition(url, TASK_DIR, "prod"),
    lambda s, url: s.diff_edition(url, TASK_DIR, "abc", "master"),
])
def test_disallowed_repository_touches_nothing(tmp_path, call):
    remote = seeded(tmp_path)
    config = GiteditConfig.model_validate({
        "folders": {"base": str(tmp_path / "data")},
        "git": {"allowed_repositories": ["https://gitlab.com/org/other.git"]},
    })
    svc = make_service(config)

    result = call(svc, remote.as_posix())

    assert result == {"success": False, "error": "Repository not allowed"}
    assert not config.folders.repositories_dir.exists()


def test_commit_without_session_touches_nothing(service, tmp_path):
    remote = seeded(tmp_path)

    result = service.commit_edition(remote.as_posix(), TASK_DIR, "", "msg")

    assert result == {"success": False, "error": "No session ID provided"}
    assert not service.config.folders.repositories_dir.exists()


def test_commit_rejects_malformed_session(service, tmp_path):
    remote = seeded(tmp_path)
    result = service.commit_edition(remote.as_posix(), TASK_DIR, "../x", "msg")
    assert result == {"success": False, "error": "Invalid session ID"}


def test_missing_repository_url(service):
    assert service.checkout_edition("", TASK_DIR) == {
        "success": False,
        "error": "No repository URL provided",
    }


# ----------------------------------------------------------------------
# Session lifecycle
# ----------------------------------------------------------------------

def test_checkout_prepare_edit_commit(service, tmp_path):
    remote = seeded(tmp_path)
    url = remote.as_posix()
    edit = derive_edit_branch(url, TASK_DIR)

    assert service.checkout_edition(url, TASK_DIR) == {"success": True}

    prepared = service.prepare_edition(url, TASK_DIR)
    assert prepared["success"] is True
    assert prepared["token"] == "testtoken"
    assert prepared["masterBranch"] == "master"
    assert prepared["masterSynced"] is True
    assert prepared["editorSynced"] is False
    assert prepared["taskEditor"] is False

    store = service.open_session_files(prepared["session"], prepared["token"])
    assert sorted(store.list()) == ["draft.md", "statement.md", "variables.json"]
    store.write("draft.md", b"edited", truncate=True)
    store.write("images/logo.svg", b"<svg/>")

    result = service.commit_edition(url, TASK_DIR, prepared["session"], "Edit draft")

    assert result == {"success": True}
    assert remote_file(remote, edit, f"{TASK_DIR}/draft.md") == "edited"
    assert remote_file(remote, edit, f"{TASK_DIR}/images/logo.svg") == "<svg/>"
    assert Repo(remote).commit(edit).message.strip() == "Edit draft"


def test_prepare_detects_task_editor_marker(service, tmp_path):
    remote = seeded(tmp_path, extra_files={f"{TASK_DIR}/task_editor.json": "{}\n"})
    url = remote.as_posix()
    service.checkout_edition(url, TASK_DIR)

    assert service.prepare_edition(url, TASK_DIR)["taskEditor"] is True


def test_prepare_missing_subtree_gives_empty_session(service, tmp_path):
    remote = seeded(tmp_path)
    url = remote.as_posix()

    prepared = service.prepare_edition(url, "tasks/unknown")

    assert prepared["success"] is True
    # edit branch never existed: divergence unknown, reported as synced
    assert prepared["masterSynced"] is True
    assert prepared["editorSynced"] is True
    store = service.open_session_files(prepared["session"], "testtoken")
    assert list(store.list()) == ["variables.json"]


def test_prepare_does_not_follow_symlinks_out_of_the_repository(service, tmp_path):
    remote = seeded(tmp_path)
    url = remote.as_posix()
    service.checkout_edition(url, TASK_DIR)
    secret = tmp_path / "server_secret.toml"
    secret.write_text("password = 'hunter2'\n")
    working_copy = service.registry.get(url).local_path
    (working_copy / TASK_DIR / "leak.txt").symlink_to(secret)
    sidecar = working_copy / "variables.json"
    sidecar.unlink()
    sidecar.symlink_to(secret)

    prepared = service.prepare_edition(url, TASK_DIR)

    store = service.open_session_files(prepared["session"], prepared["token"])
    assert sorted(store.list()) == ["draft.md", "statement.md"]
    assert store.read("leak.txt") is None
    assert store.read("variables.json") is None


def test_sessions_are_distinct(service, tmp_path):
    remote = seeded(tmp_path)
    url = remote.as_posix()
    first = service.prepare_edition(url, TASK_DIR)["session"]
    second = service.prepare_edition(url, TASK_DIR)["session"]
    assert first != second


def test_open_session_files_requires_token(service):
    with pytest.raises(AuthorizationError):
        service.open_session_files("s1", "wrong")


# ----------------------------------------------------------------------
# Read-side operations
# ----------------------------------------------------------------------

def test_checkout_failure_is_reported(service, tmp_path):
    remote = seed_remote(tmp_path / "remote.git")

    result = service.checkout_edition(remote.as_posix(), TASK_DIR)

    assert result["success"] is False
    assert "origin/editor-" in result["error"]


def test_history_edition(service, tmp_path):
    remote = seeded(tmp_path)
    url = remote.as_posix()
    service.checkout_edition(url, TASK_DIR)

    result = service.history_edition(url, TASK_DIR)

    assert result["success"] is True
    assert result["editorAdditional"] == 1
    assert result["masterAdditional"] == 0
    assert len(result["history"]) == 2
    assert result["history"][1]["master"] is True
    assert set(result["history"][0]) == {"hash", "date", "message"}


def test_last_commits_and_diff(service, tmp_path):
    remote = seeded(tmp_path)
    url = remote.as_posix()
    service.checkout_edition(url, TASK_DIR)

    commits = service.last_commits(url, TASK_DIR)
    assert commits["success"] is True
    assert commits["master"] == Repo(remote).commit("master").hexsha

    diff = service.diff_edition(url, TASK_DIR, commits["master"], "editor")
    assert diff["success"] is True
    assert "+draft" in diff["diff"]


def test_checkout_hash_edition(service, tmp_path):
    remote = seeded(tmp_path)
    url = remote.as_posix()
    service.checkout_edition(url, TASK_DIR)
    sha = Repo(remote).commit("master").hexsha

    assert service.checkout_hash_edition(url, "") == {"success": False, "error": "No hash provided"}
    assert service.checkout_hash_edition(url, sha) == {"success": True}
    assert service.registry.get(url).repo.head.commit.hexsha == sha


def test_unexpected_fault_becomes_failure(service, tmp_path, monkeypatch):
    remote = seeded(tmp_path)

    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(git_sync, "checkout_edition", boom)

    assert service.checkout_edition(remote.as_posix(), TASK_DIR) == {"success": False, "error": "boom"}


# ----------------------------------------------------------------------
# Publish
# ----------------------------------------------------------------------

def test_publish_manual_pr(tmp_path, gitedit_config):
    url = "https://gitlab.com/org/task.git"
    remote = seeded(tmp_path, url=url)
    clone_working_copy(remote, gitedit_config.folders.repositories_dir / repository_id(url))
    requests = []
    svc = make_service(gitedit_config, requests)

    result = svc.publish_edition(url, TASK_DIR, "mpr")

    assert result["success"] is True
    assert result["branch"].startswith("publish-")
    assert requests == []


def test_publish_auto_pr_uses_caller_password_as_token(tmp_path, gitedit_config):
    url = "https://gitlab.com/org/task.git"
    remote = seeded(tmp_path, url=url)
    clone_working_copy(remote, gitedit_config.folders.repositories_dir / repository_id(url))
    requests = []
    svc = make_service(gitedit_config, requests)

    result = svc.publish_edition(url, TASK_DIR, "auto-pr", password="tok", title="T", body="B")

    assert result == {"success": True, "prUrl": "https://gitlab.com/mr/1"}
    assert len(requests) == 1
    assert requests[0].url.params["private_token"] == "tok"
