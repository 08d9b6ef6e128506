"""Publishing an edit branch: direct production merge or a review request.

The git part runs under the repository guard. The hosting-provider REST call
for ``auto-pr`` happens after the guard is released.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import quote, urlsplit

import httpx

from gitedit.branches import derive_edit_branch, new_publish_branch
from gitedit.config_schema import ProvidersConfig
from gitedit.credentials import host_of, is_gitlab
from gitedit.errors import TransportError

from .git_sync import ORIGIN, resolve_trunk
from .observability import log_action, timeit
from .repository import RepositoryHandle


class PublishType(str, Enum):
    PROD = "prod"
    MANUAL_PR = "manual-pr"
    AUTO_PR = "auto-pr"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PublishType":
        """Unknown values publish as an automatic review request."""
        if value == cls.PROD.value:
            return cls.PROD
        if value in (cls.MANUAL_PR.value, "mpr"):
            return cls.MANUAL_PR
        return cls.AUTO_PR


@dataclass
class PublishOutcome:
    publish_type: PublishType
    branch: str
    trunk: str
    pr_url: Optional[str] = None

    def to_dict(self) -> dict:
        if self.publish_type is PublishType.PROD:
            return {"success": True, "prod": True}
        if self.publish_type is PublishType.MANUAL_PR:
            return {"success": True, "branch": self.branch}
        return {"success": True, "prUrl": self.pr_url}


def _project_path(repo_url: str) -> str:
    path = urlsplit(repo_url.strip()).path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return path


class ReviewRequestClient:
    """Opens merge requests (GitLab) or pull requests (GitHub) over REST."""

    def __init__(self, providers: ProvidersConfig, http_client: Optional[httpx.Client] = None):
        self.providers = providers
        self._client = http_client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.providers.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def open(self, repo_url: str, source: str, target: str, title: str, body: str, token: str) -> str:
        """Open a review request and return its web URL."""
        if is_gitlab(repo_url, self.providers.gitlab_hosts):
            return self._open_gitlab(repo_url, source, target, title, body, token)
        return self._open_github(repo_url, source, target, title, body, token)

    def _gitlab_base(self, repo_url: str) -> str:
        configured = self.providers.gitlab_api_base.rstrip("/")
        host = host_of(repo_url)
        if host == (urlsplit(configured).hostname or "").lower():
            return configured
        return f"https://{host}"

    def _open_gitlab(self, repo_url, source, target, title, body, token) -> str:
        project = quote(_project_path(repo_url), safe="")
        url = f"{self._gitlab_base(repo_url)}/api/v4/projects/{project}/merge_requests"
        response = self.client.post(
            url,
            params={"private_token": token},
            json={
                "title": title,
                "description": body,
                "source_branch": source,
                "target_branch": target,
            },
        )
        return self._web_url(response, "web_url")

    def _open_github(self, repo_url, source, target, title, body, token) -> str:
        url = f"{self.providers.github_api_base.rstrip('/')}/repos/{_project_path(repo_url)}/pulls"
        response = self.client.post(
            url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
            },
            json={"title": title, "body": body, "head": source, "base": target},
        )
        return self._web_url(response, "html_url")

    @staticmethod
    def _web_url(response: httpx.Response, key: str) -> str:
        if response.is_error:
            raise TransportError(f"{response.status_code} {response.reason_phrase}")
        try:
            return response.json()[key]
        except (ValueError, KeyError, TypeError) as e:
            raise TransportError(f"Unexpected provider response: missing {key}") from e


class PublishEngine:
    def __init__(self, client: ReviewRequestClient):
        self.client = client

    def publish(
        self,
        handle: RepositoryHandle,
        subdir: str,
        publish_type: PublishType,
        *,
        title: str = "",
        body: str = "",
        caller_remote: str = ORIGIN,
        backend_remote: str = ORIGIN,
        token: str = "",
    ) -> PublishOutcome:
        """Cut a fresh publish branch from the edit branch and deliver it.

        ``prod`` merges trunk into the publish branch, merges that back into
        trunk and pushes trunk with the caller's own credentials
        (``caller_remote``). The review flavours push the publish branch with
        the backend credentials; ``auto-pr`` then opens the review request.
        """
        edit_branch = derive_edit_branch(handle.repo_url, subdir)
        with handle.exclusive():
            trunk = resolve_trunk(handle)
            handle.checkout(trunk)
            handle.pull(backend_remote, trunk)
            handle.checkout(edit_branch)

            branch = new_publish_branch()
            handle.branch_create(branch)
            handle.checkout(branch)

            if publish_type is PublishType.PROD:
                handle.merge(trunk)
                handle.checkout(trunk)
                handle.merge(branch)
                handle.push(caller_remote, f"{trunk}:{trunk}")
                log_action("publish.prod", repo=handle.repo_id, branch=branch, trunk=trunk)
                return PublishOutcome(publish_type, branch, trunk)

            handle.push(backend_remote, f"{branch}:{branch}")

        outcome = PublishOutcome(publish_type, branch, trunk)
        if publish_type is PublishType.AUTO_PR:
            with timeit("publish.review_request", repo=handle.repo_id, branch=branch):
                outcome.pr_url = self.client.open(
                    handle.repo_url, branch, trunk, title, body, token
                )
        return outcome
