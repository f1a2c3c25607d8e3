"""
Document store backed by the GitHub REST API.

No working copy is kept: documents are read through the contents API and
new repositories are seeded by creating the tree, commit and branch reference
objects directly.
"""
import base64
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

import requests

from config_depot.base import (
    BOT_EMAIL,
    BOT_NAME,
    INITIAL_COMMIT_MESSAGE,
    MAX_COMMITS,
    PRIMARY_BRANCH,
    CommitRecord,
    CreatedRepository,
    Document,
    DocumentSet,
    DocumentStore,
    RepositoryEntry,
    document_path,
    format_commit_date,
    parse_commit_date,
    repository_name,
)
from config_depot.errors import MutationError, RetrievalError
from config_depot.refs import parse_commit_ref, resolve_commit_ref

logger = logging.getLogger(__name__)

_REF_RE = re.compile(r"\?ref=(.+)$")

REPOSITORY_OPTIONS = {
    "auto_init": True,
    "private": True,
    "has_downloads": False,
    "has_issues": False,
    "has_wiki": False,
}


def busted(response: requests.Response) -> bool:
    return response.status_code < 200 or response.status_code >= 400


def hash_from(url: str) -> str | None:
    """Recover the pinned commit from a contents URL ending in `?ref=<hash>`."""
    match = _REF_RE.search(url or "")
    return match.group(1) if match else None


def commit_from_api(data: dict[str, Any]) -> CommitRecord:
    committer = data.get("commit", {}).get("committer", {})
    return CommitRecord(
        hash=data["sha"],
        committer=committer.get("name", ""),
        email=committer.get("email", ""),
        date=format_commit_date(parse_commit_date(committer["date"])),
        message=data.get("commit", {}).get("message", ""),
    )


class GitHubDocumentStore(DocumentStore):
    """
    Stateless store talking to a GitHub compatible API.

    Every request carries the organisation token as a bearer credential.
    Statuses outside 200-399 are failures.
    """

    def __init__(
        self,
        organisation: str,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        branch: str = PRIMARY_BRANCH,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        self.organisation = organisation
        self.base_url = base_url.rstrip("/")
        self.branch = branch
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Accept": "application/vnd.github.v3+json", "User-Agent": "config-depot"}
        )
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("GitHubDocumentStore(...)")
        else:
            with p.group(4, "GitHubDocumentStore(", ")"):
                p.breakable()
                p.text(f"organisation={self.organisation},")
                p.breakable()
                p.text(f"branch={self.branch},")
                p.breakable()
                p.text(f"url={self.base_url}")

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        if path.startswith(("http://", "https://")):
            url = path
        else:
            url = f"{self.base_url}/{path.lstrip('/')}"
        return self.session.request(method, url, timeout=self.timeout, **kwargs)

    def _repo_path(self, name: str) -> str:
        return f"repos/{self.organisation}/{name}"

    def get_document(
        self, application: str, environment: str, commit: str, category: str
    ) -> Document | None:
        ref = parse_commit_ref(commit)
        sha = resolve_commit_ref(ref, lambda: self.list_commits(application, environment))
        if sha is None:
            logger.debug("Commit %s not found for %s-%s", commit, application, environment)
            return None

        name = repository_name(application, environment)
        context = {
            "application": application,
            "environment": environment,
            "operation": "get-document",
        }
        try:
            response = self._request(
                "GET",
                f"{self._repo_path(name)}/contents/{document_path(category)}",
                params={"ref": sha},
            )
        except requests.RequestException as e:
            logger.error("Failed to retrieve %s: %s", category, e, extra=context)
            raise RetrievalError(f"Failed to retrieve {category}", **context) from e

        if response.status_code == 404:
            return None
        if busted(response):
            logger.error(
                "Failed to retrieve %s: status %s", category, response.status_code, extra=context
            )
            raise RetrievalError(
                f"Failed to retrieve {category}", status=response.status_code, **context
            )

        try:
            body = response.json()
            content = body.get("content") if isinstance(body, dict) else None
            if content is None:
                return None
            # base64, json and unicode decode errors are all ValueErrors
            data = json.loads(base64.b64decode(content).decode("utf-8"))
        except ValueError as e:
            logger.error("Undecodable %s document at %s", category, sha, extra=context)
            raise RetrievalError(
                f"Document {category} at {sha} could not be decoded", **context
            ) from e
        return Document(
            category=category,
            data=data,
            hash=hash_from(body.get("url", "")) or sha,
        )

    def list_commits(self, application: str, environment: str) -> list[CommitRecord]:
        name = repository_name(application, environment)
        context = {
            "application": application,
            "environment": environment,
            "operation": "list-commits",
        }
        try:
            response = self._request(
                "GET",
                f"{self._repo_path(name)}/commits",
                params={"sha": self.branch, "per_page": MAX_COMMITS},
            )
        except requests.RequestException as e:
            logger.error("Failed to retrieve commits: %s", e, extra=context)
            raise RetrievalError("Failed to retrieve commits", **context) from e

        # 409 is an empty repository
        if response.status_code in (404, 409):
            return []
        if busted(response):
            logger.error(
                "Failed to retrieve commits: status %s", response.status_code, extra=context
            )
            raise RetrievalError(
                "Failed to retrieve commits", status=response.status_code, **context
            )

        return [commit_from_api(c) for c in response.json()[:MAX_COMMITS] if c]

    def list_repositories(self) -> list[RepositoryEntry]:
        entries = []
        path: str | None = f"orgs/{self.organisation}/repos"
        params: dict[str, Any] | None = {"per_page": 100}
        while path:
            try:
                response = self._request("GET", path, params=params)
            except requests.RequestException as e:
                logger.error("Failed to list repositories: %s", e)
                raise RetrievalError(
                    "Failed to list repositories", operation="list-repositories"
                ) from e
            if busted(response):
                logger.error("Failed to list repositories: status %s", response.status_code)
                raise RetrievalError(
                    "Failed to list repositories",
                    status=response.status_code,
                    operation="list-repositories",
                )

            entries.extend(
                RepositoryEntry.from_name(repo["name"], repo.get("ssh_url", ""))
                for repo in response.json()
                if repo
            )
            # the next link already carries the query string
            path = response.links.get("next", {}).get("url")
            params = None
        return entries

    def healthy(self) -> bool:
        try:
            response = self._request(
                "GET", f"orgs/{self.organisation}/repos", params={"per_page": 1}
            )
        except requests.RequestException:
            return False
        return not busted(response)

    def _mutate(
        self,
        step: str,
        method: str,
        path: str,
        payload: dict[str, Any],
        created: dict[str, str],
        context: dict[str, str],
    ) -> dict[str, Any]:
        try:
            response = self._request(method, path, json=payload)
        except requests.RequestException as e:
            logger.error(
                "Failed to %s, created %s: %s", step.replace("-", " "), created, e, extra=context
            )
            raise MutationError(
                f"Failed to {step.replace('-', ' ')}", step=step, created=created, **context
            ) from e

        if busted(response):
            try:
                detail = response.json().get("message")
            except ValueError:
                detail = None
            logger.error(
                "Failed to %s, created %s: status %s %s",
                step.replace("-", " "),
                created,
                response.status_code,
                detail or "",
                extra=context,
            )
            raise MutationError(
                f"Failed to {step.replace('-', ' ')}",
                step=step,
                created=created,
                status=response.status_code,
                **context,
            )
        return response.json()

    def bootstrap_repository(
        self, application: str, environment: str, documents: DocumentSet
    ) -> CreatedRepository:
        name = repository_name(application, environment)
        repo_path = self._repo_path(name)
        context = {
            "application": application,
            "environment": environment,
            "operation": "bootstrap",
        }
        created: dict[str, str] = {}

        repo = self._mutate(
            "create-repository",
            "POST",
            f"orgs/{self.organisation}/repos",
            {"name": name, **REPOSITORY_OPTIONS},
            created,
            context,
        )
        created["repository"] = name

        tree = [
            {"path": document_path(category), "mode": "100644", "type": "blob", "content": text}
            for category, text in documents.items()
        ]
        tree_sha = self._mutate(
            "create-tree", "POST", f"{repo_path}/git/trees", {"tree": tree}, created, context
        )["sha"]
        created["tree"] = tree_sha

        identity = {
            "name": BOT_NAME,
            "email": BOT_EMAIL,
            "date": format_commit_date(datetime.now(timezone.utc)),
        }
        commit_sha = self._mutate(
            "create-commit",
            "POST",
            f"{repo_path}/git/commits",
            {
                "message": INITIAL_COMMIT_MESSAGE,
                "tree": tree_sha,
                "parents": [],
                "author": identity,
                "committer": identity,
            },
            created,
            context,
        )["sha"]
        created["commit"] = commit_sha

        self._mutate(
            "update-reference",
            "PATCH",
            f"{repo_path}/git/refs/heads/{self.branch}",
            {"sha": commit_sha, "force": True},
            created,
            context,
        )

        logger.info("Bootstrapped repository %s at %s", name, commit_sha)
        return CreatedRepository(name=name, path=repo.get("ssh_url", ""))


def create_github_document_store(
    organisation: str, token: str | None = None, **kwargs: Any
) -> GitHubDocumentStore:
    return GitHubDocumentStore(organisation, token=token, **kwargs)
