import json
import logging
import os
import re
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Any

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
    repository_name,
)
from config_depot.errors import MutationError, RetrievalError
from config_depot.refs import parse_commit_ref

logger = logging.getLogger(__name__)

# stderr git prints when the remote repository or branch is absent
_MISSING_REMOTE = re.compile(
    r"repository not found"
    r"|repository '[^']*' does not exist"
    r"|does not appear to be a git repository"
    r"|remote branch \S+ not found"
)

_FIELD = "\x1f"
_LOG_FORMAT = _FIELD.join(["%H", "%cn", "%ce", "%ct", "%s"])


def _run_git(
    cwd: Path,
    args: list[str],
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
        timeout=timeout,
        env=env,
    )
    return result.stdout.strip()


def _git_environment(ssh_key: Path | None, known_hosts: Path | None) -> dict[str, str]:
    env = dict(os.environ)
    env["GIT_TERMINAL_PROMPT"] = "0"
    if ssh_key is not None:
        command = ["ssh", "-i", str(ssh_key), "-o", "IdentitiesOnly=yes"]
        if known_hosts is not None:
            command += [
                "-o",
                f"UserKnownHostsFile={known_hosts}",
                "-o",
                "StrictHostKeyChecking=yes",
            ]
        env["GIT_SSH_COMMAND"] = shlex.join(command)
    return env


def _local_path(locator: str) -> Path | None:
    if locator.startswith("file://"):
        return Path(locator[len("file://") :])
    if os.path.isabs(locator):
        return Path(locator)
    return None


def _is_missing_remote(error: subprocess.CalledProcessError) -> bool:
    return _MISSING_REMOTE.search((error.stderr or "").lower()) is not None


class GitDocumentStore(DocumentStore):
    """
    Serves documents from local mirrors of the remote repositories.

    Each mirror lives at `<root>/<application>-<environment>` and is brought
    up to date before every read: cloned when absent, otherwise fetched and
    fast-forwarded. Mirrors are only ever changed through this class, so the
    remote history is expected to extend the local one. A diverged mirror
    makes the fast-forward fail and surfaces as a RetrievalError.

    At most one operation per repository may be in flight.
    """

    def __init__(
        self,
        root: str | Path,
        base_url: str,
        branch: str = PRIMARY_BRANCH,
        timeout: float = 30.0,
        ssh_key: Path | None = None,
        known_hosts: Path | None = None,
    ) -> None:
        self.root = Path(root).absolute()
        self.base_url = base_url
        self.branch = branch
        self.timeout = timeout
        self.env = _git_environment(ssh_key, known_hosts)
        self.root.mkdir(parents=True, exist_ok=True)

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("GitDocumentStore(...)")
        else:
            with p.group(4, "GitDocumentStore(", ")"):
                p.breakable()
                p.text(f"root={self.root},")
                p.breakable()
                p.text(f"branch={self.branch},")
                p.breakable()
                p.text(f"remote={self.base_url}")

    def _git(self, cwd: Path, args: list[str], timeout: float | None = None) -> str:
        return _run_git(cwd, args, timeout=timeout, env=self.env)

    def remote_url(self, name: str) -> str:
        return self.base_url + name

    def mirror_path(self, name: str) -> Path:
        return self.root / name

    def ensure_up_to_date(self, name: str, **context: Any) -> bool:
        """
        Clone or fast-forward the mirror of `name`.

        Returns False when the remote repository (or its primary branch) does
        not exist. `context` is attached to the RetrievalError raised on any
        other failure.
        """
        context = {**context, "operation": "sync"}
        path = self.mirror_path(name)
        try:
            if not (path / ".git").exists():
                logger.debug("Cloning %s into %s", name, path)
                self._git(
                    self.root,
                    [
                        "clone",
                        "--branch",
                        self.branch,
                        "--origin",
                        "origin",
                        self.remote_url(name),
                        path.name,
                    ],
                    timeout=self.timeout,
                )
            else:
                self._git(path, ["fetch", "origin"], timeout=self.timeout)
                self._git(path, ["merge", "--ff-only", f"origin/{self.branch}"])
        except subprocess.CalledProcessError as e:
            if _is_missing_remote(e):
                logger.debug("Remote repository %s not found", name)
                return False
            logger.error(
                "Failed to synchronise %s: %s", name, (e.stderr or "").strip(), extra=context
            )
            raise RetrievalError(f"Failed to synchronise repository {name}", **context) from e
        except subprocess.TimeoutExpired as e:
            logger.error(
                "Timed out synchronising %s after %ss", name, self.timeout, extra=context
            )
            raise RetrievalError(f"Timed out synchronising repository {name}", **context) from e
        return True

    def get_document(
        self, application: str, environment: str, commit: str, category: str
    ) -> Document | None:
        # validates the identifier, git resolves it with its own grammar
        parse_commit_ref(commit)
        name = repository_name(application, environment)
        if not self.ensure_up_to_date(name, application=application, environment=environment):
            return None

        path = self.mirror_path(name)
        try:
            sha = self._git(
                path, ["rev-parse", "--verify", "--quiet", f"{commit.upper()}^{{commit}}"]
            )
        except subprocess.CalledProcessError:
            logger.debug("Commit %s not found in %s", commit, name)
            return None

        try:
            text = self._git(path, ["show", f"{sha}:{document_path(category)}"])
        except subprocess.CalledProcessError:
            logger.debug("No %s document at %s in %s", category, sha, name)
            return None

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(
                "Invalid JSON in %s at %s",
                document_path(category),
                sha,
                extra={"application": application, "environment": environment},
            )
            raise RetrievalError(
                f"Document {category} at {sha} is not valid JSON",
                application=application,
                environment=environment,
                operation="get-document",
            ) from e
        return Document(category=category, data=data, hash=sha)

    def list_commits(self, application: str, environment: str) -> list[CommitRecord]:
        name = repository_name(application, environment)
        if not self.ensure_up_to_date(name, application=application, environment=environment):
            return []

        try:
            out = self._git(
                self.mirror_path(name),
                [
                    "log",
                    "-z",
                    f"--max-count={MAX_COMMITS}",
                    f"--format={_LOG_FORMAT}",
                    self.branch,
                ],
            )
        except subprocess.CalledProcessError as e:
            logger.error(
                "Failed to retrieve commits: %s",
                (e.stderr or "").strip(),
                extra={"application": application, "environment": environment},
            )
            raise RetrievalError(
                "Failed to retrieve commits",
                application=application,
                environment=environment,
                operation="list-commits",
            ) from e

        commits = []
        # -z separates records with NUL, subjects may hold any other line break
        for record in filter(None, out.split("\0")):
            sha, committer, email, timestamp, message = record.split(_FIELD, 4)
            commits.append(
                CommitRecord(
                    hash=sha,
                    committer=committer,
                    email=email,
                    date=format_commit_date(int(timestamp)),
                    message=message,
                )
            )
        return commits

    def bootstrap_repository(
        self, application: str, environment: str, documents: DocumentSet
    ) -> CreatedRepository:
        name = repository_name(application, environment)
        path = self.mirror_path(name)
        url = self.remote_url(name)
        context = {
            "application": application,
            "environment": environment,
            "operation": "bootstrap",
        }

        if path.exists():
            raise MutationError(
                f"Mirror for repository {name} already exists", step="init", **context
            )

        created: dict[str, str] = {}
        step = "create-repository"
        try:
            bare = _local_path(url)
            if bare is not None and not bare.exists():
                bare.parent.mkdir(parents=True, exist_ok=True)
                self._git(
                    self.root,
                    ["init", "--bare", f"--initial-branch={self.branch}", str(bare)],
                )
                created["repository"] = url

            step = "init"
            self._git(self.root, ["init", f"--initial-branch={self.branch}", name])
            self._git(path, ["remote", "add", "origin", url])

            step = "commit"
            for category, text in documents.items():
                (path / document_path(category)).write_text(text, encoding="utf-8")
            self._git(path, ["add", "--all"])
            self._git(
                path,
                [
                    "-c",
                    f"user.name={BOT_NAME}",
                    "-c",
                    f"user.email={BOT_EMAIL}",
                    "commit",
                    "-m",
                    INITIAL_COMMIT_MESSAGE,
                ],
            )
            created["commit"] = self._git(path, ["rev-parse", "HEAD"])

            step = "push"
            self._git(path, ["push", "origin", self.branch], timeout=self.timeout)
        except (subprocess.SubprocessError, OSError) as e:
            stderr = getattr(e, "stderr", None) or ""
            logger.error(
                "Failed to bootstrap repository %s at step %s, created %s: %s",
                name,
                step,
                created,
                stderr.strip() if isinstance(stderr, str) else stderr,
                extra=context,
            )
            # an unpublished mirror would diverge from the remote
            shutil.rmtree(path, ignore_errors=True)
            raise MutationError(
                f"Failed to bootstrap repository {name}",
                step=step,
                created=created,
                **context,
            ) from e

        logger.info("Bootstrapped repository %s at %s", name, created["commit"])
        return CreatedRepository(name=name, path=url)

    def list_repositories(self) -> list[RepositoryEntry]:
        try:
            mirrors = sorted(p.name for p in self.root.iterdir() if (p / ".git").is_dir())
        except OSError as e:
            logger.error("Failed to list mirrors under %s: %s", self.root, e)
            raise RetrievalError(
                "Failed to list repositories", operation="list-repositories"
            ) from e
        return [RepositoryEntry.from_name(name, self.remote_url(name)) for name in mirrors]

    def healthy(self) -> bool:
        try:
            if not self.root.is_dir():
                return False
            self._git(self.root, ["--version"], timeout=self.timeout)
            return True
        except (subprocess.SubprocessError, OSError):
            return False


def create_git_document_store(
    root: str | Path, base_url: str, branch: str = PRIMARY_BRANCH, **kwargs: Any
) -> GitDocumentStore:
    return GitDocumentStore(root, base_url=base_url, branch=branch, **kwargs)
