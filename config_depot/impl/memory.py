import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from config_depot.base import (
    BOT_EMAIL,
    BOT_NAME,
    INITIAL_COMMIT_MESSAGE,
    MAX_COMMITS,
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
from config_depot.errors import MutationError
from config_depot.refs import parse_commit_ref, resolve_commit_ref


@dataclass(frozen=True)
class MemoryCommit:
    record: CommitRecord
    files: dict[str, str]


# repository name -> commits, newest first
MemoryRepoData = dict[str, list[MemoryCommit]]


class MemoryDocumentStore(DocumentStore):
    """Keeps every repository in process memory. Used for tests and demos."""

    def __init__(
        self, repo_data: MemoryRepoData | None = None, base_url: str = "memory://"
    ) -> None:
        self.repo = repo_data if repo_data is not None else {}
        self.base_url = base_url
        self.available = True
        self._lock = threading.Lock()

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("MemoryDocumentStore(...)")
        else:
            with p.group(4, "MemoryDocumentStore(", ")"):
                p.breakable()
                p.text(f"repositories={sorted(self.repo)},")
                p.breakable()

    def _commit(
        self, name: str, files: dict[str, str], message: str, committer: tuple[str, str]
    ) -> CommitRecord:
        history = self.repo.setdefault(name, [])
        parent = history[0].record.hash if history else ""
        payload = json.dumps([parent, files, message], sort_keys=True)
        record = CommitRecord(
            hash=hashlib.sha1(payload.encode("utf-8")).hexdigest(),
            committer=committer[0],
            email=committer[1],
            date=format_commit_date(datetime.now(timezone.utc)),
            message=message,
        )
        history.insert(0, MemoryCommit(record, files))
        return record

    def commit_documents(
        self,
        application: str,
        environment: str,
        documents: DocumentSet,
        message: str,
        committer: tuple[str, str] = (BOT_NAME, BOT_EMAIL),
    ) -> CommitRecord:
        """Add a commit on top of an existing repository."""
        name = repository_name(application, environment)
        with self._lock:
            if name not in self.repo:
                raise KeyError(name)
            files = dict(self.repo[name][0].files) if self.repo[name] else {}
            files.update({document_path(c): text for c, text in documents.items()})
            return self._commit(name, files, message, committer)

    def get_document(
        self, application: str, environment: str, commit: str, category: str
    ) -> Document | None:
        ref = parse_commit_ref(commit)
        history = self.repo.get(repository_name(application, environment))
        if not history:
            return None

        sha = resolve_commit_ref(ref, lambda: [c.record for c in history[:MAX_COMMITS]])
        target = next((c for c in history if c.record.hash == sha.lower()), None) if sha else None
        if target is None:
            return None

        text = target.files.get(document_path(category))
        if text is None:
            return None
        return Document(category=category, data=json.loads(text), hash=target.record.hash)

    def list_commits(self, application: str, environment: str) -> list[CommitRecord]:
        history = self.repo.get(repository_name(application, environment), [])
        return [c.record for c in history[:MAX_COMMITS]]

    def bootstrap_repository(
        self, application: str, environment: str, documents: DocumentSet
    ) -> CreatedRepository:
        name = repository_name(application, environment)
        with self._lock:
            if name in self.repo:
                raise MutationError(
                    f"Repository {name} already exists",
                    step="create-repository",
                    application=application,
                    environment=environment,
                    operation="bootstrap",
                )
            files = {document_path(c): text for c, text in documents.items()}
            self._commit(name, files, INITIAL_COMMIT_MESSAGE, (BOT_NAME, BOT_EMAIL))
        return CreatedRepository(name=name, path=self.base_url + name)

    def list_repositories(self) -> list[RepositoryEntry]:
        return [
            RepositoryEntry.from_name(name, self.base_url + name)
            for name in sorted(self.repo)
        ]

    def healthy(self) -> bool:
        return self.available


def create_memory_document_store(
    repo: MemoryRepoData | None = None,
) -> MemoryDocumentStore:
    return MemoryDocumentStore(repo)
