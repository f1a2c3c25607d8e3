import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Mapping

logger = logging.getLogger(__name__)

CATEGORIES = ("application-properties", "deployment-params", "launch-data")

PRIMARY_BRANCH = "master"
MAX_COMMITS = 20
SEPARATOR = "-"

BOT_NAME = "Config Depot Bot"
BOT_EMAIL = "config-depot-bot@users.noreply.github.com"
INITIAL_COMMIT_MESSAGE = "Initial commit"

DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# category -> canonical pretty-printed JSON text
DocumentSet = Mapping[str, str]


def repository_name(application: str, environment: str) -> str:
    return f"{application}{SEPARATOR}{environment}"


def split_repository_name(name: str) -> tuple[str, str | None]:
    """
    Split a repository name into (application, environment).

    Only the first two segments are used, so names whose application or
    environment contain the separator cannot be split reliably. Those are
    reported, not guessed at.
    """
    parts = name.split(SEPARATOR)
    if len(parts) > 2:
        logger.warning(
            "Repository name %s is ambiguous, using application=%s environment=%s",
            name,
            parts[0],
            parts[1],
        )
    return parts[0], parts[1] if len(parts) > 1 else None


def document_path(category: str) -> str:
    return f"{category}.json"


def format_commit_date(value: datetime | int | float) -> str:
    """ISO-8601 in UTC without sub-second precision."""
    if isinstance(value, (int, float)):
        value = datetime.fromtimestamp(value, tz=timezone.utc)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(DATE_FORMAT)


def parse_commit_date(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class CommitRecord:
    hash: str
    committer: str
    email: str
    date: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class Document:
    category: str
    data: Any
    hash: str

    def to_dict(self) -> dict[str, Any]:
        return {"hash": self.hash, "data": self.data}


@dataclass(frozen=True)
class RepositoryEntry:
    name: str
    path: str
    application: str
    environment: str | None

    @classmethod
    def from_name(cls, name: str, path: str) -> "RepositoryEntry":
        application, environment = split_repository_name(name)
        return cls(
            name=name, path=path, application=application, environment=environment
        )


@dataclass(frozen=True)
class CreatedRepository:
    name: str
    path: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class DocumentStore:
    """
    Versioned store of per-category JSON documents, one repository per
    (application, environment) pair.

    Implementations are chosen at configuration time and share no state.
    Missing repositories, refs and files are reported as None (or an empty
    history), never as errors.
    """

    def get_document(
        self, application: str, environment: str, commit: str, category: str
    ) -> Document | None:
        """
        Resolve `commit` (a 40 hex hash, HEAD, HEAD~ or HEAD~N) and read
        `<category>.json` at that revision.
        """
        raise NotImplementedError()

    def list_commits(self, application: str, environment: str) -> list[CommitRecord]:
        """Return up to MAX_COMMITS commits of the primary branch, newest first."""
        raise NotImplementedError()

    def bootstrap_repository(
        self, application: str, environment: str, documents: DocumentSet
    ) -> CreatedRepository:
        """
        Create the repository and publish a single parentless commit holding
        one file per category.

        Not idempotent. Callers must not bootstrap the same pair twice.
        """
        raise NotImplementedError()

    def list_repositories(self) -> list[RepositoryEntry]:
        """List every repository known to the backend."""
        raise NotImplementedError()

    def healthy(self) -> bool:
        """Cheap reachability probe. Never raises."""
        raise NotImplementedError()
