from .base import (
    CATEGORIES,
    CommitRecord,
    CreatedRepository,
    Document,
    DocumentStore,
    RepositoryEntry,
    repository_name,
)
from .errors import ConfigStoreError, InvalidCommitRef, MutationError, RetrievalError
from .refs import ExactHash, HeadRelative, parse_commit_ref, resolve_commit_ref
from .directory import RepositoryDirectory
from .bootstrap import BootstrapPipeline, YamlEnvironmentRegistry
from .impl.memory import create_memory_document_store
from .impl.git import create_git_document_store
from .impl.github import create_github_document_store
from .service import ConfigService, create_service

__all__ = [
    "CATEGORIES",
    "CommitRecord",
    "CreatedRepository",
    "Document",
    "DocumentStore",
    "RepositoryEntry",
    "repository_name",
    "ConfigStoreError",
    "InvalidCommitRef",
    "MutationError",
    "RetrievalError",
    "ExactHash",
    "HeadRelative",
    "parse_commit_ref",
    "resolve_commit_ref",
    "RepositoryDirectory",
    "BootstrapPipeline",
    "YamlEnvironmentRegistry",
    "create_memory_document_store",
    "create_git_document_store",
    "create_github_document_store",
    "ConfigService",
    "create_service",
]
