import logging
from typing import Any

from config_depot.base import DocumentStore
from config_depot.bootstrap import (
    BootstrapPipeline,
    EnvironmentRegistry,
    TemplateRenderer,
    YamlEnvironmentRegistry,
)
from config_depot.directory import RepositoryDirectory
from config_depot.impl.git import create_git_document_store
from config_depot.impl.github import create_github_document_store
from config_depot.impl.memory import create_memory_document_store
from config_depot.settings import StoreSettings, get_settings

logger = logging.getLogger(__name__)


class ConfigService:
    """
    Operations offered to a request layer.

    Reads go straight to the store. Repository listings come from the
    directory cache, so a repository created moments ago may not be listed
    yet.
    """

    def __init__(
        self,
        store: DocumentStore,
        directory: RepositoryDirectory,
        pipeline: BootstrapPipeline,
    ) -> None:
        self.store = store
        self.directory = directory
        self.pipeline = pipeline

    def __enter__(self) -> "ConfigService":
        self.directory.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.directory.stop()

    def get_document(
        self, environment: str, application: str, commit: str, category: str
    ) -> dict[str, Any] | None:
        document = self.store.get_document(application, environment, commit, category)
        if document is None:
            logger.debug(
                "No %s for %s-%s at %s", category, application, environment, commit
            )
            return None
        return document.to_dict()

    def list_commits(self, environment: str, application: str) -> dict[str, list[dict[str, str]]]:
        commits = self.store.list_commits(application, environment)
        return {"commits": [c.to_dict() for c in commits]}

    def list_repositories(self, environment: str | None = None) -> dict[str, Any]:
        return self.directory.grouped(environment)

    def create_application(self, application: str) -> dict[str, list[dict[str, str]]]:
        created = self.pipeline.create_application(application)
        return {"repositories": [c.to_dict() for c in created]}

    def create_application_environment(
        self, application: str, environment: str
    ) -> dict[str, str]:
        return self.pipeline.create_application_environment(application, environment).to_dict()

    def is_backend_healthy(self) -> bool:
        return self.directory.healthy

    def are_repositories_cached(self) -> bool:
        return self.directory.is_cached


def create_store(settings: StoreSettings) -> DocumentStore:
    if settings.backend == "github":
        return create_github_document_store(
            settings.github_organisation,
            token=settings.github_token,
            base_url=settings.github_base_url,
            branch=settings.primary_branch,
            timeout=settings.network_timeout,
        )
    if settings.backend == "git":
        return create_git_document_store(
            settings.git_root,
            base_url=settings.git_base_url,
            branch=settings.primary_branch,
            timeout=settings.network_timeout,
            ssh_key=settings.ssh_key,
            known_hosts=settings.known_hosts,
        )
    return create_memory_document_store()


def create_service(
    settings: StoreSettings | None = None,
    registry: EnvironmentRegistry | None = None,
    renderer: TemplateRenderer | None = None,
) -> ConfigService:
    """Wire a service from settings. The directory is not started."""
    settings = settings or get_settings()
    logger.debug("Creating service with %r", settings)

    store = create_store(settings)
    directory = RepositoryDirectory(
        store,
        health_interval=settings.health_interval,
        listing_interval=settings.listing_interval,
    )
    if registry is None:
        if settings.environments_file is not None:
            registry = YamlEnvironmentRegistry.from_file(settings.environments_file)
        else:
            registry = YamlEnvironmentRegistry({})
    pipeline = BootstrapPipeline(store, registry, renderer=renderer, directory=directory)
    return ConfigService(store, directory, pipeline)
