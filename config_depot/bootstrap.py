import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol

import yaml

from config_depot.base import CATEGORIES, CreatedRepository, DocumentStore
from config_depot.canonical import canonicalize, pretty
from config_depot.directory import RepositoryDirectory

logger = logging.getLogger(__name__)

# category -> (environment metadata key, fallback template)
DEFAULT_TEMPLATES: dict[str, tuple[str, Any]] = {
    "application-properties": ("default-application-properties", {}),
    "deployment-params": ("default-deployment-params", {}),
    "launch-data": ("default-launch-data", []),
}

_PLACEHOLDER = re.compile(r"{{\s*([\w.-]+)\s*}}")


class TemplateRenderer(Protocol):
    def render(self, template: Any, values: Mapping[str, str]) -> str:
        """Substitute `values` into `template` and return JSON text."""
        ...


class MustacheRenderer:
    """
    Replaces `{{key}}` placeholders in the JSON text of a template. Unknown
    keys render as empty strings.

    Only plain variable tags are supported; sections, partials and triple
    mustaches are not. Unlike mustache, values are not HTML-escaped: they are
    JSON-escaped instead, so `&`, `<` and `"` reach the document unchanged.
    """

    def render(self, template: Any, values: Mapping[str, str]) -> str:
        def substitute(match: re.Match) -> str:
            value = values.get(match.group(1), "")
            # keep the surrounding JSON string valid
            return json.dumps(str(value))[1:-1]

        return _PLACEHOLDER.sub(substitute, json.dumps(template))


@dataclass(frozen=True)
class Environment:
    name: str
    default: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


class EnvironmentRegistry(Protocol):
    def environment(self, name: str) -> Environment | None: ...

    def default_environments(self) -> list[Environment]: ...


class YamlEnvironmentRegistry:
    """
    Environments read from a YAML document of the form::

        environments:
          poke:
            default: true
            metadata:
              default-application-properties: {...}
    """

    def __init__(self, environments: Mapping[str, Environment]) -> None:
        self.environments = dict(environments)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "YamlEnvironmentRegistry":
        environments = {}
        for name, spec in (data.get("environments") or {}).items():
            spec = spec or {}
            environments[name] = Environment(
                name=name,
                default=bool(spec.get("default", False)),
                metadata=dict(spec.get("metadata") or {}),
            )
        return cls(environments)

    @classmethod
    def from_file(cls, path: str | Path) -> "YamlEnvironmentRegistry":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_mapping(yaml.safe_load(f) or {})

    def environment(self, name: str) -> Environment | None:
        return self.environments.get(name)

    def default_environments(self) -> list[Environment]:
        return [env for _, env in sorted(self.environments.items()) if env.default]


def render_document(
    template: Any, values: Mapping[str, str], renderer: TemplateRenderer
) -> str:
    text = renderer.render(canonicalize(template), values)
    return pretty(json.loads(text))


class BootstrapPipeline:
    """
    Seeds repositories with rendered default documents.

    Environments are bootstrapped one after another. The directory, when
    given, gets one background refresh once the requested repositories exist.
    """

    def __init__(
        self,
        store: DocumentStore,
        registry: EnvironmentRegistry,
        renderer: TemplateRenderer | None = None,
        directory: RepositoryDirectory | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.renderer = renderer or MustacheRenderer()
        self.directory = directory

    def documents_for(self, application: str, environment: str) -> dict[str, str]:
        env = self.registry.environment(environment)
        if env is None:
            logger.warning("Unknown environment %s, using empty defaults", environment)
            metadata: dict[str, Any] = {}
        else:
            metadata = env.metadata

        values = {"app-name": application, "env-name": environment}
        documents = {}
        for category in CATEGORIES:
            key, fallback = DEFAULT_TEMPLATES[category]
            documents[category] = render_document(
                metadata.get(key, fallback), values, self.renderer
            )
        return documents

    def _bootstrap(self, application: str, environment: str) -> CreatedRepository:
        logger.info("Bootstrapping %s in %s", application, environment)
        return self.store.bootstrap_repository(
            application, environment, self.documents_for(application, environment)
        )

    def _refresh(self) -> None:
        if self.directory is not None:
            self.directory.refresh_async()

    def create_application_environment(
        self, application: str, environment: str
    ) -> CreatedRepository:
        created = self._bootstrap(application, environment)
        self._refresh()
        return created

    def create_application(self, application: str) -> list[CreatedRepository]:
        created: list[CreatedRepository] = []
        try:
            for env in self.registry.default_environments():
                created.append(self._bootstrap(application, env.name))
        finally:
            if created:
                self._refresh()
        return created
