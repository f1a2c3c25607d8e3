import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from config_depot.bootstrap import (
    BootstrapPipeline,
    Environment,
    MustacheRenderer,
    YamlEnvironmentRegistry,
    render_document,
)
from config_depot.canonical import canonical_text
from config_depot.directory import RepositoryDirectory
from config_depot.errors import MutationError
from config_depot.impl.memory import create_memory_document_store


@pytest.fixture
def registry(environments_file: Path) -> YamlEnvironmentRegistry:
    return YamlEnvironmentRegistry.from_file(environments_file)


def test_mustache_renderer():
    renderer = MustacheRenderer()

    text = renderer.render({"name": "{{app-name}}", "env": "{{ env-name }}", "x": "{{missing}}"}, {
        "app-name": "foo",
        "env-name": "poke",
    })

    assert json.loads(text) == {"name": "foo", "env": "poke", "x": ""}


def test_mustache_renderer_escapes_values():
    text = MustacheRenderer().render({"name": "{{app-name}}"}, {"app-name": 'a "quoted" \\ name'})

    assert json.loads(text) == {"name": 'a "quoted" \\ name'}


def test_mustache_renderer_does_not_html_escape():
    text = MustacheRenderer().render({"cmd": "{{app-name}}"}, {"app-name": "a && b <c>"})

    assert json.loads(text) == {"cmd": "a && b <c>"}


def test_render_document_is_canonical():
    text = render_document({"b": {"d": "{{app-name}}", "c": 1}, "a": []}, {"app-name": "foo"}, MustacheRenderer())

    assert text == '{\n  "a": [],\n  "b": {\n    "c": 1,\n    "d": "foo"\n  }\n}'
    assert canonical_text(text) == text


def test_registry_from_file(registry: YamlEnvironmentRegistry):
    assert [e.name for e in registry.default_environments()] == ["poke", "prod"]
    assert registry.environment("sandbox") == Environment(name="sandbox", default=False)
    assert registry.environment("missing") is None


def test_documents_for_environment(registry: YamlEnvironmentRegistry):
    pipeline = BootstrapPipeline(create_memory_document_store(), registry)

    documents = pipeline.documents_for("foo", "poke")

    assert sorted(documents) == ["application-properties", "deployment-params", "launch-data"]
    assert json.loads(documents["application-properties"]) == {
        "logging": {"level": "INFO", "target": "poke-logs"},
        "service.name": "foo",
    }
    assert json.loads(documents["launch-data"]) == ["echo foo"]
    for text in documents.values():
        assert canonical_text(text) == text


def test_documents_fall_back_to_empty_defaults(registry: YamlEnvironmentRegistry):
    pipeline = BootstrapPipeline(create_memory_document_store(), registry)

    documents = pipeline.documents_for("foo", "sandbox")

    assert documents == {
        "application-properties": "{}",
        "deployment-params": "{}",
        "launch-data": "[]",
    }


def test_create_application_environment(registry: YamlEnvironmentRegistry):
    store = create_memory_document_store()
    directory = MagicMock(spec=RepositoryDirectory)
    pipeline = BootstrapPipeline(store, registry, directory=directory)

    created = pipeline.create_application_environment("foo", "bar")

    assert created.name == "foo-bar"
    directory.refresh_async.assert_called_once_with()
    commits = store.list_commits("foo", "bar")
    assert len(commits) == 1
    for category in ("application-properties", "deployment-params", "launch-data"):
        document = store.get_document("foo", "bar", "HEAD", category)
        assert document is not None
        assert document.hash == commits[0].hash


def test_create_application_bootstraps_default_environments(registry: YamlEnvironmentRegistry):
    store = create_memory_document_store()
    directory = MagicMock(spec=RepositoryDirectory)
    pipeline = BootstrapPipeline(store, registry, directory=directory)

    created = pipeline.create_application("foo")

    assert [c.name for c in created] == ["foo-poke", "foo-prod"]
    directory.refresh_async.assert_called_once_with()
    prod = store.get_document("foo", "prod", "HEAD", "deployment-params")
    assert prod.data == {"max": 6, "min": 3}
    assert store.get_document("foo", "sandbox", "HEAD", "deployment-params") is None


def test_partial_failure_still_refreshes(registry: YamlEnvironmentRegistry, documents: dict[str, str]):
    store = create_memory_document_store()
    store.bootstrap_repository("foo", "prod", documents)
    directory = MagicMock(spec=RepositoryDirectory)
    pipeline = BootstrapPipeline(store, registry, directory=directory)

    with pytest.raises(MutationError):
        pipeline.create_application("foo")

    directory.refresh_async.assert_called_once_with()
    assert store.get_document("foo", "poke", "HEAD", "launch-data").data == ["echo foo"]
