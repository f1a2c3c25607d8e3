import subprocess
from pathlib import Path

import pytest

from config_depot.base import document_path

GIT_IDENTITY = ["-c", "user.name=Test", "-c", "user.email=test@test"]


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


def push_commits(
    remote: str, work_dir: Path, commits: list[tuple[dict[str, str], str]]
) -> list[str]:
    """Commit to `remote` from a separate clone, as another writer would."""
    if not work_dir.exists():
        git(work_dir.parent, "clone", remote, work_dir.name)
    else:
        git(work_dir, "pull", "--ff-only", "origin", "master")

    hashes = []
    for documents, message in commits:
        for category, text in documents.items():
            (work_dir / document_path(category)).write_text(text)
        git(work_dir, "add", "--all")
        git(work_dir, *GIT_IDENTITY, "commit", "--allow-empty", "-m", message)
        hashes.append(git(work_dir, "rev-parse", "HEAD"))
    git(work_dir, "push", "origin", "master")
    return hashes


@pytest.fixture
def remote_base(tmp_path: Path) -> str:
    """Base locator under which bare remotes are created, with trailing separator."""
    remotes = tmp_path / "remotes"
    remotes.mkdir()
    return f"{remotes}/"


@pytest.fixture
def documents() -> dict[str, str]:
    return {
        "application-properties": '{\n  "name": "foo",\n  "port": 8080\n}',
        "deployment-params": '{\n  "max": 2,\n  "min": 1\n}',
        "launch-data": '[\n  "echo foo"\n]',
    }


@pytest.fixture
def environments_file(tmp_path: Path) -> Path:
    path = tmp_path / "environments.yaml"
    path.write_text(
        """
environments:
  poke:
    default: true
    metadata:
      default-application-properties:
        service.name: "{{app-name}}"
        logging:
          level: INFO
          target: "{{env-name}}-logs"
      default-deployment-params:
        min: 1
        max: 2
        health:
          timeout: 30
          grace: 10
      default-launch-data:
        - "echo {{app-name}}"
  prod:
    default: true
    metadata:
      default-deployment-params:
        min: 3
        max: 6
  sandbox:
    default: false
"""
    )
    return path
