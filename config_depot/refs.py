import re
from dataclasses import dataclass
from typing import Callable, Sequence

from config_depot.base import CommitRecord
from config_depot.errors import InvalidCommitRef

_SHA_RE = re.compile(r"[0-9a-fA-F]{40}")
_HEAD_RE = re.compile(r"(?:HEAD|head)(?:~(?P<generation>[0-9]*))?")


@dataclass(frozen=True)
class ExactHash:
    sha: str


@dataclass(frozen=True)
class HeadRelative:
    generation: int = 0


CommitRef = ExactHash | HeadRelative

HEAD = HeadRelative(0)


def is_sha(identifier: str) -> bool:
    return _SHA_RE.fullmatch(identifier) is not None


def parse_commit_ref(identifier: str) -> CommitRef:
    """
    Parse a commit identifier.

    `HEAD` is the newest commit, `HEAD~` its parent and `HEAD~N` the N-th
    ancestor along the primary branch history.
    """
    if is_sha(identifier):
        return ExactHash(identifier)

    match = _HEAD_RE.fullmatch(identifier)
    if match is None:
        raise InvalidCommitRef(identifier)

    generation = match.group("generation")
    if generation is None:
        return HEAD
    if generation == "":
        return HeadRelative(1)
    try:
        return HeadRelative(int(generation))
    except ValueError:
        # past the interpreter's integer string conversion limit
        raise InvalidCommitRef(identifier) from None


def resolve_commit_ref(
    ref: CommitRef, history: Callable[[], Sequence[CommitRecord]]
) -> str | None:
    """
    Pin `ref` to a concrete hash. `history` is only called for HEAD-relative
    refs and must return commits newest first.
    """
    if isinstance(ref, ExactHash):
        return ref.sha

    commits = history()
    if ref.generation >= len(commits):
        return None
    return commits[ref.generation].hash
