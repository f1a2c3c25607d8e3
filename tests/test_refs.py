import sys
from unittest.mock import Mock

import pytest

from config_depot.base import CommitRecord
from config_depot.errors import InvalidCommitRef
from config_depot.refs import (
    HEAD,
    ExactHash,
    HeadRelative,
    is_sha,
    parse_commit_ref,
    resolve_commit_ref,
)


def _history(count: int) -> list[CommitRecord]:
    return [
        CommitRecord(
            hash=f"{i:040x}",
            committer="Test",
            email="test@test",
            date="2014-05-01T10:00:00Z",
            message=f"commit {i}",
        )
        for i in range(count)
    ]


@pytest.mark.parametrize(
    "identifier, expected",
    [
        ("HEAD", HeadRelative(0)),
        ("head", HeadRelative(0)),
        ("HEAD~", HeadRelative(1)),
        ("head~", HeadRelative(1)),
        ("HEAD~3", HeadRelative(3)),
        ("HEAD~12", HeadRelative(12)),
        ("HEAD~0", HeadRelative(0)),
    ],
)
def test_parse_head_relative(identifier: str, expected: HeadRelative):
    assert parse_commit_ref(identifier) == expected


def test_head_is_generation_zero():
    assert HEAD == HeadRelative(0)


@pytest.mark.parametrize(
    "identifier",
    ["a" * 40, "0123456789abcdef0123456789abcdef01234567", "ABCDEF" + "0" * 34],
)
def test_parse_exact_hash(identifier: str):
    assert parse_commit_ref(identifier) == ExactHash(identifier)
    assert is_sha(identifier)


@pytest.mark.parametrize(
    "identifier",
    ["HEAD~xyz", "HEAD^", "HEAD~-1", "Head", "master", "a" * 39, "a" * 41, "g" * 40, ""],
)
def test_parse_rejects_malformed(identifier: str):
    with pytest.raises(InvalidCommitRef):
        parse_commit_ref(identifier)


@pytest.mark.skipif(
    not hasattr(sys, "get_int_max_str_digits"), reason="no integer string conversion limit"
)
def test_parse_rejects_oversized_generation():
    identifier = "HEAD~" + "9" * 5000

    with pytest.raises(InvalidCommitRef) as excinfo:
        parse_commit_ref(identifier)
    assert excinfo.value.identifier == identifier


def test_invalid_commit_ref_is_value_error():
    with pytest.raises(ValueError, match="HEAD~xyz"):
        parse_commit_ref("HEAD~xyz")


def test_exact_hash_needs_no_history():
    history = Mock()
    sha = "b" * 40

    assert resolve_commit_ref(ExactHash(sha), history) == sha
    history.assert_not_called()


@pytest.mark.parametrize("generation", [0, 1, 3, 4])
def test_head_relative_selects_generation(generation: int):
    commits = _history(5)
    assert resolve_commit_ref(HeadRelative(generation), lambda: commits) == commits[generation].hash


def test_head_relative_out_of_range():
    assert resolve_commit_ref(HeadRelative(5), lambda: _history(5)) is None
    assert resolve_commit_ref(HEAD, lambda: []) is None
