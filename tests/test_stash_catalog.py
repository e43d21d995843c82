from __future__ import annotations

import pytest

from branchsync.gateway import RepositoryGateway
from branchsync.stash_catalog import StashCatalog, extract_stash_message


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("WIP on main: 1a2b3c4 Fix login", "1a2b3c4 Fix login"),
        ("On feature/x: half-done refactor", "half-done refactor"),
        ("On main:   ", "On main:"),
        ("custom message: with colon", "custom message: with colon"),
        ("  plain text  ", "plain text"),
        ("", ""),
    ],
)
def test_extract_stash_message(raw, expected):
    assert extract_stash_message(raw) == expected


def test_extract_stash_message_defaults_to_empty():
    assert extract_stash_message() == ""


def test_list_stashes_newest_first(repo_setup):
    work = repo_setup.work
    repo = repo_setup.repo
    (work / "README.md").write_text("first\n")
    repo.git.stash("push", "-m", "first change")
    (work / "README.md").write_text("second\n")
    repo.git.stash("push")

    entries = StashCatalog(RepositoryGateway.open(work)).list_stashes()

    assert [e.reference for e in entries] == ["stash@{0}", "stash@{1}"]
    assert [e.index for e in entries] == [0, 1]
    newest, oldest = entries
    assert newest.raw_message.startswith("WIP on main:")
    assert newest.message == newest.raw_message.split(":", 1)[1].strip()
    assert oldest.raw_message == "On main: first change"
    assert oldest.message == "first change"
    assert oldest.hash == repo.git.rev_parse("stash@{1}")


def test_list_stashes_empty(repo_setup):
    assert StashCatalog(RepositoryGateway.open(repo_setup.work)).list_stashes() == []
