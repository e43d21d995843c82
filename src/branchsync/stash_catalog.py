"""Stash listing with readable labels."""

from __future__ import annotations

from typing import List

from .gateway import RepositoryGateway
from .models import StashEntry

# Subjects git generates for `git stash` ("WIP on main: ...", "On main: ...")
STANDARD_PREFIXES = ("WIP on", "On", "No local changes to save")


def extract_stash_message(raw_message: str = "") -> str:
    """Drop git's auto-generated ``<prefix> <branch>:`` lead-in from a stash subject.

    Anything without a known prefix, or with nothing after the colon, comes
    back trimmed but otherwise unchanged.
    """
    trimmed = (raw_message or "").strip()
    if not trimmed:
        return ""

    if trimmed.startswith(STANDARD_PREFIXES) and ":" in trimmed:
        suffix = trimmed.split(":", 1)[1].strip()
        if suffix:
            return suffix
    return trimmed


class StashCatalog:
    def __init__(self, gateway: RepositoryGateway):
        self.gateway = gateway

    def list_stashes(self) -> List[StashEntry]:
        """Stash entries, newest first.

        ``index`` shifts whenever the stash changes; address entries by
        ``reference`` and re-list after any stash mutation.
        """
        entries: List[StashEntry] = []
        for index, sha, raw_message in self.gateway.stash_records():
            entries.append(
                StashEntry(
                    index=index,
                    hash=sha,
                    message=extract_stash_message(raw_message),
                    raw_message=raw_message,
                    reference=f"stash@{{{index}}}",
                )
            )
        return entries
