"""Remote branch resolution.

Remote-tracking refs are listed fresh on every call: other people push to the
remotes between fetches, and a stale answer would route a sync to the wrong
branch.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import RefParseError
from .gateway import RepositoryGateway
from .models import BranchExistence, RemoteBranchListing

REMOTE_PREFIX = "remotes/"
ALIAS_MARKER = "->"

_PREFIX_RE = re.compile(r"^remotes/[^/]+/")
_FULL_REF_RE = re.compile(r"^remotes/([^/]+)/(.+)$")


@dataclass(frozen=True)
class RemoteFullRef:
    """A remote-tracking ref split into its parts, e.g. ``remotes/origin/main``."""

    ref: str
    remote: str
    branch: str

    @property
    def short(self) -> str:
        """``origin/main`` form accepted by checkout, reset and merge."""
        return f"{self.remote}/{self.branch}"


def normalize_remote_ref(name: str) -> Optional[str]:
    """Strip ``remotes/<remote>/`` from a listing entry.

    Returns None for entries that are not remote-tracking branches: local
    branches, the bare ``HEAD`` pointer and symbolic aliases such as
    ``remotes/origin/HEAD -> origin/main``.
    """
    if not name.startswith(REMOTE_PREFIX):
        return None
    normalized = _PREFIX_RE.sub("", name, count=1).strip()
    if not normalized or normalized == "HEAD" or ALIAS_MARKER in normalized:
        return None
    return normalized


def parse_remote_ref(ref: str) -> RemoteFullRef:
    """Split ``remotes/<remote>/<branch>``.

    Raises:
        RefParseError: if ``ref`` does not have that shape
    """
    match = _FULL_REF_RE.match(ref)
    if not match:
        raise RefParseError(f"Unable to parse remote branch reference: {ref}")
    return RemoteFullRef(ref=ref, remote=match.group(1), branch=match.group(2))


def normalize_remote_refs(names: Iterable[str]) -> List[str]:
    """Normalized remote branch names, deduplicated and sorted."""
    branches = {normalized for normalized in map(normalize_remote_ref, names) if normalized}
    return sorted(branches)


class RemoteBranchResolver:
    """Answers questions about remote branches of one bound repository."""

    def __init__(self, gateway: RepositoryGateway):
        self.gateway = gateway

    def _refresh(self) -> List[str]:
        self.gateway.fetch_all()
        return self.gateway.list_all_branches()

    def list_remote_branches(self) -> RemoteBranchListing:
        """Fetch every remote and list the remote branch names plus the current branch."""
        names = self._refresh()
        return RemoteBranchListing(
            branches=normalize_remote_refs(names),
            current=self.gateway.current_branch(),
        )

    def check_existence(self, names: Sequence[str]) -> BranchExistence:
        """Split candidate names into those present on a remote and those not.

        An exact match wins; otherwise a case-insensitive match is reported
        with the remote's own casing. When remotes disagree on casing the
        first one listed wins. Blank names are dropped.
        """
        if not names:
            return BranchExistence(exists=[], not_exists=[])

        known: set[str] = set()
        canonical: Dict[str, str] = {}
        for entry in self._refresh():
            normalized = normalize_remote_ref(entry)
            if not normalized:
                continue
            known.add(normalized)
            canonical.setdefault(normalized.lower(), normalized)

        exists: List[str] = []
        not_exists: List[str] = []
        for name in names:
            trimmed = (name or "").strip()
            if not trimmed:
                continue
            if trimmed in known:
                exists.append(trimmed)
                continue
            real_name = canonical.get(trimmed.lower())
            if real_name:
                exists.append(real_name)
            else:
                not_exists.append(trimmed)

        return BranchExistence(exists=exists, not_exists=not_exists)

    def branch_exists(self, name: str) -> bool:
        if not name or not name.strip():
            return False
        return bool(self.check_existence([name.strip()]).exists)

    def resolve_full_ref(self, name: str) -> Optional[str]:
        """First ``remotes/<remote>/<name>`` ref (in listing order) matching ``name`` exactly."""
        if not name or not name.strip():
            return None
        trimmed = name.strip()
        for entry in self._refresh():
            if normalize_remote_ref(entry) == trimmed:
                return entry
        return None
