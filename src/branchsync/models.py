"""Data types shared by the resolver, stash catalog, orchestrator and service."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence

from .errors import UnknownModeError


LogLevel = Literal["info", "warn", "error"]


class SyncMode(str, Enum):
    """What kind of change is propagated to the target branches."""

    BRANCH = "branch"
    COMMIT = "commit"
    STASH = "stash"
    PATCH = "patch"

    @classmethod
    def parse(cls, value: "SyncMode | str") -> "SyncMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownModeError(f"Unknown sync mode: {value}") from None


class RunState(str, Enum):
    """Lifecycle of the orchestrator bound to one repository."""

    IDLE = "idle"
    VALIDATING = "validating"
    RUNNING = "running"
    CANCELLING = "cancelling"


@dataclass(frozen=True)
class SyncOptions:
    """Input of one sync run. Exactly the fields required by ``mode`` must be set."""

    mode: SyncMode
    target_branches: tuple[str, ...]
    source_branch: Optional[str] = None
    commit_hash: Optional[str] = None
    stash_ref: Optional[str] = None
    stash_message: Optional[str] = None
    patch_file: Optional[str] = None
    patch_commit_message: Optional[str] = None

    @classmethod
    def create(
        cls,
        mode: "SyncMode | str",
        target_branches: Sequence[str],
        **kwargs: Any,
    ) -> "SyncOptions":
        return cls(mode=SyncMode.parse(mode), target_branches=tuple(target_branches or ()), **kwargs)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SyncOptions":
        """Build options from a caller payload (snake_case or camelCase keys)."""

        def pick(*keys: str) -> Any:
            for key in keys:
                if payload.get(key) is not None:
                    return payload[key]
            return None

        return cls.create(
            pick("mode") or SyncMode.BRANCH,
            pick("target_branches", "targetBranches") or (),
            source_branch=pick("source_branch", "sourceBranch"),
            commit_hash=pick("commit_hash", "commitHash"),
            stash_ref=pick("stash_ref", "stashRef"),
            stash_message=pick("stash_message", "stashMessage"),
            patch_file=pick("patch_file", "patchFile"),
            patch_commit_message=pick("patch_commit_message", "patchCommitMessage"),
        )


@dataclass(frozen=True)
class SyncResult:
    """Outcome for one target branch."""

    branch: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RunOutcome:
    results: tuple[SyncResult, ...] = ()
    cancelled: bool = False

    @property
    def failed(self) -> List[SyncResult]:
        return [r for r in self.results if not r.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "cancelled": self.cancelled,
        }


@dataclass(frozen=True)
class StashEntry:
    index: int
    hash: str
    message: str
    raw_message: str
    reference: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LogEvent:
    """One entry of the ordered progress stream handed to the caller's sink."""

    message: str
    level: LogLevel = "info"
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RemoteBranchListing:
    branches: List[str]
    current: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"branches": list(self.branches), "current": self.current}


@dataclass(frozen=True)
class BranchExistence:
    exists: List[str]
    not_exists: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"exists": list(self.exists), "not_exists": list(self.not_exists)}


@dataclass(frozen=True)
class RepositorySummary:
    path: str
    current_branch: Optional[str]
    is_clean: bool
    ahead: int
    behind: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


LogSink = Callable[[LogEvent], None]
StatusSink = Callable[[Dict[str, Any]], None]
