"""Caller-facing operations for one repository binding.

A front end (the CLI, or any UI that embeds branchsync) talks to
:class:`BranchSyncService`. Methods raise :class:`~branchsync.errors.BranchSyncError`
subclasses; :func:`respond` wraps a call into the ``{"ok": ..., ...}``
envelope for callers that only exchange plain data.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .config_loader import get_config
from .config_schema import BranchSyncConfig
from .errors import RepositoryNotBoundError, SyncInProgressError
from .gateway import RepositoryGateway
from .models import (
    BranchExistence,
    LogSink,
    RemoteBranchListing,
    RepositorySummary,
    RunOutcome,
    StashEntry,
    StatusSink,
    SyncOptions,
)
from .observability import log_action, log_error, log_info
from .orchestrator import SyncOrchestrator
from .resolver import RemoteBranchResolver
from .stash_catalog import StashCatalog


class BranchSyncService:
    """Holds the bound repository and its single orchestrator."""

    def __init__(self, config: Optional[BranchSyncConfig] = None):
        self._explicit_config = config
        self._config = config
        self.gateway: Optional[RepositoryGateway] = None
        self.resolver: Optional[RemoteBranchResolver] = None
        self.stashes: Optional[StashCatalog] = None
        self.orchestrator: Optional[SyncOrchestrator] = None

    @property
    def config(self) -> BranchSyncConfig:
        if self._config is None:
            self._config = self._config_for(None)
        return self._config

    def _config_for(self, path: Union[str, Path, None]) -> BranchSyncConfig:
        if self._explicit_config is not None:
            return self._explicit_config
        text = str(path or "").strip()
        return get_config(Path(text).expanduser() if text else None)

    @property
    def is_syncing(self) -> bool:
        return self.orchestrator is not None and self.orchestrator.is_syncing

    def _require_bound(self) -> RepositoryGateway:
        if self.gateway is None:
            raise RepositoryNotBoundError()
        return self.gateway

    def bind(self, path: Union[str, Path]) -> RepositorySummary:
        """Bind a repository root. Refused while a sync run is active."""
        if self.is_syncing:
            raise SyncInProgressError("Cannot switch repository while a sync run is in progress")
        config = self._config_for(path)
        gateway = RepositoryGateway.open(path, git_config=config.git)
        self._config = config
        self.gateway = gateway
        self.resolver = RemoteBranchResolver(gateway)
        self.stashes = StashCatalog(gateway)
        self.orchestrator = SyncOrchestrator(gateway, self.resolver, sync_config=config.sync)
        log_action("repo.bind", path=str(gateway.path))
        return gateway.summary()

    def repository_summary(self) -> RepositorySummary:
        return self._require_bound().summary()

    def list_remote_branches(self) -> RemoteBranchListing:
        self._require_bound()
        return self.resolver.list_remote_branches()

    def check_remote_branches(self, names: Sequence[str]) -> BranchExistence:
        self._require_bound()
        return self.resolver.check_existence(list(names or ()))

    def remote_branch_exists(self, name: str) -> bool:
        self._require_bound()
        return self.resolver.branch_exists(name)

    def list_stashes(self) -> List[StashEntry]:
        self._require_bound()
        return self.stashes.list_stashes()

    def start_sync(
        self,
        options: Union[SyncOptions, Dict[str, Any]],
        on_log: Optional[LogSink] = None,
        on_status: Optional[StatusSink] = None,
    ) -> RunOutcome:
        """Run a sync to completion, streaming progress to ``on_log``."""
        self._require_bound()
        if not isinstance(options, SyncOptions):
            options = SyncOptions.from_payload(options)
        return self.orchestrator.sync_branches(options, on_log=on_log, on_status=on_status)

    def cancel_sync(self) -> bool:
        """Request cancellation; False when no run is active."""
        if self.orchestrator is None:
            return False
        accepted = self.orchestrator.request_cancel()
        if accepted:
            log_info("Sync cancellation requested", repo=str(self.orchestrator.gateway.path))
        return accepted


def to_payload(value: Any) -> Any:
    """Plain-data form of service return values."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [to_payload(item) for item in value]
    return value


def respond(operation: Callable[..., Any], *args: Any, **kwargs: Any) -> Dict[str, Any]:
    """Call ``operation`` and wrap the result or the error message.

    Errors never cross this boundary as exceptions: the caller gets
    ``{"ok": False, "error": "<message>"}``.
    """
    try:
        result = operation(*args, **kwargs)
    except Exception as e:
        message = str(e) or e.__class__.__name__
        log_error(f"{getattr(operation, '__name__', 'operation')} failed: {message}")
        return {"ok": False, "error": message}
    return {"ok": True, "data": to_payload(result)}
