"""Sync orchestrator: propagate one change to many branches, one branch at a time.

For each target branch a run performs::

    fetch -> resolve remote ref -> checkout / track -> fast-forward or reset
          -> apply change (merge | cherry-pick | stash apply | patch) -> commit -> push

Branches are processed strictly in order because every step mutates the one
working tree. A failure is recorded against its branch, compensated where a
rollback exists, and the run moves on. Cancellation is cooperative: it is
observed only at checkpoints between git operations and stops the run.

Run state (one orchestrator per bound repository)::

    IDLE -> VALIDATING -> RUNNING [-> CANCELLING] -> IDLE

Only one run may be active; a second start is rejected, never queued.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .config_schema import SyncConfig
from .errors import (
    CheckoutError,
    MergeConflictError,
    MissingOptionError,
    NoTargetBranchesError,
    PatchFileNotFoundError,
    PullError,
    RemoteBranchMissingError,
    ResetError,
    SyncCancelled,
    SyncInProgressError,
)
from .gateway import RepositoryGateway
from .models import (
    LogEvent,
    LogLevel,
    LogSink,
    RunOutcome,
    RunState,
    StatusSink,
    SyncMode,
    SyncOptions,
    SyncResult,
)
from .observability import log_action, log_debug, log_warning, timeit
from .resolver import RemoteBranchResolver, RemoteFullRef, parse_remote_ref

CANCELLED_MESSAGE = "Cancelled by user"


class CancellationToken:
    """Cooperative cancellation flag handed to every long-running step."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Set the flag. Returns False if it was already set."""
        already = self._event.is_set()
        self._event.set()
        return not already

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelled(CANCELLED_MESSAGE)


@dataclass
class PatchContext:
    path: Path
    label: str
    commit_message: Optional[str]


@dataclass
class _BranchAttempt:
    """What has been done to the current target branch, for rollback."""

    cherry_pick_started: bool = False
    merge_conflicted: bool = False
    patch_applied: bool = False


class _EventStream:
    """Ordered, append-only progress events for one run."""

    def __init__(self, sink: Optional[LogSink]):
        self.sink = sink

    def __call__(self, message: str, level: LogLevel = "info") -> None:
        event = LogEvent(message=message, level=level)
        log_debug(f"sync event: {message}", level=level)
        if self.sink is None:
            return
        try:
            self.sink(event)
        except Exception as e:
            log_warning(f"Log sink raised while handling a sync event: {e}")


class SyncOrchestrator:
    """Drives sync runs against one bound repository."""

    def __init__(
        self,
        gateway: RepositoryGateway,
        resolver: Optional[RemoteBranchResolver] = None,
        *,
        sync_config: Optional[SyncConfig] = None,
    ):
        self.gateway = gateway
        self.resolver = resolver or RemoteBranchResolver(gateway)
        self.sync_config = sync_config or SyncConfig()
        # Reentrant: a cancel may arrive from a signal handler on the running thread
        self._lock = threading.RLock()
        self._state = RunState.IDLE
        self._token: Optional[CancellationToken] = None
        self._events: Optional[_EventStream] = None

    # ------------------------------------------------------------------
    # Run state
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state is not RunState.IDLE

    def request_cancel(self) -> bool:
        """Ask the active run to stop at its next checkpoint.

        Returns True while a run is active (including when cancellation was
        already requested), False when there is nothing to cancel.
        """
        with self._lock:
            if self._state is RunState.IDLE or self._token is None:
                return False
            first_request = self._token.cancel()
            self._state = RunState.CANCELLING
            events = self._events
        if first_request and events is not None:
            events("Cancellation requested; stopping the current sync run", "warn")
        return True

    def _claim(self, events: _EventStream) -> CancellationToken:
        with self._lock:
            if self._state is not RunState.IDLE:
                raise SyncInProgressError()
            self._state = RunState.VALIDATING
            self._token = CancellationToken()
            self._events = events
            return self._token

    def _mark_running(self) -> None:
        with self._lock:
            if self._state is RunState.VALIDATING:
                self._state = RunState.RUNNING

    def _release(self) -> None:
        with self._lock:
            self._state = RunState.IDLE
            self._token = None
            self._events = None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, options: SyncOptions) -> Optional[PatchContext]:
        """Check that ``options`` carry what their mode needs.

        Returns the resolved patch context in patch mode, None otherwise.
        """
        if not options.target_branches:
            raise NoTargetBranchesError()

        mode = SyncMode.parse(options.mode)
        if mode is SyncMode.BRANCH and not _present(options.source_branch):
            raise MissingOptionError("source_branch", "Select a source branch first")
        if mode is SyncMode.COMMIT and not _present(options.commit_hash):
            raise MissingOptionError("commit_hash", "Provide the hash of the commit to sync")
        if mode is SyncMode.STASH and not _present(options.stash_ref):
            raise MissingOptionError("stash_ref", "Select the stash entry to sync")
        if mode is not SyncMode.PATCH:
            return None

        if not _present(options.patch_file):
            raise MissingOptionError("patch_file", "Provide the path of the patch file")
        candidate = Path(options.patch_file.strip()).expanduser()
        if not candidate.is_absolute():
            candidate = (self.gateway.path / candidate).resolve()
        if not candidate.is_file():
            raise PatchFileNotFoundError(f"Patch file not found: {candidate}")
        message = (options.patch_commit_message or "").strip()
        return PatchContext(path=candidate, label=candidate.name, commit_message=message or None)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def sync_branches(
        self,
        options: SyncOptions,
        on_log: Optional[LogSink] = None,
        on_status: Optional[StatusSink] = None,
    ) -> RunOutcome:
        """Run one sync over ``options.target_branches``.

        Raises:
            SyncInProgressError: another run is active on this repository
            ValidationError: options are incomplete for their mode
        """
        events = _EventStream(on_log)
        token = self._claim(events)
        mode_label = getattr(options.mode, "value", str(options.mode))
        try:
            mode = SyncMode.parse(options.mode)
            patch = self.validate(options)
            self._mark_running()
            _notify(on_status, {"status": "running", "mode": mode.value})
            with timeit("sync.run", mode=mode.value, targets=len(options.target_branches)) as info:
                outcome = self._run(options, mode, patch, token, events)
                info["succeeded"] = sum(1 for r in outcome.results if r.success)
                info["failed"] = len(outcome.failed)
                if outcome.cancelled:
                    info["outcome"] = "cancelled"
            _notify(
                on_status,
                {
                    "status": "cancelled" if outcome.cancelled else "completed",
                    "mode": mode.value,
                    "results": [r.to_dict() for r in outcome.results],
                },
            )
            return outcome
        except Exception as e:
            _notify(on_status, {"status": "failed", "mode": mode_label, "message": str(e)})
            raise
        finally:
            self._release()

    def _run(
        self,
        options: SyncOptions,
        mode: SyncMode,
        patch: Optional[PatchContext],
        token: CancellationToken,
        events: _EventStream,
    ) -> RunOutcome:
        local_branches: Set[str] = set(self.gateway.local_branches())
        branch_to_restore = (options.source_branch or "").strip() or self.gateway.current_branch()

        results: List[SyncResult] = []
        cancelled = False
        for target in options.target_branches:
            if token.cancelled:
                # nothing has touched this branch yet, so it gets no result
                cancelled = True
                break
            result, branch_cancelled = self._sync_target(
                target, options, mode, patch, token, events, local_branches
            )
            results.append(result)
            if branch_cancelled:
                cancelled = True
                break

        self._restore(branch_to_restore, events)

        if token.cancelled:
            cancelled = True
        return RunOutcome(results=tuple(results), cancelled=cancelled)

    def _restore(self, branch: Optional[str], events: _EventStream) -> None:
        if not branch:
            events("No branch to switch back to", "warn")
            return
        try:
            self.gateway.checkout(branch)
            events(f"Switched back to branch {branch}")
        except Exception as e:
            events(f"Failed to switch back to branch {branch}: {e}", "warn")

    # ------------------------------------------------------------------
    # One target branch
    # ------------------------------------------------------------------

    def _sync_target(
        self,
        target: str,
        options: SyncOptions,
        mode: SyncMode,
        patch: Optional[PatchContext],
        token: CancellationToken,
        events: _EventStream,
        local_branches: Set[str],
    ) -> tuple[SyncResult, bool]:
        attempt = _BranchAttempt()
        start = time.perf_counter()
        try:
            events(f"Starting sync to branch {target} (mode: {mode.value})")
            self.gateway.fetch_all()
            events(f"[{target}] fetch completed")
            token.raise_if_cancelled()

            ref = self._resolve(target)
            self._checkout(target, ref, events, local_branches)
            token.raise_if_cancelled()

            self._update_from_remote(target, ref, events)
            token.raise_if_cancelled()

            self._apply_change(target, ref, options, mode, patch, attempt, events)
            token.raise_if_cancelled()
        except SyncCancelled:
            events(f"[{target}] sync cancelled", "warn")
            _log_branch(target, mode, "cancelled", start)
            return SyncResult(branch=target, success=False, error=CANCELLED_MESSAGE), True
        except Exception as e:
            message = str(e) or e.__class__.__name__
            events(f"[{target}] sync failed: {message}", "error")
            self._rollback(target, mode, patch, attempt, events)
            _log_branch(target, mode, "error", start, error=message)
            return SyncResult(branch=target, success=False, error=message), False

        _log_branch(target, mode, "ok", start)
        return SyncResult(branch=target, success=True, error=None), False

    def _resolve(self, target: str) -> RemoteFullRef:
        full_ref = self.resolver.resolve_full_ref(target)
        if not full_ref:
            raise RemoteBranchMissingError(
                f"Remote branch {target} does not exist; it must exist on a remote before it can be synced"
            )
        return parse_remote_ref(full_ref)

    def _checkout(
        self,
        target: str,
        ref: RemoteFullRef,
        events: _EventStream,
        local_branches: Set[str],
    ) -> None:
        if target not in local_branches:
            try:
                self.gateway.create_tracking_branch(target, ref.short)
            except CheckoutError as e:
                raise CheckoutError(f"Failed to create or track remote branch: {e}") from e
            local_branches.add(target)
            events(f"[{target}] no local branch; created from {ref.short} and switched to it")
        else:
            self.gateway.checkout(target)
            events(f"[{target}] switched to local branch")

    def _update_from_remote(self, target: str, ref: RemoteFullRef, events: _EventStream) -> None:
        """Fast-forward to the remote tip, or reset onto it if the branch diverged.

        The reset throws away commits that exist only on the local branch:
        targets mirror upstream before the change is applied.
        """
        try:
            self.gateway.pull_fast_forward(ref.remote, ref.branch)
            events(f"[{target}] pulled latest changes from {ref.short}")
            return
        except PullError as e:
            if not e.fast_forward_impossible:
                raise PullError(f"Failed to pull remote branch: {e}") from e
        events(f"[{target}] fast-forward not possible; resetting to {ref.short}", "warn")
        try:
            self.gateway.reset_hard(ref.short)
        except ResetError as e:
            raise ResetError(f"Failed to sync with remote branch: {e}") from e
        events(f"[{target}] reset to the latest state of {ref.short}")

    def _apply_change(
        self,
        target: str,
        ref: RemoteFullRef,
        options: SyncOptions,
        mode: SyncMode,
        patch: Optional[PatchContext],
        attempt: _BranchAttempt,
        events: _EventStream,
    ) -> None:
        if mode is SyncMode.BRANCH:
            source = options.source_branch.strip()
            try:
                self.gateway.merge(source)
            except MergeConflictError:
                attempt.merge_conflicted = True
                raise
            events(f"[{target}] merged {source}")
            self._push(target, ref, events)

        elif mode is SyncMode.COMMIT:
            commit = options.commit_hash.strip()
            attempt.cherry_pick_started = True
            self.gateway.cherry_pick(commit)
            events(f"[{target}] applied commit {commit}")
            self._push(target, ref, events)

        elif mode is SyncMode.STASH:
            stash_ref = options.stash_ref.strip()
            # apply, never pop: the same entry is reused for every target
            self.gateway.stash_apply(stash_ref)
            events(f"[{target}] applied stash {stash_ref}")
            if self.gateway.is_clean():
                events(f"[{target}] stash introduced no changes; nothing to commit", "warn")
                return
            message = (options.stash_message or "").strip() or self._default_message(
                self.sync_config.stash_commit_template, ref=stash_ref
            )
            self._commit(target, message, events, what="stash")
            self._push(target, ref, events)

        elif mode is SyncMode.PATCH:
            if patch is None:
                raise MissingOptionError("patch_file", "Patch parameters are missing")
            events(f"[{target}] checking patch {patch.label}")
            self.gateway.check_patch(patch.path)
            events(f"[{target}] patch check passed")
            self.gateway.apply_patch(patch.path)
            attempt.patch_applied = True
            events(f"[{target}] applied patch {patch.label}")
            if self.gateway.is_clean():
                events(f"[{target}] patch introduced no file changes (the same changes may already exist)", "warn")
                return
            message = patch.commit_message or self._default_message(
                self.sync_config.patch_commit_template, label=patch.label
            )
            self._commit(target, message, events, what="patch")
            self._push(target, ref, events)

    def _default_message(self, template: str, **values: Any) -> str:
        values.setdefault("ref", "")
        values.setdefault("label", "")
        return template.format(**values)

    def _commit(self, target: str, message: str, events: _EventStream, *, what: str) -> None:
        self.gateway.stage_all()
        self.gateway.commit(message)
        events(f"[{target}] committed {what} changes")

    def _push(self, target: str, ref: RemoteFullRef, events: _EventStream) -> None:
        self.gateway.push(ref.remote, ref.branch)
        events(f"[{target}] pushed")

    def _rollback(
        self,
        target: str,
        mode: SyncMode,
        patch: Optional[PatchContext],
        attempt: _BranchAttempt,
        events: _EventStream,
    ) -> None:
        """Undo a half-applied change. Failures here are reported, never raised."""
        if mode is SyncMode.COMMIT and attempt.cherry_pick_started:
            try:
                self.gateway.cherry_pick_abort()
                events(f"[{target}] rolled back cherry-pick", "warn")
            except Exception as e:
                events(f"[{target}] failed to roll back cherry-pick: {e}", "error")
        elif mode is SyncMode.PATCH and attempt.patch_applied and patch is not None:
            try:
                self.gateway.reverse_patch(patch.path)
                events(f"[{target}] rolled back patch {patch.label}", "warn")
            except Exception as e:
                events(f"[{target}] failed to roll back patch: {e}", "error")
        elif mode is SyncMode.BRANCH and attempt.merge_conflicted:
            try:
                self.gateway.merge_abort()
                events(f"[{target}] aborted conflicted merge", "warn")
            except Exception as e:
                events(f"[{target}] failed to abort merge: {e}", "error")


def _present(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def _notify(sink: Optional[StatusSink], payload: Dict[str, Any]) -> None:
    if sink is None:
        return
    try:
        sink(payload)
    except Exception as e:
        log_warning(f"Status sink raised: {e}")


def _log_branch(target: str, mode: SyncMode, outcome: str, start: float, **fields: Any) -> None:
    log_action(
        "sync.branch",
        outcome=outcome,
        duration_ms=(time.perf_counter() - start) * 1000.0,
        branch=target,
        mode=mode.value,
        **fields,
    )
