"""Exceptions raised by branchsync.

Validation errors are raised before a run mutates anything. Operational
errors are raised per target branch and end up as the ``error`` string of
that branch's :class:`~branchsync.models.SyncResult`.
"""

from __future__ import annotations


class BranchSyncError(Exception):
    """Base exception for branchsync."""
    pass


# ----------------------------------------------------------------------
# Binding / validation
# ----------------------------------------------------------------------

class RepositoryNotBoundError(BranchSyncError):
    """No repository has been bound to the service yet."""

    def __init__(self, message: str = "No git repository selected; bind a repository first"):
        super().__init__(message)


class InvalidRepositoryError(BranchSyncError):
    """The path given for binding is not a git working tree root."""
    pass


class ValidationError(BranchSyncError):
    """Sync options failed validation."""
    pass


class NoTargetBranchesError(ValidationError):
    def __init__(self, message: str = "At least one target branch is required"):
        super().__init__(message)


class MissingOptionError(ValidationError):
    """A field required by the selected mode is absent."""

    def __init__(self, option: str, message: str):
        super().__init__(message)
        self.option = option


class PatchFileNotFoundError(ValidationError):
    pass


class UnknownModeError(ValidationError):
    pass


class SyncInProgressError(BranchSyncError):
    def __init__(self, message: str = "A sync run is already in progress; try again later"):
        super().__init__(message)


# ----------------------------------------------------------------------
# Per-branch operational failures
# ----------------------------------------------------------------------

class GitOperationError(BranchSyncError):
    """A git operation failed while syncing one target branch."""
    pass


class RemoteBranchMissingError(GitOperationError):
    pass


class RefParseError(GitOperationError):
    pass


class CheckoutError(GitOperationError):
    pass


class PullError(GitOperationError):
    """Fast-forward pull failed.

    ``fast_forward_impossible`` is True when git refused because the local
    branch has diverged; the orchestrator answers that with a hard reset.
    """

    def __init__(self, message: str, *, fast_forward_impossible: bool = False):
        super().__init__(message)
        self.fast_forward_impossible = fast_forward_impossible


class ResetError(GitOperationError):
    pass


class MergeConflictError(GitOperationError):
    pass


class CherryPickError(GitOperationError):
    pass


class StashApplyError(GitOperationError):
    pass


class PatchCheckError(GitOperationError):
    pass


class PatchApplyError(GitOperationError):
    pass


class CommitError(GitOperationError):
    pass


class PushError(GitOperationError):
    pass


class FetchError(GitOperationError):
    pass


class SyncCancelled(BranchSyncError):
    """Raised at a cancellation checkpoint once cancellation was requested."""

    def __init__(self, message: str = "Cancelled by user"):
        super().__init__(message)
