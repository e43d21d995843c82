"""branchsync: propagate one change across many branches of a git repository."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("branchsync")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .models import RunOutcome, StashEntry, SyncMode, SyncOptions, SyncResult  # noqa: F401
from .orchestrator import CancellationToken, SyncOrchestrator  # noqa: F401
from .service import BranchSyncService, respond  # noqa: F401

__all__ = [
    "BranchSyncService",
    "CancellationToken",
    "RunOutcome",
    "StashEntry",
    "SyncMode",
    "SyncOptions",
    "SyncOrchestrator",
    "SyncResult",
    "respond",
    "__version__",
]
