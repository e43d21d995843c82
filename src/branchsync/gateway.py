"""Repository gateway: the primitive git operations a sync run is built from.

Every method issues one git command through GitPython and either returns its
result or raises the matching :mod:`branchsync.errors` leaf error. Nothing in
here decides what to do about a failure; that belongs to the orchestrator.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from .config_schema import GitConfig
from .errors import (
    CheckoutError,
    CherryPickError,
    CommitError,
    FetchError,
    GitOperationError,
    InvalidRepositoryError,
    MergeConflictError,
    PatchApplyError,
    PatchCheckError,
    PullError,
    PushError,
    ResetError,
    StashApplyError,
)
from .models import RepositorySummary
from .observability import log_debug

T = TypeVar("T")

# git wording for "pull --ff-only" refusing a diverged branch
FAST_FORWARD_IMPOSSIBLE_MARKERS = (
    "not possible to fast-forward",
    "cannot pull with rebase",
)

_STREAM_RE = re.compile(r"^(?:stderr|stdout): '(.*)'$", re.DOTALL)


def describe_git_error(exc: Exception) -> str:
    """Human message for a failed git command (stderr, else stdout, else str)."""
    for attr in ("stderr", "stdout"):
        text = (getattr(exc, attr, "") or "")
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        text = text.strip()
        match = _STREAM_RE.match(text)
        if match:
            text = match.group(1).strip()
        if text:
            return text
    return str(exc)


def build_git_env(git_config: Optional[GitConfig] = None) -> Dict[str, str]:
    """Environment overrides applied to every git invocation.

    Prompts are disabled by default so a missing credential fails the branch
    instead of hanging the run.
    """
    git_config = git_config or GitConfig()
    env: Dict[str, str] = {}
    if not git_config.terminal_prompt:
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["GCM_INTERACTIVE"] = "never"
    if git_config.ssh_key:
        key = Path(git_config.ssh_key).expanduser()
        env["GIT_SSH_COMMAND"] = f"ssh -i {key} -o IdentitiesOnly=yes -o BatchMode=yes"
    elif not git_config.terminal_prompt and "GIT_SSH_COMMAND" not in os.environ:
        env["GIT_SSH_COMMAND"] = "ssh -o BatchMode=yes"
    if git_config.author:
        env["GIT_AUTHOR_NAME"] = git_config.author
        env["GIT_COMMITTER_NAME"] = git_config.author
    if git_config.email:
        env["GIT_AUTHOR_EMAIL"] = git_config.email
        env["GIT_COMMITTER_EMAIL"] = git_config.email
    return env


class RepositoryGateway:
    """Thin adapter over one local git working tree.

    Not thread-safe: the orchestrator drives it from a single flow of control.
    """

    def __init__(self, repo: Repo, *, git_config: Optional[GitConfig] = None):
        self.repo = repo
        self.path = Path(repo.working_tree_dir or repo.git_dir)
        self._env = build_git_env(git_config)
        if self._env:
            self.repo.git.update_environment(**self._env)

    @classmethod
    def open(cls, path: "str | Path", *, git_config: Optional[GitConfig] = None) -> "RepositoryGateway":
        """Bind a repository root.

        Raises:
            InvalidRepositoryError: blank path, missing ``.git`` or unreadable repository
        """
        if path is None or not str(path).strip():
            raise InvalidRepositoryError("No repository path provided")
        root = Path(str(path).strip()).expanduser()
        if not (root / ".git").exists():
            raise InvalidRepositoryError(f"Selected directory is not a git repository: {root}")
        try:
            repo = Repo(root)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise InvalidRepositoryError(f"Not a git repository: {root}") from e
        return cls(repo, git_config=git_config)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _call(
        self,
        label: str,
        error_cls: Type[GitOperationError],
        fn: Callable[..., T],
        *args: Any,
    ) -> T:
        log_debug(f"GIT_OP_START: {label}")
        try:
            result = fn(*args)
        except GitCommandError as e:
            log_debug(f"GIT_OP_FAIL: {label}", status=e.status)
            raise error_cls(describe_git_error(e)) from e
        log_debug(f"GIT_OP_END: {label}")
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_branch(self) -> Optional[str]:
        """Name of the checked-out branch, or the HEAD sha when detached."""
        try:
            return self.repo.active_branch.name
        except TypeError:
            try:
                return self.repo.head.commit.hexsha
            except ValueError:
                return None

    def local_branches(self) -> List[str]:
        return [head.name for head in self.repo.heads]

    def list_all_branches(self) -> List[str]:
        """Local and remote-tracking refs as ``git branch -a`` prints them.

        Remote entries keep their ``remotes/<remote>/`` prefix and symbolic
        entries keep their ``-> target`` suffix; callers do the filtering.
        """
        output = self._call("branch -a", GitOperationError, self.repo.git.branch, "-a", "--no-color")
        names: List[str] = []
        for line in output.splitlines():
            name = line[2:] if len(line) > 2 and line[1] == " " and line[0] in "*+ " else line
            name = name.strip()
            if name:
                names.append(name)
        return names

    def is_clean(self) -> bool:
        return not self.repo.is_dirty(untracked_files=True)

    def summary(self) -> RepositorySummary:
        ahead = behind = 0
        try:
            counts = self.repo.git.rev_list("--left-right", "--count", "@{upstream}...HEAD")
            behind_text, ahead_text = counts.split()
            behind, ahead = int(behind_text), int(ahead_text)
        except (GitCommandError, ValueError):
            # no upstream configured
            pass
        try:
            current = self.repo.active_branch.name
        except TypeError:
            current = None
        return RepositorySummary(
            path=str(self.path),
            current_branch=current,
            is_clean=self.is_clean(),
            ahead=ahead,
            behind=behind,
        )

    def stash_records(self) -> List[tuple[int, str, str]]:
        """Raw ``(index, hash, reflog subject)`` triples, newest first."""
        output = self._call(
            "stash list",
            GitOperationError,
            self.repo.git.stash,
            "list",
            "--format=%gd%x00%H%x00%gs",
        )
        records: List[tuple[int, str, str]] = []
        for position, line in enumerate(output.splitlines()):
            if not line.strip():
                continue
            parts = line.split("\x00", 2)
            if len(parts) != 3:
                continue
            selector, sha, subject = parts
            match = re.search(r"\{(\d+)\}", selector)
            index = int(match.group(1)) if match else position
            records.append((index, sha, subject))
        return records

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def fetch_all(self) -> None:
        self._call("fetch --all", FetchError, self.repo.git.fetch, "--all")

    def checkout(self, ref: str) -> None:
        self._call(f"checkout {ref}", CheckoutError, self.repo.git.checkout, ref)

    def create_tracking_branch(self, name: str, start_point: str) -> None:
        self._call(
            f"checkout -b {name} --track {start_point}",
            CheckoutError,
            self.repo.git.checkout,
            "-b",
            name,
            "--track",
            start_point,
        )

    def pull_fast_forward(self, remote: str, branch: str) -> None:
        """``git pull --ff-only <remote> <branch>``.

        Raises:
            PullError: with ``fast_forward_impossible`` set when the branch diverged
        """
        log_debug(f"GIT_OP_START: pull --ff-only {remote} {branch}")
        try:
            self.repo.git.pull("--ff-only", remote, branch)
        except GitCommandError as e:
            text = str(e).lower()
            impossible = any(marker in text for marker in FAST_FORWARD_IMPOSSIBLE_MARKERS)
            log_debug(f"GIT_OP_FAIL: pull --ff-only {remote} {branch}", fast_forward_impossible=impossible)
            raise PullError(describe_git_error(e), fast_forward_impossible=impossible) from e
        log_debug(f"GIT_OP_END: pull --ff-only {remote} {branch}")

    def reset_hard(self, ref: str) -> None:
        self._call(f"reset --hard {ref}", ResetError, self.repo.git.reset, "--hard", ref)

    def merge(self, source: str) -> None:
        self._call(f"merge {source}", MergeConflictError, self.repo.git.merge, source, "--no-edit")

    def merge_abort(self) -> None:
        self._call("merge --abort", GitOperationError, self.repo.git.merge, "--abort")

    def cherry_pick(self, commit: str) -> None:
        self._call(f"cherry-pick {commit}", CherryPickError, self.repo.git.cherry_pick, commit)

    def cherry_pick_abort(self) -> None:
        self._call("cherry-pick --abort", GitOperationError, self.repo.git.cherry_pick, "--abort")

    def stash_apply(self, reference: str) -> None:
        self._call(f"stash apply {reference}", StashApplyError, self.repo.git.stash, "apply", reference)

    def check_patch(self, patch_path: "str | Path") -> None:
        self._call(f"apply --check {patch_path}", PatchCheckError, self.repo.git.apply, "--check", str(patch_path))

    def apply_patch(self, patch_path: "str | Path") -> None:
        self._call(f"apply {patch_path}", PatchApplyError, self.repo.git.apply, str(patch_path))

    def reverse_patch(self, patch_path: "str | Path") -> None:
        self._call(f"apply -R {patch_path}", PatchApplyError, self.repo.git.apply, "-R", str(patch_path))

    def stage_all(self) -> None:
        self._call("add -A", CommitError, self.repo.git.add, "-A")

    def commit(self, message: str) -> None:
        self._call(f"commit -m '{message[:40]}'", CommitError, self.repo.git.commit, "-m", message)

    def push(self, remote: str, branch: str) -> None:
        self._call(
            f"push {remote} HEAD:{branch}",
            PushError,
            self.repo.git.push,
            remote,
            f"HEAD:refs/heads/{branch}",
        )
