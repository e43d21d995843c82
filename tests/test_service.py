from __future__ import annotations

from pathlib import Path

import pytest

from branchsync.config_schema import BranchSyncConfig, SyncConfig
from branchsync.errors import InvalidRepositoryError, RepositoryNotBoundError, SyncInProgressError
from branchsync.service import BranchSyncService, respond, to_payload

from conftest import commit_file


@pytest.fixture
def service(repo_setup):
    svc = BranchSyncService()
    svc.bind(repo_setup.work)
    return svc


@pytest.mark.parametrize(
    "operation, args",
    [
        ("repository_summary", ()),
        ("list_remote_branches", ()),
        ("check_remote_branches", (["main"],)),
        ("remote_branch_exists", ("main",)),
        ("list_stashes", ()),
        ("start_sync", ({"mode": "branch", "target_branches": ["dev"], "source_branch": "main"},)),
    ],
)
def test_operations_require_a_bound_repository(operation, args):
    svc = BranchSyncService()
    with pytest.raises(RepositoryNotBoundError):
        getattr(svc, operation)(*args)


def test_cancel_without_binding_is_a_no_op():
    assert BranchSyncService().cancel_sync() is False


def test_bind_returns_summary(repo_setup):
    summary = BranchSyncService().bind(repo_setup.work)
    assert summary.current_branch == "main"
    assert summary.is_clean
    assert Path(summary.path).resolve() == repo_setup.work.resolve()


def test_bind_picks_up_project_config(repo_setup):
    config_dir = repo_setup.work / ".branchsync"
    config_dir.mkdir()
    (config_dir / "config.toml").write_text('[sync]\nstash_commit_template = "stash: {ref}"\n')

    svc = BranchSyncService()
    svc.bind(repo_setup.work)

    assert svc.config.sync.stash_commit_template == "stash: {ref}"
    assert svc.orchestrator.sync_config.stash_commit_template == "stash: {ref}"


def test_explicit_config_wins(repo_setup):
    config = BranchSyncConfig(sync=SyncConfig(patch_commit_template="patch {label}"))
    svc = BranchSyncService(config)
    svc.bind(repo_setup.work)
    assert svc.orchestrator.sync_config.patch_commit_template == "patch {label}"


def test_failed_bind_keeps_previous_binding(service, tmp_path):
    previous = service.gateway
    with pytest.raises(InvalidRepositoryError):
        service.bind(tmp_path / "missing")
    assert service.gateway is previous


def test_bind_refused_while_syncing(service, repo_setup):
    errors = []

    def on_log(event):
        if event.message.startswith("Starting sync"):
            try:
                service.bind(repo_setup.work)
            except SyncInProgressError as e:
                errors.append(str(e))

    outcome = service.start_sync(
        {"mode": "branch", "targetBranches": ["dev"], "sourceBranch": "main"}, on_log=on_log
    )

    assert errors == ["Cannot switch repository while a sync run is in progress"]
    assert outcome.results[0].success
    assert service.is_syncing is False


def test_queries_through_service(service, repo_setup):
    assert service.list_remote_branches().branches == ["conflicting", "dev", "main", "release/1.0"]
    assert service.check_remote_branches(["DEV", "gone"]).to_dict() == {
        "exists": ["dev"],
        "not_exists": ["gone"],
    }
    assert service.remote_branch_exists("release/1.0")
    assert service.list_stashes() == []
    commit_file(repo_setup.repo, "x.txt", "x\n", "x")
    assert service.repository_summary().ahead == 1


def test_respond_success_envelope(service):
    envelope = respond(service.check_remote_branches, ["main"])
    assert envelope == {"ok": True, "data": {"exists": ["main"], "not_exists": []}}


def test_respond_error_envelope():
    envelope = respond(BranchSyncService().list_stashes)
    assert envelope["ok"] is False
    assert "bind a repository first" in envelope["error"]


def test_respond_sync_validation_error(service):
    envelope = respond(service.start_sync, {"mode": "commit", "target_branches": ["dev"]})
    assert envelope == {"ok": False, "error": "Provide the hash of the commit to sync"}


def test_respond_unknown_mode(service):
    envelope = respond(service.start_sync, {"mode": "squash", "target_branches": ["dev"]})
    assert envelope["ok"] is False
    assert envelope["error"] == "Unknown sync mode: squash"


def test_to_payload_handles_nested_sequences(service):
    payload = to_payload(service.start_sync({"mode": "branch", "target_branches": ["dev"], "source_branch": "main"}))
    assert payload == {"results": [{"branch": "dev", "success": True, "error": None}], "cancelled": False}
    assert to_payload(("a", 1)) == ["a", 1]


def test_bind_rejects_template_with_unknown_placeholder(repo_setup):
    config_dir = repo_setup.work / ".branchsync"
    config_dir.mkdir()
    (config_dir / "config.toml").write_text('[sync]\nstash_commit_template = "sync {branch}"\n')

    svc = BranchSyncService()
    envelope = respond(svc.bind, repo_setup.work)

    assert envelope["ok"] is False
    assert "only {ref} and {label}" in envelope["error"]
    assert svc.gateway is None
