"""CLI tests: subprocess smoke checks plus in-process runs of each command."""
from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
from pathlib import Path

import pytest

from branchsync.cli import EXIT_CANCELLED, EXIT_FAILED, EXIT_OK, main

from conftest import commit_file, remote_file

SRC_DIR = Path(__file__).resolve().parents[1] / "src"


def _run(*args: str, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC_DIR), env.get("PYTHONPATH")]))
    return subprocess.run(
        [sys.executable, "-m", "branchsync", *args],
        capture_output=True,
        text=True,
        env=env,
        cwd=cwd,
    )


def _main(*argv: str) -> int:
    with pytest.raises(SystemExit) as excinfo:
        main(list(argv))
    return excinfo.value.code


def test_help_exits_zero():
    cp = _run("--help")
    assert cp.returncode == 0
    assert "usage:" in cp.stdout.lower()


def test_no_command_prints_help():
    cp = _run()
    assert cp.returncode == 0
    assert "sync" in cp.stdout


def test_info_subprocess(repo_setup):
    cp = _run("info", cwd=repo_setup.work)
    assert cp.returncode == 0, cp.stderr
    assert "- Branch: main" in cp.stdout


def test_info_json(repo_setup, capsys):
    assert _main("--repo", str(repo_setup.work), "--json", "info") == 0
    envelope = json.loads(capsys.readouterr().out)
    assert envelope["ok"] is True
    assert envelope["data"]["current_branch"] == "main"
    assert envelope["data"]["is_clean"] is True


def test_bind_failure(tmp_path, capsys):
    assert _main("--repo", str(tmp_path), "info") == 1
    assert "not a git repository" in capsys.readouterr().err


def test_bind_failure_json(tmp_path, capsys):
    assert _main("--repo", str(tmp_path), "--json", "branches") == 1
    envelope = json.loads(capsys.readouterr().out)
    assert envelope["ok"] is False


def test_branches(repo_setup, capsys):
    assert _main("--repo", str(repo_setup.work), "branches") == 0
    lines = capsys.readouterr().out.splitlines()
    assert "* main" in lines
    assert "  release/1.0" in lines


def test_check_reports_missing_names(repo_setup, capsys):
    assert _main("--repo", str(repo_setup.work), "check", "DEV", "ghost") == 1
    out = capsys.readouterr().out
    assert "✅ dev" in out
    assert "❌ ghost" in out


def test_check_all_present(repo_setup):
    assert _main("--repo", str(repo_setup.work), "check", "main", "dev") == 0


def test_check_json_exit_code_matches_text_mode(repo_setup, capsys):
    assert _main("--repo", str(repo_setup.work), "--json", "check", "main", "ghost") == EXIT_FAILED
    envelope = json.loads(capsys.readouterr().out)
    assert envelope["ok"] is True
    assert envelope["data"]["not_exists"] == ["ghost"]

    assert _main("--repo", str(repo_setup.work), "--json", "check", "main") == EXIT_OK


def test_stashes(repo_setup, capsys):
    (repo_setup.work / "README.md").write_text("wip\n")
    repo_setup.repo.git.stash("push", "-m", "cli stash")
    assert _main("--repo", str(repo_setup.work), "stashes") == 0
    out = capsys.readouterr().out
    assert out.startswith("stash@{0}\t")
    assert out.rstrip().endswith("cli stash")


def test_sync_branch_mode(repo_setup, capsys):
    repo = repo_setup.repo
    repo.git.checkout("-b", "feature")
    commit_file(repo, "feature.txt", "feature\n", "add feature")

    code = _main(
        "--repo", str(repo_setup.work), "sync", "--source", "feature", "-t", "dev", "-t", "release/1.0"
    )

    captured = capsys.readouterr()
    assert code == EXIT_OK
    assert "✅ dev" in captured.out
    assert "✅ release/1.0" in captured.out
    assert "Starting sync to branch dev (mode: branch)" in captured.err
    assert remote_file(repo_setup.remote, "release/1.0", "feature.txt") == "feature"


def test_sync_partial_failure_exit_code(repo_setup, capsys):
    repo = repo_setup.repo
    repo.git.checkout("-b", "hotfix")
    sha = commit_file(repo, "README.md", "fixed\n", "fix README")

    code = _main(
        "--repo", str(repo_setup.work), "--json", "sync", "--mode", "commit", "--commit", sha,
        "-t", "conflicting", "-t", "dev",
    )

    envelope = json.loads(capsys.readouterr().out)
    assert code == EXIT_FAILED
    assert [r["success"] for r in envelope["data"]["results"]] == [False, True]


def test_sync_patch_with_message(repo_setup, tmp_path):
    patch = tmp_path / "fix.patch"
    patch.write_text(
        "diff --git a/README.md b/README.md\n--- a/README.md\n+++ b/README.md\n@@ -1 +1 @@\n-seed\n+cli\n"
    )
    code = _main(
        "--repo", str(repo_setup.work), "sync", "--mode", "patch", "--patch", str(patch),
        "-m", "apply fix", "-t", "dev",
    )
    assert code == EXIT_OK
    assert remote_file(repo_setup.remote, "dev", "README.md") == "cli"


def test_sync_validation_error(repo_setup, capsys):
    code = _main("--repo", str(repo_setup.work), "sync", "--mode", "stash", "-t", "dev")
    assert code == EXIT_FAILED
    assert "Select the stash entry to sync" in capsys.readouterr().err


def test_sync_cancelled_exit_code(repo_setup, monkeypatch):
    from branchsync.service import BranchSyncService

    original = BranchSyncService.start_sync

    def cancel_on_start(self, options, on_log=None, on_status=None):
        def status(payload):
            if payload["status"] == "running":
                self.cancel_sync()

        return original(self, options, on_log=on_log, on_status=status)

    monkeypatch.setattr(BranchSyncService, "start_sync", cancel_on_start)

    code = _main("--repo", str(repo_setup.work), "sync", "--source", "main", "-t", "dev")
    assert code == EXIT_CANCELLED


def test_config_show(repo_setup, capsys):
    config_dir = repo_setup.work / ".branchsync"
    config_dir.mkdir()
    (config_dir / "config.toml").write_text('[git]\nauthor = "CLI Bot"\n')

    assert _main("--repo", str(repo_setup.work), "config", "show", "--sources") == 0
    out = capsys.readouterr().out
    assert "✓ project_config" in out
    data = json.loads(out[out.index("{"):])
    assert data["git"]["author"] == "CLI Bot"


def test_config_without_subcommand(capsys):
    assert _main("config") == 1
    assert "Usage: branchsync config show" in capsys.readouterr().err


def test_project_log_level_applies_to_logger(repo_setup, monkeypatch):
    monkeypatch.delenv("BRANCHSYNC_LOG_LEVEL")
    config_dir = repo_setup.work / ".branchsync"
    config_dir.mkdir()
    (config_dir / "config.toml").write_text('[logging]\nlevel = "DEBUG"\n')

    assert _main("--repo", str(repo_setup.work), "info") == 0
    assert logging.getLogger("branchsync").level == logging.DEBUG


def test_invalid_project_config_fails_before_bind(repo_setup, capsys):
    config_dir = repo_setup.work / ".branchsync"
    config_dir.mkdir()
    (config_dir / "config.toml").write_text('[sync]\nstash_commit_template = "sync {branch}"\n')

    assert _main("--repo", str(repo_setup.work), "info") == EXIT_FAILED
    assert "only {ref} and {label}" in capsys.readouterr().err
