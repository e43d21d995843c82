from __future__ import annotations

import logging
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest
from git import Repo


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Deterministic git identity, no user/system git config, no log files."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    # Pin every logging variable so values seeded from config are restored afterwards
    monkeypatch.setenv("BRANCHSYNC_LOG_DISABLE_FILE", "1")
    monkeypatch.setenv("BRANCHSYNC_LOG_LEVEL", "INFO")
    monkeypatch.setenv("BRANCHSYNC_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("BRANCHSYNC_LOG_MAX_BYTES", "10485760")
    monkeypatch.setenv("BRANCHSYNC_LOG_BACKUP_COUNT", "5")

    from branchsync import observability
    from branchsync.config_loader import clear_config_cache

    clear_config_cache()
    yield
    clear_config_cache()
    # handlers hold the per-test stderr stream
    logging.getLogger(observability.LOGGER_NAME).handlers.clear()
    observability._logger_initialized = False
    observability._session_start = None


def commit_file(repo: Repo, name: str, content: str, message: str) -> str:
    path = Path(repo.working_tree_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.git.add(name)
    repo.git.commit("-m", message)
    return repo.head.commit.hexsha


def remote_file(remote: Path, branch: str, name: str) -> str:
    """Content of ``name`` at the tip of ``branch`` in a bare remote."""
    return Repo(remote).git.show(f"{branch}:{name}")


def remote_head(remote: Path, branch: str) -> str:
    return Repo(remote).commit(branch).hexsha


@dataclass
class RepoSetup:
    remote: Path
    work: Path
    repo: Repo

    def clone(self, name: str) -> Repo:
        return Repo.clone_from(self.remote.as_posix(), self.remote.parent / name)


@pytest.fixture
def repo_setup(tmp_path: Path) -> RepoSetup:
    """Bare remote with main, dev, release/1.0 and conflicting; plus a working clone on main.

    ``conflicting`` carries a README edit so cherry-picks touching README conflict there.
    """
    remote = tmp_path / "remote.git"
    Repo.init(remote, bare=True)

    seed_dir = tmp_path / "seed"
    seed = Repo.init(seed_dir)
    commit_file(seed, "README.md", "seed\n", "seed")
    commit_file(seed, ".gitignore", "*.log\n", "ignore logs")
    seed.git.branch("-M", "main")
    seed.git.branch("dev")
    seed.git.branch("release/1.0")
    seed.git.checkout("-b", "conflicting")
    commit_file(seed, "README.md", "other\n", "diverge README")
    seed.git.checkout("main")
    seed.create_remote("origin", remote.as_posix())
    seed.git.push("origin", "main", "dev", "release/1.0", "conflicting")
    Repo(remote).git.symbolic_ref("HEAD", "refs/heads/main")
    shutil.rmtree(seed_dir)

    work = tmp_path / "work"
    repo = Repo.clone_from(remote.as_posix(), work)
    return RepoSetup(remote=remote, work=work, repo=repo)
