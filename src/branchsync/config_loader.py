"""Configuration discovery for branchsync.

Sources, later ones winning:

1. built-in defaults of :class:`~branchsync.config_schema.BranchSyncConfig`
2. ``~/.branchsync/config.toml``
3. the nearest ``.branchsync/config.toml`` at or above the repository
4. ``BRANCHSYNC_*`` environment variables
"""

from __future__ import annotations

import os
import sys
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import ValidationError

from .config_schema import BranchSyncConfig

CONFIG_DIR = ".branchsync"
CONFIG_FILENAME = "config.toml"

# variable -> (section, key); values stay strings until pydantic coerces them
ENV_MAPPING: Dict[str, tuple[str, str]] = {
    "BRANCHSYNC_GIT_AUTHOR": ("git", "author"),
    "BRANCHSYNC_GIT_EMAIL": ("git", "email"),
    "BRANCHSYNC_GIT_SSH_KEY": ("git", "ssh_key"),
    "BRANCHSYNC_GIT_TERMINAL_PROMPT": ("git", "terminal_prompt"),
    "BRANCHSYNC_STASH_COMMIT_TEMPLATE": ("sync", "stash_commit_template"),
    "BRANCHSYNC_PATCH_COMMIT_TEMPLATE": ("sync", "patch_commit_template"),
    "BRANCHSYNC_LOG_LEVEL": ("logging", "level"),
    "BRANCHSYNC_LOG_DIR": ("logging", "dir"),
    "BRANCHSYNC_LOG_MAX_BYTES": ("logging", "max_bytes"),
    "BRANCHSYNC_LOG_BACKUP_COUNT": ("logging", "backup_count"),
    "BRANCHSYNC_LOG_DISABLE_FILE": ("logging", "disable_file"),
}


class ConfigError(Exception):
    """A config file could not be read, or the merged result is invalid."""


def user_config_file() -> Path:
    return Path.home() / CONFIG_DIR / CONFIG_FILENAME


def find_project_config_file(start: Optional[Path] = None) -> Optional[Path]:
    """Nearest ``.branchsync/config.toml`` at or above ``start`` (default: cwd).

    The user-level file is never returned here, even when the repository
    lives below the home directory.
    """
    current = (start or Path.cwd()).resolve()
    user_file = user_config_file()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_DIR / CONFIG_FILENAME
        if candidate != user_file and candidate.is_file():
            return candidate
    return None


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"{path}: {e}") from e


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested tables merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> Dict[str, Dict[str, str]]:
    overrides: Dict[str, Dict[str, str]] = {}
    for env_var, (section, key) in ENV_MAPPING.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides.setdefault(section, {})[key] = value
    return overrides


def load_config(project_path: Optional[Path] = None, skip_env: bool = False) -> BranchSyncConfig:
    """Read, merge and validate every config source.

    A broken user file is skipped with a warning so one bad global file
    does not lock the user out of every repository; a broken project file
    is an error.

    Raises:
        ConfigError: unreadable project file, or validation failure
    """
    data: Dict[str, Any] = {}

    user_file = user_config_file()
    if user_file.is_file():
        try:
            data = _deep_merge(data, _read_toml(user_file))
        except ConfigError as e:
            warnings.warn(f"Skipping invalid user config: {e}", UserWarning)

    project_file = find_project_config_file(project_path)
    if project_file is not None:
        try:
            data = _deep_merge(data, _read_toml(project_file))
        except ConfigError as e:
            raise ConfigError(f"Invalid project config: {e}") from e

    if not skip_env:
        data = _deep_merge(data, _env_overrides())

    try:
        return BranchSyncConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}") from e


def get_config_paths(project_path: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    return {
        "user_config": user_config_file(),
        "project_config": find_project_config_file(project_path),
    }


_cache_lock = threading.Lock()
_cache: Dict[Optional[Path], BranchSyncConfig] = {}


def get_config(project_path: Optional[Path] = None, force_reload: bool = False) -> BranchSyncConfig:
    """Config for ``project_path``, loaded once and then served from memory."""
    key = project_path.resolve() if project_path else None
    with _cache_lock:
        if force_reload or key not in _cache:
            _cache[key] = load_config(project_path)
        return _cache[key]


def clear_config_cache() -> None:
    with _cache_lock:
        _cache.clear()
