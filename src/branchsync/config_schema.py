"""Configuration schema for branchsync.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GitConfig(BaseModel):
    """Environment applied to every git command the gateway runs."""

    author: str = Field(
        default="",
        description="Commit author name for sync commits (empty = git config)",
    )
    email: str = Field(
        default="",
        description="Commit author email for sync commits (empty = git config)",
    )
    ssh_key: str = Field(
        default="",
        description="Path to SSH private key (empty = use default)",
    )
    terminal_prompt: bool = Field(
        default=False,
        description="Allow git to prompt for credentials on the terminal",
    )

    @field_validator("ssh_key")
    @classmethod
    def validate_ssh_key(cls, v: str) -> str:
        """Warn if SSH key path doesn't exist."""
        if v:
            path = Path(v).expanduser()
            if not path.exists():
                warnings.warn(
                    f"SSH key path does not exist: {v}",
                    UserWarning,
                )
            elif not path.is_file():
                warnings.warn(
                    f"SSH key path is not a file: {v}",
                    UserWarning,
                )
        return v


class SyncConfig(BaseModel):
    """Defaults used while syncing."""

    stash_commit_template: str = Field(
        default="chore: sync stash {ref}",
        description="Commit message when no stash message is given. Placeholder: {ref}",
    )
    patch_commit_template: str = Field(
        default="sync: apply patch {label}",
        description="Commit message when no patch message is given. Placeholder: {label}",
    )

    @field_validator("stash_commit_template", "patch_commit_template")
    @classmethod
    def validate_template(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("commit message template must not be blank")
        try:
            v.format(ref="", label="")
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(
                f"commit message template has an unknown placeholder or bad braces ({e}); "
                "only {ref} and {label} are available"
            ) from e
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.branchsync/logs)",
    )
    max_bytes: int = Field(
        default=10485760,  # 10MB
        ge=0,
        description="Maximum log file size in bytes",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log directory doesn't exist (will be created on use)."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class BranchSyncConfig(BaseModel):
    """Root configuration."""

    model_config = ConfigDict(extra="ignore")

    git: GitConfig = Field(default_factory=GitConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "BranchSyncConfig":
        return cls()
