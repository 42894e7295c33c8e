"""
Workspace tools configuration.

This module provides the configuration objects shared by every component
(path validation, rate limiting, backups, search) and the loaders that
build them from defaults, a config file and environment variables.

Configuration objects are frozen: a component receives its section at
construction time and never observes later changes.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES = (
    ".workspace-tools.yaml",
    ".workspace-tools.yml",
    ".workspace-tools.json",
)

DEFAULT_PROTECTED_PATHS = (
    "node_modules",
    ".git",
    "dist",
    ".env",
    "build",
    "coverage",
)

DEFAULT_RATE_LIMITS: dict[str, dict[str, int]] = {
    # File operations
    "rename_file": {"max": 50, "window_ms": 60_000},
    "delete_file": {"max": 20, "window_ms": 60_000},
    "copy_file": {"max": 50, "window_ms": 60_000},
    "get_file_info": {"max": 200, "window_ms": 60_000},
    # Directory operations
    "list_directory": {"max": 100, "window_ms": 60_000},
    "create_directory": {"max": 50, "window_ms": 60_000},
    "delete_directory": {"max": 10, "window_ms": 60_000},
    "move_directory": {"max": 20, "window_ms": 60_000},
    # Search operations
    "search_files": {"max": 100, "window_ms": 60_000},
    "search_content": {"max": 50, "window_ms": 60_000},
    "find_duplicates": {"max": 20, "window_ms": 60_000},
}


class WorkspaceConfig(BaseModel):
    """
    The sandbox root and its protected zones.

    Example:
        ```python
        config = WorkspaceConfig(
            dir="/srv/agents/project",
            protected_paths=[".git", "secrets"],
        )
        ```
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    dir: Path = Field(
        default_factory=Path.cwd,
        validate_default=True,
        description="Workspace root directory (resolved to an absolute path)",
    )
    protected_paths: tuple[str, ...] = Field(
        default=DEFAULT_PROTECTED_PATHS,
        description="Workspace-relative paths that are never accessible",
    )

    @field_validator("dir", mode="before")
    @classmethod
    def resolve_dir(cls, v):
        """Resolve the workspace directory to an absolute path."""
        return Path(v).expanduser().resolve()

    @field_validator("protected_paths", mode="before")
    @classmethod
    def normalize_protected(cls, v):
        """Strip leading './' and trailing separators, drop empty entries."""
        normalized = []
        for entry in v or ():
            entry = str(entry).replace("\\", "/").strip()
            while entry.startswith("./"):
                entry = entry[2:]
            entry = entry.strip("/")
            if entry and entry != ".":
                normalized.append(entry)
        return tuple(normalized)


class SearchConfig(BaseModel):
    """Search and duplicate detection settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_file_size: int = Field(
        default=10 * 1024 * 1024,  # 10 MB
        ge=1,
        description="Files larger than this are skipped by content search (bytes)",
    )
    max_results: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Default maximum number of search results",
    )
    skip_patterns: tuple[str, ...] = Field(
        default=("node_modules/**", ".git/**", "dist/**", "build/**", "coverage/**"),
        description="Glob patterns always excluded from enumeration",
    )
    cache_enabled: bool = Field(
        default=True,
        description="Cache search_files and find_duplicates results",
    )
    cache_ttl_ms: int = Field(
        default=300_000,  # 5 minutes
        ge=0,
        description="Time-to-live of cached search results (milliseconds)",
    )
    max_concurrency: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Maximum number of files scanned concurrently",
    )


class FilesConfig(BaseModel):
    """Backup settings for destructive file operations."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_enabled: bool = Field(
        default=True,
        description="Create backups before destructive operations",
    )
    backup_dir: Path = Field(
        default=Path("~/.workspace-tools/backups"),
        validate_default=True,
        description="Backup root directory; must be outside the workspace",
    )
    backup_retention_days: int = Field(
        default=7,
        ge=1,
        description="Backups older than this are removed by retention sweeps",
    )

    @field_validator("backup_dir", mode="before")
    @classmethod
    def resolve_backup_dir(cls, v):
        """Resolve the backup directory to an absolute path."""
        return Path(v).expanduser().resolve()


class RateLimit(BaseModel):
    """Sliding-window limit for one operation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max: int = Field(ge=1, description="Maximum requests per window")
    window_ms: int = Field(ge=1, description="Window duration (milliseconds)")


class RateLimitsConfig(BaseModel):
    """Per-operation rate limits."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(
        default=True,
        description="Enable rate limiting (False bypasses all checks)",
    )
    limits: dict[str, RateLimit] = Field(
        default_factory=lambda: {
            op: RateLimit(**limit) for op, limit in DEFAULT_RATE_LIMITS.items()
        },
        description="Operation name -> limit. Operations without an entry are unlimited.",
    )


class LoggingConfig(BaseModel):
    """Logging settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    level: Literal["DEBUG", "INFO", "WARN", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    log_dir: Optional[Path] = Field(
        default=None,
        description="Directory for JSON-lines operation logs (None = console only)",
    )
    retention_days: int = Field(
        default=30,
        ge=1,
        description="Daily log files older than this are removed",
    )

    @field_validator("level", mode="before")
    @classmethod
    def uppercase_level(cls, v):
        return str(v).upper()


class WorkspaceToolsConfig(BaseModel):
    """
    Complete workspace tools configuration.

    Example YAML configuration file:
        ```yaml
        workspace:
          dir: /srv/agents/project
          protected_paths: [".git", ".env", "node_modules"]

        search:
          max_results: 200
          cache_ttl_ms: 60000

        files:
          backup_dir: /var/backups/workspace-tools
          backup_retention_days: 14

        rate_limits:
          enabled: true
          limits:
            delete_file: {max: 10, window_ms: 60000}

        logging:
          level: DEBUG
          log_dir: /var/log/workspace-tools
        ```
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    workspace: WorkspaceConfig = Field(
        default_factory=WorkspaceConfig,
        description="Workspace boundary",
    )
    search: SearchConfig = Field(
        default_factory=SearchConfig,
        description="Search settings",
    )
    files: FilesConfig = Field(
        default_factory=FilesConfig,
        description="Backup settings",
    )
    rate_limits: RateLimitsConfig = Field(
        default_factory=RateLimitsConfig,
        description="Rate limiting settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging settings",
    )

    @model_validator(mode="after")
    def backup_dir_outside_workspace(self) -> "WorkspaceToolsConfig":
        """Backups must never live inside the tree they protect."""
        workspace = self.workspace.dir
        backup_dir = self.files.backup_dir
        if backup_dir == workspace or workspace in backup_dir.parents:
            raise ValueError(
                f"Backup directory {backup_dir} must be outside the workspace {workspace}"
            )
        return self

    def __str__(self) -> str:
        return (
            f"WorkspaceToolsConfig(workspace={self.workspace.dir}, "
            f"backups={self.files.backup_dir})"
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "WorkspaceToolsConfig":
        """
        Load configuration from a YAML or JSON file.

        Args:
            path: Path to configuration file

        Returns:
            WorkspaceToolsConfig instance

        Raises:
            FileNotFoundError: If the config file doesn't exist
        """
        return cls.model_validate(_read_config_file(path))

    @classmethod
    def from_dict(cls, data: dict) -> "WorkspaceToolsConfig":
        """
        Create configuration from a dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            WorkspaceToolsConfig instance
        """
        return cls.model_validate(data)

    def to_dict(self) -> dict:
        """Export configuration to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def save(self, path: Union[str, Path], format: str = "yaml") -> None:
        """
        Save configuration to a file.

        Args:
            path: Output file path
            format: Output format ('yaml' or 'json')
        """
        path = Path(path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.to_dict()

        if format == "yaml":
            content = yaml.dump(data, default_flow_style=False, sort_keys=False)
        else:
            content = json.dumps(data, indent=2)

        path.write_text(content)


def load_config(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> WorkspaceToolsConfig:
    """
    Load configuration with priority: environment > config file > defaults.

    If no path is given, the first of DEFAULT_CONFIG_FILES found in the
    current directory is used (if any).

    Environment variables:
        WORKSPACE_DIR - Workspace root directory
        BACKUP_ENABLED - "false" disables backups
        BACKUP_DIR - Backup root directory
        BACKUP_RETENTION - Backup retention (days)
        RATE_LIMIT_ENABLED - "false" disables rate limiting
        SEARCH_CACHE_TTL - Search cache TTL (milliseconds)
        LOG_LEVEL - DEBUG, INFO, WARN or ERROR
        LOG_DIR - Directory for operation logs
        LOG_RETENTION - Log retention (days)

    Args:
        path: Optional configuration file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        WorkspaceToolsConfig instance
    """
    data: dict[str, Any] = {}

    if path is None:
        for candidate in DEFAULT_CONFIG_FILES:
            if Path(candidate).is_file():
                path = candidate
                break

    if path is not None:
        logger.debug(f"Loading configuration from {path}")
        _deep_merge(data, _read_config_file(path))

    _apply_environment(data, os.environ if environ is None else environ)

    return WorkspaceToolsConfig.model_validate(data)


def _read_config_file(path: Union[str, Path]) -> dict:
    path = Path(path).expanduser().resolve()

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    content = path.read_text()

    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(content)
    elif path.suffix == ".json":
        data = json.loads(content)
    else:
        # Try YAML first, then JSON
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError:
            data = json.loads(content)

    return data or {}


def _deep_merge(target: dict, source: Mapping[str, Any]) -> None:
    """Merge source into target; nested mappings merge, everything else replaces."""
    for key, value in source.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        elif isinstance(value, Mapping):
            target[key] = dict(value)
        else:
            target[key] = value


def _apply_environment(data: dict, environ: Mapping[str, str]) -> None:
    def section(name: str) -> dict:
        return data.setdefault(name, {})

    if environ.get("WORKSPACE_DIR"):
        section("workspace")["dir"] = environ["WORKSPACE_DIR"]

    if environ.get("BACKUP_ENABLED", "").lower() == "false":
        section("files")["backup_enabled"] = False
    if environ.get("BACKUP_DIR"):
        section("files")["backup_dir"] = environ["BACKUP_DIR"]
    if environ.get("BACKUP_RETENTION"):
        section("files")["backup_retention_days"] = int(environ["BACKUP_RETENTION"])

    if environ.get("RATE_LIMIT_ENABLED", "").lower() == "false":
        section("rate_limits")["enabled"] = False

    if environ.get("SEARCH_CACHE_TTL"):
        section("search")["cache_ttl_ms"] = int(environ["SEARCH_CACHE_TTL"])

    level = environ.get("LOG_LEVEL", "").upper()
    if level in ("DEBUG", "INFO", "WARN", "WARNING", "ERROR"):
        section("logging")["level"] = level
    if environ.get("LOG_DIR"):
        section("logging")["log_dir"] = environ["LOG_DIR"]
    if environ.get("LOG_RETENTION"):
        section("logging")["retention_days"] = int(environ["LOG_RETENTION"])
