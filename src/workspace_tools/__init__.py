"""
Workspace Tools - sandboxed filesystem operations for automation agents.

This package provides guarded file, directory and search operations that
agents can call by name. Every operation is confined to a workspace root,
rate limited per agent, backed up before destructive changes and logged.
"""

__version__ = "0.1.0"

from workspace_tools.filesystem import (
    BackupManager,
    DirectoryOperations,
    FileOperations,
    FileSystemError,
    PathValidator,
    RateLimiter,
    SearchCache,
    SearchOperations,
    WorkspaceBoundary,
    WorkspaceTools,
)

from workspace_tools.settings import (
    WorkspaceToolsConfig,
    load_config,
)

__all__ = [
    # Version
    "__version__",
    # Tools
    "WorkspaceTools",
    "FileOperations",
    "DirectoryOperations",
    "SearchOperations",
    # Guards
    "WorkspaceBoundary",
    "PathValidator",
    "RateLimiter",
    "BackupManager",
    "SearchCache",
    "FileSystemError",
    # Settings
    "WorkspaceToolsConfig",
    "load_config",
]
