"""
Sandboxed filesystem operations.

This module provides file, directory and search operations confined to a
workspace root, with per-agent rate limiting, backups before destructive
changes, cached search results and structured outcome logging.
"""

from workspace_tools.filesystem.backup import BackupManager, BackupRecord, BackupResult
from workspace_tools.filesystem.cache import SearchCache
from workspace_tools.filesystem.directories import DirectoryOperations
from workspace_tools.filesystem.exceptions import (
    BackupError,
    ConfirmationRequiredError,
    DestinationExistsError,
    FileAccessDeniedError,
    FileSystemError,
    InvalidParameterError,
    PathValidationError,
    RateLimitExceededError,
    SearchError,
    SourceNotFoundError,
)
from workspace_tools.filesystem.files import FileOperations
from workspace_tools.filesystem.rate_limiter import RateLimiter, RateLimitResult, RateUsage
from workspace_tools.filesystem.search import SearchOperations
from workspace_tools.filesystem.tools import WorkspaceTools
from workspace_tools.filesystem.validator import PathValidator, PathVerdict, WorkspaceBoundary

__all__ = [
    # Guards
    "WorkspaceBoundary",
    "PathValidator",
    "PathVerdict",
    "RateLimiter",
    "RateLimitResult",
    "RateUsage",
    "BackupManager",
    "BackupRecord",
    "BackupResult",
    "SearchCache",
    # Operations
    "FileOperations",
    "DirectoryOperations",
    "SearchOperations",
    "WorkspaceTools",
    # Exceptions
    "FileSystemError",
    "InvalidParameterError",
    "FileAccessDeniedError",
    "PathValidationError",
    "RateLimitExceededError",
    "ConfirmationRequiredError",
    "SourceNotFoundError",
    "DestinationExistsError",
    "BackupError",
    "SearchError",
]
