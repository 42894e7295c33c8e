"""
Workspace operation models.

This module defines Pydantic models for the parameters and results of every
workspace operation. Parameter models are strict: unknown fields and
missing required fields are rejected before an operation runs.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")
_OCTAL_MODE = re.compile(r"^(0o)?[0-7]{3,4}$")


def utc_timestamp() -> str:
    """Current time as an ISO 8601 UTC string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def isoformat(epoch_seconds: float) -> str:
    """ISO 8601 UTC string for a POSIX timestamp."""
    return (
        datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
        .isoformat()
        .replace("+00:00", "Z")
    )


def format_size(size: float) -> str:
    """Human-readable size, e.g. 1536 -> '1.50 KB'."""
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{size:.2f} {_SIZE_UNITS[unit]}"


class MatchType(str, Enum):
    """How a file name matched a search pattern."""

    EXACT = "exact"
    PARTIAL = "partial"
    PATTERN = "pattern"


class CompareMode(str, Enum):
    """Identity key used to group duplicate files."""

    HASH = "hash"
    NAME = "name"
    SIZE_NAME = "size-name"


# =============================================================================
# Base models
# =============================================================================


class OperationParams(BaseModel):
    """Base for operation parameters."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class AgentParams(OperationParams):
    """Parameters of an operation performed on behalf of an agent."""

    agent: str = Field(min_length=1, description="Identifier of the calling agent")


class ToolResult(BaseModel):
    """Fields shared by every operation result."""

    success: bool = Field(description="Whether the operation succeeded")
    timestamp: str = Field(
        default_factory=utc_timestamp, description="ISO 8601 UTC time of the request"
    )
    error: Optional[str] = Field(default=None, description="Failure reason")
    error_type: Optional[str] = Field(default=None, description="Failure category")


class BackupOutcome(BaseModel):
    """Backup fields reported by mutating operations."""

    backup_path: Optional[str] = Field(
        default=None, description="Backup created before the mutation"
    )
    backup_skipped: bool = Field(
        default=False,
        description="A backup was requested but could not be made; the operation proceeded without one",
    )


# =============================================================================
# File operations
# =============================================================================


class RenameFileParams(AgentParams):
    old_path: str = Field(min_length=1, description="Current workspace-relative path")
    new_path: str = Field(min_length=1, description="New workspace-relative path")
    overwrite: bool = Field(default=False, description="Replace an existing destination")
    create_backup: bool = Field(
        default=True, description="Back up a replaced destination first"
    )


class RenameFileResult(ToolResult, BackupOutcome):
    old_path: str
    new_path: str


class DeleteFileParams(AgentParams):
    path: str = Field(min_length=1, description="Workspace-relative file path")
    confirm: bool = Field(default=False, strict=True, description="Must be true to delete")
    create_backup: bool = Field(default=True, description="Back up the file first")


class DeleteFileResult(ToolResult, BackupOutcome):
    path: str


class CopyFileParams(AgentParams):
    source_path: str = Field(min_length=1, description="Workspace-relative source file")
    dest_path: str = Field(min_length=1, description="Workspace-relative destination")
    overwrite: bool = Field(default=False, description="Replace an existing destination")
    create_backup: bool = Field(
        default=True, description="Back up a replaced destination first"
    )
    preserve_timestamps: bool = Field(
        default=True, description="Copy access and modification times"
    )


class CopyFileResult(ToolResult, BackupOutcome):
    source_path: str
    dest_path: str


class FileExistsParams(OperationParams):
    path: str = Field(min_length=1, description="Workspace-relative path")


class FileExistsResult(ToolResult):
    path: str
    exists: bool = False
    is_file: Optional[bool] = None
    is_directory: Optional[bool] = None


class GetFileInfoParams(AgentParams):
    path: str = Field(min_length=1, description="Workspace-relative path")


class FileInfoResult(ToolResult):
    path: str
    exists: bool = False
    size: int = 0
    size_formatted: str = "0.00 B"
    created: Optional[str] = None
    modified: Optional[str] = None
    accessed: Optional[str] = None
    is_file: bool = False
    is_directory: bool = False
    extension: str = ""
    mime_type: Optional[str] = None
    permissions: Optional[str] = None


# =============================================================================
# Directory operations
# =============================================================================


class FileEntry(BaseModel):
    """One entry of a directory listing."""

    name: str
    path: str = Field(description="Path relative to the listed directory")
    type: Literal["file", "directory"]
    size: int
    size_formatted: str
    modified: str
    extension: str = ""
    depth: int = 0


class ListDirectoryParams(AgentParams):
    path: str = Field(default="", description="Directory to list (empty = workspace root)")
    recursive: bool = False
    include_hidden: bool = False
    file_types: Optional[list[str]] = Field(
        default=None, description="Extensions to include, e.g. ['.py']"
    )
    sort_by: Literal["name", "size", "modified"] = "name"
    sort_order: Literal["asc", "desc"] = "asc"
    max_depth: Optional[int] = Field(
        default=None, ge=1, description="Depth limit when recursive (default 10)"
    )
    pattern: Optional[str] = Field(default=None, description="Glob filter on entry paths")


class ListDirectoryResult(ToolResult):
    path: str
    files: list[FileEntry] = Field(default_factory=list)
    total_files: int = 0
    total_directories: int = 0
    total_size: int = 0
    total_size_formatted: str = "0.00 B"
    depth: int = 0


class CreateDirectoryParams(AgentParams):
    path: str = Field(min_length=1, description="Workspace-relative directory path")
    recursive: bool = Field(default=True, description="Create missing parents")
    mode: Optional[str] = Field(default=None, description="Octal permissions, e.g. '755'")

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _OCTAL_MODE.match(v):
            raise ValueError(f"mode must be an octal permission string, got {v!r}")
        return v


class CreateDirectoryResult(ToolResult):
    path: str
    created: list[str] = Field(default_factory=list)
    permissions: Optional[str] = None


class DeleteDirectoryParams(AgentParams):
    path: str = Field(min_length=1, description="Workspace-relative directory path")
    confirm: bool = Field(default=False, strict=True, description="Must be true to delete")
    recursive: bool = Field(default=False, description="Allow deleting a non-empty directory")
    create_backup: bool = Field(default=True, description="Archive the directory first")
    force: bool = Field(default=False, strict=True, description="Confirm deletion of contents")


class DeleteDirectoryResult(ToolResult, BackupOutcome):
    path: str
    files_deleted: int = 0
    directories_deleted: int = 0
    total_size: int = 0
    total_size_formatted: str = "0.00 B"


class MoveDirectoryParams(AgentParams):
    source_path: str = Field(min_length=1, description="Workspace-relative source directory")
    dest_path: str = Field(min_length=1, description="Workspace-relative destination")
    overwrite: bool = Field(default=False, description="Replace an existing destination")
    create_backup: bool = Field(
        default=True, description="Archive a replaced destination first"
    )
    merge: bool = Field(default=False, description="Merge into an existing destination")


class MoveDirectoryResult(ToolResult, BackupOutcome):
    source_path: str
    dest_path: str
    files_moved: int = 0
    directories_moved: int = 0
    total_size: int = 0
    merged: bool = False


# =============================================================================
# Search operations
# =============================================================================


class SearchFilesParams(AgentParams):
    pattern: str = Field(min_length=1, description="Name, glob or regular expression")
    path: str = Field(default="", description="Directory to search (empty = workspace root)")
    recursive: bool = True
    case_sensitive: bool = False
    include_hidden: bool = False
    file_types: Optional[list[str]] = None
    max_results: Optional[int] = Field(default=None, ge=1)
    exclude_patterns: Optional[list[str]] = None
    use_regex: bool = False


class SearchFileEntry(BaseModel):
    path: str
    name: str
    size: int
    size_formatted: str
    modified: str
    extension: str
    relevance_score: float
    match_type: MatchType


class SearchFilesResult(ToolResult):
    query: str
    results: list[SearchFileEntry] = Field(default_factory=list)
    total_found: int = 0
    total_returned: int = 0
    search_time: float = Field(default=0.0, description="Elapsed time (milliseconds)")
    truncated: bool = False


class SearchContentParams(AgentParams):
    query: str = Field(min_length=1, description="Text or regular expression to find")
    path: str = Field(default="", description="Directory to search (empty = workspace root)")
    recursive: bool = True
    case_sensitive: bool = False
    use_regex: bool = False
    file_types: Optional[list[str]] = None
    max_results: Optional[int] = Field(default=None, ge=1)
    max_file_size: Optional[int] = Field(default=None, ge=1)
    context: int = Field(default=2, ge=0, le=100, description="Context lines per match")
    exclude_patterns: Optional[list[str]] = None
    whole_word: bool = False


class Match(BaseModel):
    """One matching line with its surrounding context."""

    line: int = Field(description="1-based line number")
    column: int = Field(description="1-based column of the first match")
    text: str
    before: list[str] = Field(default_factory=list)
    after: list[str] = Field(default_factory=list)
    matched_text: str


class ContentMatch(BaseModel):
    file: str
    matches: list[Match]
    match_count: int


class SearchContentResult(ToolResult):
    query: str
    results: list[ContentMatch] = Field(default_factory=list)
    total_files: int = Field(default=0, description="Files scanned")
    total_matches: int = 0
    files_with_matches: int = 0
    search_time: float = 0.0
    truncated: bool = False


class FindDuplicatesParams(AgentParams):
    path: str = Field(default="", description="Directory to scan (empty = workspace root)")
    recursive: bool = True
    compare_by: CompareMode = CompareMode.HASH
    min_size: int = Field(default=1024, ge=0, description="Ignore smaller files (bytes)")
    max_size: Optional[int] = Field(default=None, ge=0)
    file_types: Optional[list[str]] = None
    exclude_patterns: Optional[list[str]] = None


class DuplicateFile(BaseModel):
    path: str
    modified: str
    original: bool


class DuplicateGroup(BaseModel):
    files: list[DuplicateFile]
    count: int
    size: int
    size_formatted: str
    hash: Optional[str] = None
    key: str = Field(description="Comparison key shared by every member")
    total_wasted: int


class FindDuplicatesResult(ToolResult):
    duplicate_groups: list[DuplicateGroup] = Field(default_factory=list)
    total_duplicates: int = 0
    total_groups: int = 0
    wasted_space: int = 0
    wasted_space_formatted: str = "0.00 B"
    search_time: float = 0.0
