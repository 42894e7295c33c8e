"""
Guarded directory operations: list, create, delete, move.
"""

import asyncio
import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from workspace_tools.filesystem.audit import OperationLogger
from workspace_tools.filesystem.backup import BackupManager
from workspace_tools.filesystem.base import GuardedOperations
from workspace_tools.filesystem.exceptions import (
    ConfirmationRequiredError,
    DestinationExistsError,
    InvalidParameterError,
    SourceNotFoundError,
)
from workspace_tools.filesystem.models import (
    CreateDirectoryParams,
    CreateDirectoryResult,
    DeleteDirectoryParams,
    DeleteDirectoryResult,
    FileEntry,
    ListDirectoryParams,
    ListDirectoryResult,
    MoveDirectoryParams,
    MoveDirectoryResult,
    format_size,
    isoformat,
    utc_timestamp,
)
from workspace_tools.filesystem.rate_limiter import RateLimiter
from workspace_tools.filesystem.walker import GlobWalker, matches_glob
from workspace_tools.settings.config import WorkspaceToolsConfig

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10


@dataclass
class DirectoryContents:
    """Recursive totals for a directory (the directory itself excluded)."""

    files: int = 0
    directories: int = 0
    size: int = 0

    @property
    def total(self) -> int:
        return self.files + self.directories


def count_contents(path: Path) -> DirectoryContents:
    """Count files, subdirectories and bytes beneath a directory without following links."""
    contents = DirectoryContents()
    for current, dirs, files in os.walk(path):
        # os.walk lists symlinked directories in dirs but does not descend
        for name in dirs:
            entry = Path(current) / name
            if entry.is_symlink():
                contents.files += 1
            else:
                contents.directories += 1
        for name in files:
            contents.files += 1
            try:
                contents.size += (Path(current) / name).lstat().st_size
            except OSError:
                pass
    return contents


def merge_directories(source: Path, dest: Path) -> None:
    """Copy source into dest (replacing same-named files), then remove source."""
    for current, dirs, files in os.walk(source):
        target = dest / Path(current).relative_to(source)
        target.mkdir(parents=True, exist_ok=True)
        for name in files:
            shutil.copy2(Path(current) / name, target / name, follow_symlinks=False)
        for name in dirs:
            link = Path(current) / name
            if link.is_symlink():
                shutil.copy2(link, target / name, follow_symlinks=False)
    shutil.rmtree(source)


class DirectoryOperations(GuardedOperations):
    """
    Directory manipulation inside the workspace.

    Deleting or replacing a non-empty directory archives it first (see
    BackupManager.create_directory_backup) unless the caller opts out.

    Usage:
        directories = DirectoryOperations(config)

        listing = await directories.list_directory(
            ListDirectoryParams(agent="agent-1", path="src", recursive=True)
        )
        for entry in listing.files:
            print(entry.type, entry.path, entry.size_formatted)
    """

    def __init__(
        self,
        config: WorkspaceToolsConfig,
        rate_limiter: Optional[RateLimiter] = None,
        audit: Optional[OperationLogger] = None,
        backups: Optional[BackupManager] = None,
    ):
        """
        Initialize directory operations.

        Args:
            config: Complete configuration
            rate_limiter: Shared rate limiter
            audit: Outcome logger
            backups: Backup manager (created from config.files if omitted)
        """
        super().__init__(config, rate_limiter, audit)
        self.backups = backups or BackupManager(config.files)

    async def list_directory(self, params: ListDirectoryParams) -> ListDirectoryResult:
        """
        List a directory with filtering and sorting.

        Directories always sort before files; within each group entries
        are ordered by name, size or modification time.
        """
        operation = "list_directory"
        started = time.perf_counter()
        timestamp = utc_timestamp()

        try:
            self.check_rate(operation, params.agent)

            base = self.resolve_directory(params.path)
            depth = (params.max_depth or DEFAULT_MAX_DEPTH) if params.recursive else 1
            walker = GlobWalker(
                include_hidden=params.include_hidden,
                recursive=params.recursive,
                max_depth=depth,
                file_types=params.file_types,
                include_dirs=True,
                default_excludes=False,
                skip=self.validator.is_protected_path,
            )
            entries = await asyncio.to_thread(lambda: list(walker.walk(base)))
            if params.pattern:
                entries = [e for e in entries if matches_glob(e.relative, params.pattern)]

            files = [
                FileEntry(
                    name=entry.name,
                    path=entry.relative,
                    type="directory" if entry.is_dir else "file",
                    size=entry.size,
                    size_formatted=format_size(entry.size),
                    modified=isoformat(entry.modified),
                    extension=entry.extension,
                    depth=entry.depth - 1,
                )
                for entry in entries
            ]
            files = self._sort(files, params.sort_by, params.sort_order == "desc")

            total_size = sum(f.size for f in files if f.type == "file")
            self.record(params.agent, operation, self.log_params(params), started)
            return ListDirectoryResult(
                success=True,
                timestamp=timestamp,
                path=params.path,
                files=files,
                total_files=sum(1 for f in files if f.type == "file"),
                total_directories=sum(1 for f in files if f.type == "directory"),
                total_size=total_size,
                total_size_formatted=format_size(total_size),
                depth=depth,
            )

        except Exception as e:
            self.record(params.agent, operation, self.log_params(params), started, e)
            return self.failure(ListDirectoryResult, e, timestamp, path=params.path)

    async def create_directory(self, params: CreateDirectoryParams) -> CreateDirectoryResult:
        """Create a directory (and missing parents when recursive)."""
        operation = "create_directory"
        started = time.perf_counter()
        timestamp = utc_timestamp()

        try:
            self.check_rate(operation, params.agent)

            path = self.validator.resolve(params.path)
            if path.exists() or path.is_symlink():
                raise DestinationExistsError(params.path, "Directory already exists")
            if not params.recursive and not path.parent.is_dir():
                raise SourceNotFoundError(self.relative(path.parent) or ".", "Parent directory")

            missing = [path]
            for parent in path.parents:
                if parent == self.root or parent.exists():
                    break
                missing.append(parent)
            created = [self.relative(p) for p in reversed(missing)]

            mode = int(params.mode, 8) if params.mode else None
            if mode is None:
                path.mkdir(parents=params.recursive)
            else:
                path.mkdir(mode=mode, parents=params.recursive)
                # mkdir honours the umask
                path.chmod(mode)
            logger.info(f"Created directory {params.path}")

            self.record(params.agent, operation, self.log_params(params), started)
            return CreateDirectoryResult(
                success=True,
                timestamp=timestamp,
                path=params.path,
                created=created,
                permissions=f"{path.stat().st_mode & 0o777:03o}",
            )

        except Exception as e:
            self.record(params.agent, operation, self.log_params(params), started, e)
            return self.failure(CreateDirectoryResult, e, timestamp, path=params.path)

    async def delete_directory(self, params: DeleteDirectoryParams) -> DeleteDirectoryResult:
        """
        Delete a directory. Requires confirm=True; a non-empty directory
        also needs recursive=True and force=True.
        """
        operation = "delete_directory"
        started = time.perf_counter()
        timestamp = utc_timestamp()

        try:
            self.check_rate(operation, params.agent)

            if params.confirm is not True:
                raise ConfirmationRequiredError(
                    "confirm parameter must be explicitly set to true to delete a directory"
                )

            path = self.validator.resolve(params.path)
            if path == self.root:
                raise InvalidParameterError("The workspace root cannot be deleted")
            if path.is_symlink() or not path.is_dir():
                raise SourceNotFoundError(params.path, "Directory")
            self.guard_protected_contents(path, params.path)

            contents = await asyncio.to_thread(count_contents, path)
            if contents.total and not params.recursive:
                raise InvalidParameterError(
                    "Directory is not empty. Use recursive: true to delete contents"
                )
            if contents.total and not params.force:
                raise ConfirmationRequiredError(
                    f"Directory contains {contents.total} items. Use force: true to confirm deletion"
                )

            backup_path, skipped = None, False
            if params.create_backup and contents.total:
                backup_path, skipped = await asyncio.to_thread(self.take_backup, path)

            if contents.total:
                await asyncio.to_thread(shutil.rmtree, path)
            else:
                path.rmdir()
            logger.info(f"Deleted directory {params.path} ({contents.total} items)")

            self.record(params.agent, operation, self.log_params(params), started)
            return DeleteDirectoryResult(
                success=True,
                timestamp=timestamp,
                path=params.path,
                backup_path=backup_path,
                backup_skipped=skipped,
                files_deleted=contents.files,
                directories_deleted=contents.directories,
                total_size=contents.size,
                total_size_formatted=format_size(contents.size),
            )

        except Exception as e:
            self.record(params.agent, operation, self.log_params(params), started, e)
            return self.failure(DeleteDirectoryResult, e, timestamp, path=params.path)

    async def move_directory(self, params: MoveDirectoryParams) -> MoveDirectoryResult:
        """
        Move or rename a directory.

        An existing destination is an error unless overwrite (replace it)
        or merge (copy the source into it, then remove the source) is set.
        """
        operation = "move_directory"
        started = time.perf_counter()
        timestamp = utc_timestamp()

        try:
            self.check_rate(operation, params.agent)

            source = self.validator.resolve(params.source_path, "source path")
            dest = self.validator.resolve(params.dest_path, "destination path")
            if source == dest:
                raise InvalidParameterError("Source and destination paths are identical")
            if source == self.root:
                raise InvalidParameterError("The workspace root cannot be moved")
            if source in dest.parents:
                raise InvalidParameterError("Cannot move a directory into itself")
            if source.is_symlink() or not source.is_dir():
                raise SourceNotFoundError(params.source_path, "Source directory")
            self.guard_protected_contents(source, params.source_path)

            contents = await asyncio.to_thread(count_contents, source)

            backup_path, skipped = None, False
            merged = False
            if dest.exists() or dest.is_symlink():
                if not params.overwrite and not params.merge:
                    raise DestinationExistsError(params.dest_path, "Use overwrite or merge")
                if params.merge and not dest.is_dir():
                    raise InvalidParameterError(
                        f"Cannot merge into a non-directory: {params.dest_path}"
                    )
                self.guard_protected_contents(dest, params.dest_path)
                if params.create_backup:
                    backup_path, skipped = await asyncio.to_thread(self.take_backup, dest)

                if params.merge:
                    await asyncio.to_thread(merge_directories, source, dest)
                    merged = True
                elif dest.is_dir() and not dest.is_symlink():
                    await asyncio.to_thread(shutil.rmtree, dest)
                else:
                    dest.unlink()

            if not merged:
                dest.parent.mkdir(parents=True, exist_ok=True)
                await asyncio.to_thread(shutil.move, str(source), str(dest))
            logger.info(f"Moved directory {params.source_path} -> {params.dest_path}")

            self.record(params.agent, operation, self.log_params(params), started)
            return MoveDirectoryResult(
                success=True,
                timestamp=timestamp,
                source_path=params.source_path,
                dest_path=params.dest_path,
                backup_path=backup_path,
                backup_skipped=skipped,
                files_moved=contents.files,
                directories_moved=contents.directories,
                total_size=contents.size,
                merged=merged,
            )

        except Exception as e:
            self.record(params.agent, operation, self.log_params(params), started, e)
            return self.failure(
                MoveDirectoryResult,
                e,
                timestamp,
                source_path=params.source_path,
                dest_path=params.dest_path,
            )

    @staticmethod
    def _sort(files: list[FileEntry], sort_by: str, descending: bool) -> list[FileEntry]:
        if sort_by == "size":
            key = lambda f: f.size
        elif sort_by == "modified":
            key = lambda f: f.modified
        else:
            key = lambda f: (f.name.lower(), f.name)

        directories = sorted((f for f in files if f.type == "directory"), key=key, reverse=descending)
        regular = sorted((f for f in files if f.type == "file"), key=key, reverse=descending)
        return directories + regular
