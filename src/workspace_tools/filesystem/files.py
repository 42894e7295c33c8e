"""
Guarded file operations: rename, delete, copy, existence and metadata.
"""

import logging
import mimetypes
import shutil
import time
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
    CopyFileParams,
    CopyFileResult,
    DeleteFileParams,
    DeleteFileResult,
    FileExistsParams,
    FileExistsResult,
    FileInfoResult,
    GetFileInfoParams,
    RenameFileParams,
    RenameFileResult,
    format_size,
    isoformat,
    utc_timestamp,
)
from workspace_tools.filesystem.rate_limiter import RateLimiter
from workspace_tools.settings.config import WorkspaceToolsConfig

logger = logging.getLogger(__name__)


class FileOperations(GuardedOperations):
    """
    File manipulation inside the workspace.

    Destructive steps (deleting a file, replacing a destination) are
    preceded by a backup unless the caller opts out. A backup that fails
    does not block the operation; the result reports backup_skipped=True.

    Usage:
        files = FileOperations(config)

        result = await files.delete_file(
            DeleteFileParams(agent="agent-1", path="tmp/old.log", confirm=True)
        )
        if result.success:
            print("backup at", result.backup_path)
    """

    def __init__(
        self,
        config: WorkspaceToolsConfig,
        rate_limiter: Optional[RateLimiter] = None,
        audit: Optional[OperationLogger] = None,
        backups: Optional[BackupManager] = None,
    ):
        """
        Initialize file operations.

        Args:
            config: Complete configuration
            rate_limiter: Shared rate limiter
            audit: Outcome logger
            backups: Backup manager (created from config.files if omitted)
        """
        super().__init__(config, rate_limiter, audit)
        self.backups = backups or BackupManager(config.files)

    async def rename_file(self, params: RenameFileParams) -> RenameFileResult:
        """Rename or move a file, optionally replacing the destination."""
        operation = "rename_file"
        started = time.perf_counter()
        timestamp = utc_timestamp()

        try:
            self.check_rate(operation, params.agent)

            old = self.validator.resolve(params.old_path, "old path")
            new = self.validator.resolve(params.new_path, "new path")
            if old == new:
                raise InvalidParameterError("Source and destination paths are identical")

            self._require_file(old, params.old_path, "use move_directory for directories")

            backup_path, skipped = None, False
            if new.exists():
                if not params.overwrite:
                    raise DestinationExistsError(params.new_path)
                if new.is_dir():
                    raise InvalidParameterError(
                        f"Destination is a directory: {params.new_path}"
                    )
                if params.create_backup:
                    backup_path, skipped = self.take_backup(new)

            new.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(old), str(new))
            logger.info(f"Renamed {params.old_path} -> {params.new_path}")

            self.record(params.agent, operation, self.log_params(params), started)
            return RenameFileResult(
                success=True,
                timestamp=timestamp,
                old_path=params.old_path,
                new_path=params.new_path,
                backup_path=backup_path,
                backup_skipped=skipped,
            )

        except Exception as e:
            self.record(params.agent, operation, self.log_params(params), started, e)
            return self.failure(
                RenameFileResult,
                e,
                timestamp,
                old_path=params.old_path,
                new_path=params.new_path,
            )

    async def delete_file(self, params: DeleteFileParams) -> DeleteFileResult:
        """Delete a file. Requires confirm=True."""
        operation = "delete_file"
        started = time.perf_counter()
        timestamp = utc_timestamp()

        try:
            self.check_rate(operation, params.agent)

            if params.confirm is not True:
                raise ConfirmationRequiredError(
                    "confirm parameter must be explicitly set to true to delete a file"
                )

            path = self.validator.resolve(params.path)
            self._require_file(path, params.path, "use delete_directory for directories")

            backup_path, skipped = None, False
            if params.create_backup:
                backup_path, skipped = self.take_backup(path)

            path.unlink()
            logger.info(f"Deleted {params.path}")

            self.record(params.agent, operation, self.log_params(params), started)
            return DeleteFileResult(
                success=True,
                timestamp=timestamp,
                path=params.path,
                backup_path=backup_path,
                backup_skipped=skipped,
            )

        except Exception as e:
            self.record(params.agent, operation, self.log_params(params), started, e)
            return self.failure(DeleteFileResult, e, timestamp, path=params.path)

    async def copy_file(self, params: CopyFileParams) -> CopyFileResult:
        """Copy a file, optionally replacing the destination."""
        operation = "copy_file"
        started = time.perf_counter()
        timestamp = utc_timestamp()

        try:
            self.check_rate(operation, params.agent)

            source = self.validator.resolve(params.source_path, "source path")
            dest = self.validator.resolve(params.dest_path, "destination path")
            if source == dest:
                raise InvalidParameterError("Source and destination paths are identical")

            self._require_file(source, params.source_path, "only files can be copied")

            backup_path, skipped = None, False
            if dest.exists():
                if not params.overwrite:
                    raise DestinationExistsError(params.dest_path)
                if dest.is_dir():
                    raise InvalidParameterError(
                        f"Destination is a directory: {params.dest_path}"
                    )
                if params.create_backup:
                    backup_path, skipped = self.take_backup(dest)

            dest.parent.mkdir(parents=True, exist_ok=True)
            if params.preserve_timestamps:
                shutil.copy2(source, dest)
            else:
                shutil.copyfile(source, dest)
                shutil.copymode(source, dest)
            logger.info(f"Copied {params.source_path} -> {params.dest_path}")

            self.record(params.agent, operation, self.log_params(params), started)
            return CopyFileResult(
                success=True,
                timestamp=timestamp,
                source_path=params.source_path,
                dest_path=params.dest_path,
                backup_path=backup_path,
                backup_skipped=skipped,
            )

        except Exception as e:
            self.record(params.agent, operation, self.log_params(params), started, e)
            return self.failure(
                CopyFileResult,
                e,
                timestamp,
                source_path=params.source_path,
                dest_path=params.dest_path,
            )

    async def file_exists(self, params: FileExistsParams) -> FileExistsResult:
        """Check whether a path exists. Not rate limited."""
        timestamp = utc_timestamp()

        try:
            path = self.validator.resolve(params.path)
            if not path.exists():
                return FileExistsResult(success=True, timestamp=timestamp, path=params.path)
            return FileExistsResult(
                success=True,
                timestamp=timestamp,
                path=params.path,
                exists=True,
                is_file=path.is_file(),
                is_directory=path.is_dir(),
            )
        except Exception as e:
            return self.failure(FileExistsResult, e, timestamp, path=params.path)

    async def get_file_info(self, params: GetFileInfoParams) -> FileInfoResult:
        """Return size, times, permissions and type of a path."""
        operation = "get_file_info"
        started = time.perf_counter()
        timestamp = utc_timestamp()

        try:
            self.check_rate(operation, params.agent)

            path = self.validator.resolve(params.path)
            if not path.exists():
                self.record(params.agent, operation, self.log_params(params), started)
                return FileInfoResult(success=True, timestamp=timestamp, path=params.path)

            stat = path.stat()
            is_file = path.is_file()
            mime_type = mimetypes.guess_type(path.name)[0] if is_file else None

            self.record(params.agent, operation, self.log_params(params), started)
            return FileInfoResult(
                success=True,
                timestamp=timestamp,
                path=params.path,
                exists=True,
                size=stat.st_size,
                size_formatted=format_size(stat.st_size),
                created=isoformat(getattr(stat, "st_birthtime", stat.st_ctime)),
                modified=isoformat(stat.st_mtime),
                accessed=isoformat(stat.st_atime),
                is_file=is_file,
                is_directory=path.is_dir(),
                extension=path.suffix if is_file else "",
                mime_type=mime_type,
                permissions=f"{stat.st_mode & 0o777:03o}",
            )

        except Exception as e:
            self.record(params.agent, operation, self.log_params(params), started, e)
            return self.failure(FileInfoResult, e, timestamp, path=params.path)

    def _require_file(self, path: Path, candidate: str, hint: str) -> None:
        if not path.exists() and not path.is_symlink():
            raise SourceNotFoundError(candidate, "File")
        if path.is_dir() and not path.is_symlink():
            raise InvalidParameterError(f"Not a file: {candidate} ({hint})")
