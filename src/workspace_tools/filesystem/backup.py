"""
Versioned backups of files and directories.

Backups live flat in one backup root. Each name embeds the original base
name and a millisecond timestamp, so listing and retention need no side
index:

    report.txt.1718000000000.backup        (file copy)
    assets.1718000000000.tgz.backup        (gzip tar of a directory)
"""

import logging
import re
import shutil
import tarfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

from pydantic import BaseModel, Field

from workspace_tools.filesystem.exceptions import BackupError
from workspace_tools.settings.config import FilesConfig

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"
ARCHIVE_SUFFIX = ".tgz"

_BACKUP_NAME = re.compile(r"^(?P<name>.+)\.(?P<ts>\d+)(?P<archive>\.tgz)?\.backup$")

_DAY_MS = 24 * 60 * 60 * 1000


class BackupRecord(BaseModel):
    """One point-in-time copy found in the backup root."""

    original_name: str = Field(description="Base name of the backed-up file or directory")
    path: Path = Field(description="Absolute path of the backup")
    file_name: str = Field(description="Name of the backup file")
    timestamp: int = Field(description="Creation time embedded in the name (epoch ms)")
    size: int = Field(description="Backup size in bytes")
    created: datetime = Field(description="Creation time as a UTC datetime")
    is_directory: bool = Field(default=False, description="Backup is a directory archive")


class BackupResult(BaseModel):
    """Outcome of a backup attempt."""

    success: bool
    original_path: str
    backup_path: Optional[str] = None
    timestamp: int = Field(description="Attempt time (epoch ms)")
    error: Optional[str] = None


def parse_backup_name(file_name: str) -> Optional[tuple[str, int, bool]]:
    """
    Split a backup file name into (original name, timestamp ms, is_directory).

    Returns None for names that are not backups.
    """
    match = _BACKUP_NAME.match(file_name)
    if not match:
        return None
    return match.group("name"), int(match.group("ts")), match.group("archive") is not None


class BackupManager:
    """
    Creates, lists, restores and expires backups.

    create_backup() never raises: a disabled or failed backup is reported
    as success=False so the caller can proceed without a safety net and
    say so in its own result.

    Usage:
        manager = BackupManager(FilesConfig(backup_dir=Path("/var/backups/ws")))

        result = manager.create_backup(Path("/srv/ws/report.txt"))
        if result.success:
            manager.restore_backup(result.backup_path, Path("/srv/ws/report.txt"))

        for record in manager.list_backups("report.txt"):
            print(record.file_name, record.created)
    """

    def __init__(
        self,
        config: FilesConfig,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the backup manager.

        Args:
            config: Backup settings
            clock: Wall-clock time source in seconds
        """
        self.enabled = config.backup_enabled
        self.backup_dir = config.backup_dir
        self.retention_days = config.backup_retention_days
        self._clock = clock

    @property
    def retention_ms(self) -> int:
        return self.retention_days * _DAY_MS

    def create_backup(self, path: Union[str, Path]) -> BackupResult:
        """
        Back up a file (or a directory, as an archive).

        Args:
            path: Absolute path of the file to back up

        Returns:
            BackupResult; success=False when disabled or on failure
        """
        path = Path(path)
        if path.is_dir():
            return self.create_directory_backup(path)

        timestamp = self._now_ms()
        if not self.enabled:
            return BackupResult(success=False, original_path=str(path), timestamp=timestamp)

        target: Optional[Path] = None
        try:
            with open(path, "rb") as source:
                target, timestamp, handle = self._reserve(path.name, timestamp, "")
                with handle:
                    shutil.copyfileobj(source, handle)
            shutil.copystat(path, target)
        except OSError as e:
            self._discard(target)
            logger.warning(f"Backup of {path} failed: {e}")
            return BackupResult(
                success=False,
                original_path=str(path),
                timestamp=timestamp,
                error=str(e),
            )

        logger.info(f"Backed up {path} -> {target}")
        self._sweep(path.name)
        return BackupResult(
            success=True,
            original_path=str(path),
            backup_path=str(target),
            timestamp=timestamp,
        )

    def create_directory_backup(self, path: Union[str, Path]) -> BackupResult:
        """
        Archive a directory as a gzip tar.

        Args:
            path: Absolute path of the directory to back up

        Returns:
            BackupResult; success=False when disabled or on failure
        """
        path = Path(path)
        timestamp = self._now_ms()
        if not self.enabled:
            return BackupResult(success=False, original_path=str(path), timestamp=timestamp)

        target: Optional[Path] = None
        try:
            if not path.is_dir():
                raise NotADirectoryError(f"Not a directory: {path}")
            target, timestamp, handle = self._reserve(path.name, timestamp, ARCHIVE_SUFFIX)
            with handle, tarfile.open(fileobj=handle, mode="w:gz") as archive:
                archive.add(path, arcname=".")
        except (OSError, tarfile.TarError) as e:
            self._discard(target)
            logger.warning(f"Backup of directory {path} failed: {e}")
            return BackupResult(
                success=False,
                original_path=str(path),
                timestamp=timestamp,
                error=str(e),
            )

        logger.info(f"Archived {path} -> {target}")
        self._sweep(path.name)
        return BackupResult(
            success=True,
            original_path=str(path),
            backup_path=str(target),
            timestamp=timestamp,
        )

    def restore_backup(self, backup_path: Union[str, Path], target_path: Union[str, Path]) -> None:
        """
        Restore a backup to a target path.

        File backups are copied; directory archives are extracted into the
        target directory. Missing parent directories are created.

        Args:
            backup_path: Backup file inside the backup root
            target_path: Absolute destination

        Raises:
            BackupError: If the backup is invalid or cannot be restored
        """
        backup = self._owned_backup(backup_path)
        parsed = parse_backup_name(backup.name)
        target = Path(target_path)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if parsed and parsed[2]:
                target.mkdir(exist_ok=True)
                with tarfile.open(backup, mode="r:gz") as archive:
                    archive.extractall(target, filter="data")
            else:
                shutil.copy2(backup, target)
        except (OSError, tarfile.TarError) as e:
            raise BackupError(f"Failed to restore backup: {e}") from e
        except TypeError as e:
            # tar extraction filters are missing before 3.10.12 / 3.11.4
            raise BackupError(f"Failed to restore backup: {e}") from e

        logger.info(f"Restored {backup} -> {target}")

    def list_backups(self, name: str) -> list[BackupRecord]:
        """
        List backups of one file or directory, newest first.

        Args:
            name: Base name of the original (exact match)
        """
        return [record for record in self.list_all_backups() if record.original_name == name]

    def list_all_backups(self) -> list[BackupRecord]:
        """List every backup in the backup root, newest first."""
        if not self.backup_dir.is_dir():
            return []

        records = []
        for entry in self.backup_dir.iterdir():
            parsed = parse_backup_name(entry.name)
            if parsed is None:
                continue
            original_name, timestamp, is_directory = parsed
            try:
                size = entry.stat().st_size
            except OSError:
                continue
            records.append(
                BackupRecord(
                    original_name=original_name,
                    path=entry,
                    file_name=entry.name,
                    timestamp=timestamp,
                    size=size,
                    created=datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc),
                    is_directory=is_directory,
                )
            )

        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records

    def delete_backup(self, backup_path: Union[str, Path]) -> None:
        """
        Delete one backup.

        Raises:
            BackupError: If the path is not a backup or cannot be deleted
        """
        backup = self._owned_backup(backup_path)
        try:
            backup.unlink()
        except OSError as e:
            raise BackupError(f"Failed to delete backup: {e}") from e
        logger.info(f"Deleted backup {backup}")

    def clean_old_backups(self, name: str) -> int:
        """
        Remove one original's backups older than the retention period.

        Returns:
            Number of backups removed
        """
        return self._expire(self.list_backups(name))

    def clean_all_old_backups(self) -> int:
        """
        Remove every backup older than the retention period.

        Returns:
            Number of backups removed
        """
        return self._expire(self.list_all_backups())

    def get_backup_size(self) -> int:
        """Total size of all backups in bytes."""
        return sum(record.size for record in self.list_all_backups())

    def _expire(self, records: list[BackupRecord]) -> int:
        # Age comes from the name, never from mtime
        cutoff = self._now_ms() - self.retention_ms
        removed = 0
        for record in records:
            if record.timestamp >= cutoff:
                continue
            try:
                record.path.unlink()
                removed += 1
            except OSError as e:
                logger.debug(f"Could not remove expired backup {record.path}: {e}")

        if removed:
            logger.info(f"Removed {removed} expired backups")
        return removed

    def _sweep(self, name: str) -> None:
        try:
            self.clean_old_backups(name)
        except OSError as e:
            logger.debug(f"Retention sweep for {name} failed: {e}")

    def _reserve(self, name: str, timestamp: int, suffix: str):
        """Exclusively create a fresh backup file; bump the timestamp on collision."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        while True:
            target = self.backup_dir / f"{name}.{timestamp}{suffix}{BACKUP_SUFFIX}"
            try:
                handle = open(target, "xb")
            except FileExistsError:
                timestamp += 1
                continue
            return target, timestamp, handle

    def _owned_backup(self, backup_path: Union[str, Path]) -> Path:
        backup = Path(backup_path).expanduser().resolve()
        if backup.parent != self.backup_dir:
            raise BackupError(f"Not inside the backup directory: {backup_path}")
        if parse_backup_name(backup.name) is None:
            raise BackupError(f"Not a backup file: {backup_path}")
        if not backup.is_file():
            raise BackupError(f"Backup not found: {backup_path}")
        return backup

    def _discard(self, target: Optional[Path]) -> None:
        if target is None:
            return
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"Could not remove partial backup {target}: {e}")

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
