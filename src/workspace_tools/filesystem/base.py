"""
Shared guard rails for workspace operations.
"""

import logging
import time
from pathlib import Path
from typing import Any, Mapping, Optional, TypeVar

from workspace_tools.filesystem.audit import OperationLogger
from workspace_tools.filesystem.backup import BackupManager
from workspace_tools.filesystem.exceptions import (
    FileAccessDeniedError,
    FileSystemError,
    RateLimitExceededError,
    SourceNotFoundError,
)
from workspace_tools.filesystem.models import ToolResult
from workspace_tools.filesystem.rate_limiter import RateLimiter
from workspace_tools.filesystem.validator import PathValidator, WorkspaceBoundary
from workspace_tools.settings.config import WorkspaceToolsConfig

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=ToolResult)


class GuardedOperations:
    """
    Base for operation groups that share the workspace guards.

    Subclasses run every request as: rate limit check, path validation,
    then the filesystem effect. Failures are converted to result objects
    by failure(); nothing is raised to the caller.
    """

    def __init__(
        self,
        config: WorkspaceToolsConfig,
        rate_limiter: Optional[RateLimiter] = None,
        audit: Optional[OperationLogger] = None,
    ):
        """
        Initialize the operation group.

        Args:
            config: Complete configuration
            rate_limiter: Shared rate limiter (one is created if omitted)
            audit: Outcome logger (one is created if omitted)
        """
        self.config = config
        self.validator = PathValidator(WorkspaceBoundary.from_config(config.workspace))
        self.rate_limiter = rate_limiter or RateLimiter(config.rate_limits)
        self.audit = audit or OperationLogger()
        self.backups: Optional[BackupManager] = None

    @property
    def root(self) -> Path:
        return self.validator.root

    def check_rate(self, operation: str, agent: str) -> None:
        """
        Raises:
            RateLimitExceededError: If the agent is over its budget
        """
        result = self.rate_limiter.check(operation, agent)
        if not result.allowed:
            raise RateLimitExceededError(
                operation, agent, result.reason or "limit reached", result.reset_in
            )

    def resolve_directory(self, candidate: str) -> Path:
        """
        Validate a directory path; the empty string means the workspace root.

        Raises:
            PathValidationError: If the path is rejected
            SourceNotFoundError: If it is not an existing directory
        """
        path = self.validator.resolve(candidate or "")
        if not path.is_dir():
            raise SourceNotFoundError(candidate or ".", "Directory")
        return path

    def guard_protected_contents(self, path: Path, candidate: str) -> None:
        """
        Refuse to remove or replace a directory that holds a protected path.

        Raises:
            FileAccessDeniedError: If a protected path lies beneath path
        """
        if self.validator.contains_protected(path):
            logger.warning(f"Refused to modify {candidate!r}: it contains a protected path")
            raise FileAccessDeniedError(candidate, "Directory contains a protected path")

    def relative(self, path: Path) -> str:
        return self.validator.relative(path)

    def failure(
        self,
        result_cls: type[ResultT],
        error: BaseException,
        timestamp: str,
        **fields: Any,
    ) -> ResultT:
        """Build a failure result for an exception raised by an operation."""
        if isinstance(error, (FileSystemError, OSError)):
            message, error_type = str(error), type(error).__name__
        else:
            logger.exception(f"Unexpected error in {result_cls.__name__}")
            message, error_type = f"Unexpected error: {error}", "UnexpectedError"
        return result_cls(
            success=False,
            timestamp=timestamp,
            error=message,
            error_type=error_type,
            **fields,
        )

    def take_backup(self, path: Path) -> tuple[Optional[str], bool]:
        """
        Back up a file or directory about to be replaced or removed.

        Returns:
            (backup path, skipped). skipped is True when a backup was
            attempted and failed; disabled backups are not "skipped".
        """
        if self.backups is None or not self.backups.enabled:
            return None, False
        result = self.backups.create_backup(path)
        if result.success:
            return result.backup_path, False
        logger.warning(f"Proceeding without backup of {path}: {result.error}")
        return None, True

    @staticmethod
    def log_params(params) -> dict:
        """Operation parameters for the audit log, without the agent."""
        return params.model_dump(mode="json", exclude={"agent"}, exclude_none=True)

    def record(
        self,
        agent: Optional[str],
        operation: str,
        params: Mapping[str, Any],
        started: float,
        error: Optional[BaseException] = None,
    ) -> None:
        """Hand an outcome to the audit logger."""
        self.audit.log(
            agent=agent,
            operation=operation,
            params=params,
            success=error is None,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            error=error,
        )
