"""
Exceptions for workspace operations.
"""

from typing import Optional


class FileSystemError(Exception):
    """Base exception for workspace operations."""

    pass


class InvalidParameterError(FileSystemError):
    """Raised when a required parameter is missing or malformed."""

    pass


class FileAccessDeniedError(FileSystemError):
    """Raised when access to a file or directory is denied."""

    def __init__(self, path: str, reason: str = "Access denied"):
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path}")


class PathValidationError(FileAccessDeniedError):
    """Raised when a path is rejected by the workspace boundary."""

    def __init__(self, path: str, reason: str = "Invalid path", label: str = "path"):
        self.path = path
        self.reason = reason
        self.label = label
        FileSystemError.__init__(self, f"Invalid {label}: {reason}")


class RateLimitExceededError(FileSystemError):
    """Raised when an agent exceeds the rate limit for an operation."""

    def __init__(
        self,
        operation: str,
        agent: str,
        reason: str,
        reset_in: Optional[float] = None,
    ):
        self.operation = operation
        self.agent = agent
        self.reset_in = reset_in
        super().__init__(f"Rate limit exceeded: {reason}")


class ConfirmationRequiredError(FileSystemError):
    """Raised when a destructive operation is not explicitly confirmed."""

    pass


class SourceNotFoundError(FileSystemError):
    """Raised when the source of an operation does not exist."""

    def __init__(self, path: str, kind: str = "Source file"):
        self.path = path
        super().__init__(f"{kind} not found: {path}")


class DestinationExistsError(FileSystemError):
    """Raised when a destination exists and overwriting was not allowed."""

    def __init__(self, path: str, hint: str = "Use overwrite: true to replace it"):
        self.path = path
        super().__init__(f"Destination already exists: {path}. {hint}")


class BackupError(FileSystemError):
    """Raised when restoring or deleting a backup fails."""

    pass


class SearchError(FileSystemError):
    """Raised when a search operation fails."""

    pass
