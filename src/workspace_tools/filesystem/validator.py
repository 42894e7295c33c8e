"""
Workspace boundary and path validation.

Every operation validates caller-supplied paths here before touching the
filesystem. Validation is pure: it only reads filesystem metadata to
resolve symlinks and never creates or modifies anything.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional

from workspace_tools.filesystem.exceptions import PathValidationError
from workspace_tools.settings.config import WorkspaceConfig

logger = logging.getLogger(__name__)

_DRIVE_PREFIX = re.compile(r"^[a-zA-Z]:")
_SEPARATORS = re.compile(r"[\\/]+")


@dataclass(frozen=True)
class WorkspaceBoundary:
    """The sandbox root and the protected sub-paths beneath it."""

    root: Path
    protected_paths: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_config(cls, config: WorkspaceConfig) -> "WorkspaceBoundary":
        return cls(root=config.dir, protected_paths=tuple(config.protected_paths))

    @property
    def protected_parts(self) -> tuple[tuple[str, ...], ...]:
        return tuple(
            PurePosixPath(p.replace("\\", "/")).parts for p in self.protected_paths
        )


@dataclass(frozen=True)
class PathVerdict:
    """Outcome of validating one candidate path."""

    valid: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


class PathValidator:
    """
    Confines paths to a workspace root.

    Candidates are workspace-relative strings. A candidate is rejected
    before normalization if it contains a null byte, a '..' segment, a
    home-directory shorthand or an absolute prefix, because normalizing
    first could silently absorb an escape attempt.

    Usage:
        validator = PathValidator(WorkspaceBoundary(root=Path("/srv/ws")))

        verdict = validator.validate("src/main.py")
        if not verdict.valid:
            print(verdict.reason)

        full = validator.resolve("src/main.py")  # raises PathValidationError
    """

    def __init__(self, boundary: WorkspaceBoundary):
        """
        Initialize the validator.

        Args:
            boundary: Workspace root and protected paths
        """
        self.boundary = boundary
        self._root = boundary.root.expanduser().resolve()
        self._protected = boundary.protected_parts

    @property
    def root(self) -> Path:
        """Canonical workspace root."""
        return self._root

    def validate(self, candidate: str) -> PathVerdict:
        """
        Validate that a candidate path is safe to use.

        Args:
            candidate: Workspace-relative path

        Returns:
            PathVerdict with a reason for rejections
        """
        try:
            reason = self._check_traversal(candidate)
            if reason:
                return PathVerdict(False, reason)

            resolved = self.full_path(candidate)

            relative = self._relative_to_root(resolved)
            if relative is None:
                return PathVerdict(False, f"Path is outside workspace: {candidate}")

            lexical = self._relative_to_root(self.lexical_path(candidate))
            if self._is_protected(relative) or (lexical is not None and self._is_protected(lexical)):
                return PathVerdict(False, f"Path is protected: {candidate}")

            return PathVerdict(True)
        except (OSError, RuntimeError, ValueError, TypeError) as e:
            return PathVerdict(False, f"Invalid path: {e}")

    def resolve(self, candidate: str, label: str = "path") -> Path:
        """
        Validate a candidate and return its absolute path.

        The returned path is the candidate joined to the root without
        following symbolic links, so operations act on a link itself
        rather than on its target.

        Args:
            candidate: Workspace-relative path
            label: Name used in the error message (e.g. "source path")

        Returns:
            Absolute path inside the workspace

        Raises:
            PathValidationError: If the candidate is rejected
        """
        verdict = self.validate(candidate)
        if not verdict.valid:
            logger.warning(f"Rejected {label} {candidate!r}: {verdict.reason}")
            raise PathValidationError(candidate, verdict.reason or "Invalid path", label)
        return self.lexical_path(candidate)

    def lexical_path(self, candidate: str) -> Path:
        """Join a candidate to the root, dropping empty and '.' segments (no validation)."""
        segments = [s for s in _SEPARATORS.split(candidate) if s not in ("", ".")]
        return self._root.joinpath(*segments)

    def full_path(self, candidate: str) -> Path:
        """Resolve a candidate against the workspace root (no validation)."""
        return (self._root / candidate.replace("\\", "/")).resolve()

    def relative(self, path: Path) -> str:
        """Workspace-relative POSIX form of an absolute path inside the workspace."""
        return path.relative_to(self._root).as_posix()

    def is_within_workspace(self, path: Path) -> bool:
        """Check whether an absolute path resolves inside the workspace."""
        try:
            return self._relative_to_root(path.resolve()) is not None
        except (OSError, RuntimeError):
            return False

    def is_protected_path(self, path: Path) -> bool:
        """Check whether an absolute path inside the workspace is protected."""
        relative = self._relative_to_root(path)
        return relative is not None and self._is_protected(relative)

    def contains_protected(self, path: Path) -> bool:
        """
        Check whether a protected path lies strictly beneath an absolute path.

        Both the lexical path and its symlink-resolved form are checked,
        as in validate().
        """
        candidates = [self._relative_to_root(path)]
        try:
            candidates.append(self._relative_to_root(path.resolve()))
        except (OSError, RuntimeError):
            pass

        for relative in candidates:
            if relative is None:
                continue
            parts = relative.parts
            for protected in self._protected:
                if len(protected) > len(parts) and protected[: len(parts)] == parts:
                    return True
        return False

    def _check_traversal(self, candidate: str) -> Optional[str]:
        if not isinstance(candidate, str):
            return "Path must be a string"

        if "\0" in candidate:
            return "Path contains a null byte"

        segments = _SEPARATORS.split(candidate)

        if ".." in segments:
            return 'Path traversal detected: path contains ".."'

        if segments[0].startswith("~") or "~" in segments:
            return "Path traversal detected: home directory shorthand is not allowed"

        if candidate.startswith(("/", "\\")) or _DRIVE_PREFIX.match(candidate):
            return f"Absolute paths are not allowed: {candidate}"

        return None

    def _relative_to_root(self, resolved: Path) -> Optional[PurePosixPath]:
        try:
            relative = resolved.relative_to(self._root)
        except ValueError:
            return None
        relative = PurePosixPath(relative.as_posix())
        if relative.parts and relative.parts[0] == "..":
            return None
        return relative

    def _is_protected(self, relative: PurePosixPath) -> bool:
        parts = relative.parts
        for protected in self._protected:
            if protected and parts[: len(protected)] == protected:
                return True
        return False
