"""
Deterministic directory enumeration with glob include/exclude rules.
"""

import logging
import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_PATTERNS = (
    "**/node_modules/**",
    "**/.git/**",
    "**/dist/**",
    "**/build/**",
    "**/.next/**",
    "**/coverage/**",
    "**/.cache/**",
)


@dataclass(frozen=True)
class WalkEntry:
    """One enumerated file or directory."""

    path: Path
    relative: str
    is_dir: bool
    size: int
    modified: float
    depth: int

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def extension(self) -> str:
        return "" if self.is_dir else self.path.suffix


def normalize_extensions(file_types: Optional[Iterable[str]]) -> Optional[frozenset[str]]:
    """Normalize ['py', '.JS'] to {'.py', '.js'}; None or empty means no filter."""
    if not file_types:
        return None
    return frozenset(
        ("." + ext.lstrip(".")).lower() for ext in file_types if ext.strip(".")
    )


def matches_glob(relative: str, pattern: str) -> bool:
    """
    Match a workspace-style glob against a relative POSIX path.

    '*' and '**' both cross directory separators. Patterns without a
    separator also match the bare file name, so '*.log' excludes logs at
    any depth.
    """
    if fnmatchcase(relative, pattern) or fnmatchcase("/" + relative, pattern):
        return True
    if "/" not in pattern:
        return fnmatchcase(relative.rsplit("/", 1)[-1], pattern)
    return False


class GlobWalker:
    """
    Walks a directory tree in sorted order applying exclusion rules.

    Symbolic links are never followed or yielded, so enumeration cannot
    leave the tree it started in. Entries that disappear or cannot be
    read mid-walk are skipped.

    Usage:
        walker = GlobWalker(exclude_patterns=["*.log"], file_types=[".py"])
        for entry in walker.walk(Path("/srv/ws/src")):
            print(entry.relative, entry.size)
    """

    def __init__(
        self,
        exclude_patterns: Iterable[str] = (),
        include_hidden: bool = False,
        recursive: bool = True,
        max_depth: Optional[int] = None,
        file_types: Optional[Iterable[str]] = None,
        include_dirs: bool = False,
        default_excludes: bool = True,
        skip: Optional[Callable[[Path], bool]] = None,
    ):
        """
        Initialize the walker.

        Args:
            exclude_patterns: Extra globs excluded in addition to the defaults
            include_hidden: Yield dot-files and descend into dot-directories
            recursive: Descend into subdirectories
            max_depth: Deepest entry level to yield (1 = direct children)
            file_types: Only yield files with these extensions
            include_dirs: Also yield directories
            default_excludes: Apply DEFAULT_EXCLUDE_PATTERNS
            skip: Predicate on absolute paths; matching entries are not yielded
                or descended into
        """
        defaults = DEFAULT_EXCLUDE_PATTERNS if default_excludes else ()
        self.exclude_patterns = defaults + tuple(
            p for p in exclude_patterns if p
        )
        self.include_hidden = include_hidden
        self.max_depth = max_depth if recursive else 1
        self.extensions = normalize_extensions(file_types)
        self.include_dirs = include_dirs
        self.skip = skip

    def is_excluded(self, relative: str, is_dir: bool = False) -> bool:
        candidates = (relative, relative + "/") if is_dir else (relative,)
        return any(
            matches_glob(candidate, pattern)
            for candidate in candidates
            for pattern in self.exclude_patterns
        )

    def walk(self, base: Path) -> Iterator[WalkEntry]:
        """
        Yield entries beneath base in sorted, depth-first order.

        Args:
            base: Directory to enumerate
        """
        yield from self._walk(base, "", 1)

    def _walk(self, directory: Path, prefix: str, depth: int) -> Iterator[WalkEntry]:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.debug(f"Cannot read directory {directory}: {e}")
            return

        for entry in entries:
            if not self.include_hidden and entry.name.startswith("."):
                continue

            try:
                if entry.is_symlink():
                    continue
                is_dir = entry.is_dir(follow_symlinks=False)
                stat = entry.stat(follow_symlinks=False)
            except OSError:
                continue

            relative = f"{prefix}{entry.name}"
            if self.is_excluded(relative, is_dir):
                continue
            if self.skip is not None and self.skip(Path(entry.path)):
                continue

            if is_dir:
                if self.include_dirs:
                    yield WalkEntry(
                        path=Path(entry.path),
                        relative=relative,
                        is_dir=True,
                        size=stat.st_size,
                        modified=stat.st_mtime,
                        depth=depth,
                    )
                if self.max_depth is None or depth < self.max_depth:
                    yield from self._walk(Path(entry.path), relative + "/", depth + 1)
                continue

            if self.extensions is not None and Path(entry.name).suffix.lower() not in self.extensions:
                continue

            yield WalkEntry(
                path=Path(entry.path),
                relative=relative,
                is_dir=False,
                size=stat.st_size,
                modified=stat.st_mtime,
                depth=depth,
            )
