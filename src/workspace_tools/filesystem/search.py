"""
File name search, content search and duplicate detection.

All three scans share GlobWalker enumeration. Per-file work (binary
probing, reading, hashing) runs in worker threads, at most
search.max_concurrency at a time across all requests. Cancelling the
awaiting task stops a scan before its next batch of files.
"""

import asyncio
import logging
import os
import re
import time
from collections import defaultdict
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Callable, Optional, Sequence, TypeVar

from workspace_tools.filesystem.audit import OperationLogger
from workspace_tools.filesystem.base import GuardedOperations
from workspace_tools.filesystem.cache import SearchCache
from workspace_tools.filesystem.exceptions import InvalidParameterError, SearchError
from workspace_tools.filesystem.hasher import FileHasher
from workspace_tools.filesystem.models import (
    CompareMode,
    ContentMatch,
    DuplicateFile,
    DuplicateGroup,
    FindDuplicatesParams,
    FindDuplicatesResult,
    Match,
    MatchType,
    SearchContentParams,
    SearchContentResult,
    SearchFileEntry,
    SearchFilesParams,
    SearchFilesResult,
    format_size,
    isoformat,
    utc_timestamp,
)
from workspace_tools.filesystem.rate_limiter import RateLimiter
from workspace_tools.filesystem.walker import GlobWalker, WalkEntry
from workspace_tools.settings.config import WorkspaceToolsConfig

logger = logging.getLogger(__name__)

BINARY_SNIFF_SIZE = 512

_GLOB_CHARS = ("*", "?", "[")

T = TypeVar("T")
R = TypeVar("R")


def is_glob(pattern: str) -> bool:
    return any(ch in pattern for ch in _GLOB_CHARS)


def calculate_relevance(name: str, pattern: str, case_sensitive: bool = False) -> float:
    """
    Score how well a file name matches a search pattern.

    Exact match scores 100, prefix 80, substring 60. Otherwise the score
    is 40 times the fraction of pattern characters found in the name.
    """
    if not case_sensitive:
        name, pattern = name.lower(), pattern.lower()

    if name == pattern:
        return 100.0
    if name.startswith(pattern):
        return 80.0
    if pattern in name:
        return 60.0

    matched = sum(1 for ch in pattern if ch in name)
    return matched / len(pattern) * 40.0


def is_binary_file(path: Path) -> bool:
    """A null byte in the first 512 bytes means binary; unreadable counts as binary."""
    try:
        with open(path, "rb") as f:
            return b"\0" in f.read(BINARY_SNIFF_SIZE)
    except OSError:
        return True


def read_lines(path: Path) -> list[str]:
    text = path.read_text(encoding="utf-8", errors="replace")
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line.rstrip("\r") for line in lines]


def find_matches(lines: Sequence[str], regex: re.Pattern, context: int) -> list[Match]:
    """Match each line, attaching up to `context` lines before and after."""
    matches = []
    for index, line in enumerate(lines):
        found = regex.search(line)
        if not found:
            continue
        matches.append(
            Match(
                line=index + 1,
                column=found.start() + 1,
                text=line,
                before=list(lines[max(0, index - context) : index]),
                after=list(lines[index + 1 : index + 1 + context]),
                matched_text=found.group(0),
            )
        )
    return matches


def build_content_regex(
    query: str,
    use_regex: bool = False,
    whole_word: bool = False,
    case_sensitive: bool = False,
) -> re.Pattern:
    """
    Raises:
        InvalidParameterError: If the query is not a valid regular expression
    """
    pattern = query if use_regex else re.escape(query)
    if whole_word:
        pattern = rf"\b(?:{pattern})\b"
    try:
        return re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
    except re.error as e:
        raise InvalidParameterError(f"Invalid regular expression: {e}") from e


class SearchOperations(GuardedOperations):
    """
    Search and duplicate detection inside the workspace.

    Usage:
        search = SearchOperations(config)

        result = await search.search_content(
            SearchContentParams(agent="agent-1", query="TODO", file_types=[".py"])
        )
        for file_match in result.results:
            for match in file_match.matches:
                print(file_match.file, match.line, match.text)
    """

    def __init__(
        self,
        config: WorkspaceToolsConfig,
        rate_limiter: Optional[RateLimiter] = None,
        audit: Optional[OperationLogger] = None,
        cache: Optional[SearchCache] = None,
        hasher: Optional[FileHasher] = None,
    ):
        """
        Initialize search operations.

        Args:
            config: Complete configuration
            rate_limiter: Shared rate limiter
            audit: Outcome logger
            cache: Result cache (created from search.cache_ttl_ms if omitted)
            hasher: Content hasher for duplicate detection
        """
        super().__init__(config, rate_limiter, audit)
        self.cache = cache or SearchCache(config.search.cache_ttl_ms)
        self.hasher = hasher or FileHasher()
        self.max_concurrency = config.search.max_concurrency
        self._slots = asyncio.Semaphore(self.max_concurrency)

    # =========================================================================
    # search_files
    # =========================================================================

    async def search_files(self, params: SearchFilesParams) -> SearchFilesResult:
        """
        Find files whose name matches a substring, glob or regular expression.

        Results are ranked by relevance (highest first) and cached.
        """
        operation = "search_files"
        started = time.perf_counter()
        timestamp = utc_timestamp()

        try:
            self.check_rate(operation, params.agent)

            cache_key = self._cache_key(operation, params)
            cached = self._cached(cache_key)
            if cached is not None:
                logger.debug(f"search_files cache hit for {params.pattern!r}")
                self.record(params.agent, operation, self.log_params(params), started)
                return cached

            base = self.resolve_directory(params.path)
            matcher = self._name_matcher(params)
            walker = GlobWalker(
                exclude_patterns=self._exclusions(params.exclude_patterns),
                include_hidden=params.include_hidden,
                recursive=params.recursive,
                file_types=params.file_types,
                skip=self.validator.is_protected_path,
            )
            entries = await asyncio.to_thread(self._enumerate, walker, base)

            pattern_match = params.use_regex or is_glob(params.pattern)
            found = []
            for entry in entries:
                if not matcher(entry):
                    continue
                found.append(
                    SearchFileEntry(
                        path=self.relative(entry.path),
                        name=entry.name,
                        size=entry.size,
                        size_formatted=format_size(entry.size),
                        modified=isoformat(entry.modified),
                        extension=entry.extension,
                        relevance_score=calculate_relevance(
                            entry.name, params.pattern, params.case_sensitive
                        ),
                        match_type=self._match_type(entry.name, params, pattern_match),
                    )
                )

            found.sort(key=lambda e: e.relevance_score, reverse=True)

            max_results = params.max_results or self.config.search.max_results
            returned = found[:max_results]

            result = SearchFilesResult(
                success=True,
                timestamp=timestamp,
                query=params.pattern,
                results=returned,
                total_found=len(found),
                total_returned=len(returned),
                search_time=self._elapsed(started),
                truncated=len(found) > max_results,
            )
            self._store(cache_key, result)
            self.record(params.agent, operation, self.log_params(params), started)
            return result

        except Exception as e:
            self.record(params.agent, operation, self.log_params(params), started, e)
            return self.failure(
                SearchFilesResult,
                e,
                timestamp,
                query=params.pattern,
                search_time=self._elapsed(started),
            )

    def _name_matcher(self, params: SearchFilesParams) -> Callable[[WalkEntry], bool]:
        pattern = params.pattern

        if params.use_regex:
            try:
                regex = re.compile(pattern, 0 if params.case_sensitive else re.IGNORECASE)
            except re.error as e:
                raise InvalidParameterError(f"Invalid regular expression: {e}") from e
            return lambda entry: regex.search(entry.name) is not None

        fold = (lambda s: s) if params.case_sensitive else str.lower
        needle = fold(pattern)

        if is_glob(pattern):
            if "/" in pattern:
                return lambda entry: fnmatchcase(fold(entry.relative), needle)
            return lambda entry: fnmatchcase(fold(entry.name), needle)

        return lambda entry: needle in fold(entry.name)

    def _match_type(self, name: str, params: SearchFilesParams, pattern_match: bool) -> MatchType:
        if pattern_match:
            return MatchType.PATTERN
        if params.case_sensitive:
            exact = name == params.pattern
        else:
            exact = name.lower() == params.pattern.lower()
        return MatchType.EXACT if exact else MatchType.PARTIAL

    # =========================================================================
    # search_content
    # =========================================================================

    async def search_content(self, params: SearchContentParams) -> SearchContentResult:
        """
        Search file contents line by line.

        Files larger than the size limit and binary files are skipped, as
        are files that cannot be read. Scanning stops once max_results
        files with matches are collected and another matching file is
        found; `truncated` is set only in that case.
        """
        operation = "search_content"
        started = time.perf_counter()
        timestamp = utc_timestamp()

        try:
            self.check_rate(operation, params.agent)

            base = self.resolve_directory(params.path)
            regex = build_content_regex(
                params.query,
                use_regex=params.use_regex,
                whole_word=params.whole_word,
                case_sensitive=params.case_sensitive,
            )
            walker = GlobWalker(
                exclude_patterns=self._exclusions(params.exclude_patterns),
                recursive=params.recursive,
                file_types=params.file_types,
                skip=self.validator.is_protected_path,
            )
            entries = await asyncio.to_thread(self._enumerate, walker, base)

            max_results = params.max_results or self.config.search.max_results
            max_file_size = params.max_file_size or self.config.search.max_file_size
            candidates = [entry for entry in entries if entry.size <= max_file_size]

            def scan(entry: WalkEntry) -> Optional[list[Match]]:
                if is_binary_file(entry.path):
                    return None
                try:
                    lines = read_lines(entry.path)
                except OSError as e:
                    logger.debug(f"Skipping unreadable file {entry.path}: {e}")
                    return None
                return find_matches(lines, regex, params.context)

            results: list[ContentMatch] = []
            total_matches = 0
            files_scanned = 0
            truncated = False

            for batch in self._batches(candidates):
                scanned = await self._run_batch(scan, batch)
                files_scanned += len(batch)
                for entry, matches in zip(batch, scanned):
                    if not matches:
                        continue
                    if len(results) >= max_results:
                        truncated = True
                        break
                    results.append(
                        ContentMatch(
                            file=self.relative(entry.path),
                            matches=matches,
                            match_count=len(matches),
                        )
                    )
                    total_matches += len(matches)
                if truncated:
                    break

            result = SearchContentResult(
                success=True,
                timestamp=timestamp,
                query=params.query,
                results=results,
                total_files=files_scanned,
                total_matches=total_matches,
                files_with_matches=len(results),
                search_time=self._elapsed(started),
                truncated=truncated,
            )
            self.record(params.agent, operation, self.log_params(params), started)
            return result

        except Exception as e:
            self.record(params.agent, operation, self.log_params(params), started, e)
            return self.failure(
                SearchContentResult,
                e,
                timestamp,
                query=params.query,
                search_time=self._elapsed(started),
            )

    # =========================================================================
    # find_duplicates
    # =========================================================================

    async def find_duplicates(self, params: FindDuplicatesParams) -> FindDuplicatesResult:
        """
        Group files that share a content hash, a name, or a size and name.

        In each group the earliest-modified file is the original; every
        other member counts toward wasted space. Groups are ordered by
        wasted space, largest first.
        """
        operation = "find_duplicates"
        started = time.perf_counter()
        timestamp = utc_timestamp()

        try:
            self.check_rate(operation, params.agent)

            cache_key = self._cache_key(operation, params)
            cached = self._cached(cache_key)
            if cached is not None:
                logger.debug("find_duplicates cache hit")
                self.record(params.agent, operation, self.log_params(params), started)
                return cached

            base = self.resolve_directory(params.path)
            walker = GlobWalker(
                exclude_patterns=self._exclusions(params.exclude_patterns),
                recursive=params.recursive,
                file_types=params.file_types,
                skip=self.validator.is_protected_path,
            )
            entries = await asyncio.to_thread(self._enumerate, walker, base)
            candidates = [
                entry
                for entry in entries
                if entry.size >= params.min_size
                and (params.max_size is None or entry.size <= params.max_size)
            ]

            buckets = await self._group(candidates, params.compare_by)
            groups = [
                self._duplicate_group(key, members, params.compare_by)
                for key, members in buckets.items()
                if len(members) > 1
            ]
            groups.sort(key=lambda g: (-g.total_wasted, g.key))

            wasted = sum(g.total_wasted for g in groups)
            result = FindDuplicatesResult(
                success=True,
                timestamp=timestamp,
                duplicate_groups=groups,
                total_duplicates=sum(g.count - 1 for g in groups),
                total_groups=len(groups),
                wasted_space=wasted,
                wasted_space_formatted=format_size(wasted),
                search_time=self._elapsed(started),
            )
            self._store(cache_key, result)
            self.record(params.agent, operation, self.log_params(params), started)
            return result

        except Exception as e:
            self.record(params.agent, operation, self.log_params(params), started, e)
            return self.failure(
                FindDuplicatesResult,
                e,
                timestamp,
                search_time=self._elapsed(started),
            )

    async def _group(
        self, entries: list[WalkEntry], mode: CompareMode
    ) -> dict[str, list[WalkEntry]]:
        groups: dict[str, list[WalkEntry]] = defaultdict(list)

        if mode == CompareMode.NAME:
            for entry in entries:
                groups[entry.name].append(entry)
            return groups

        if mode == CompareMode.SIZE_NAME:
            for entry in entries:
                groups[f"{entry.size}_{entry.name}"].append(entry)
            return groups

        # Only files that share a size can share content
        by_size: dict[int, list[WalkEntry]] = defaultdict(list)
        for entry in entries:
            by_size[entry.size].append(entry)
        to_hash = [entry for same in by_size.values() if len(same) > 1 for entry in same]

        def digest(entry: WalkEntry) -> Optional[str]:
            try:
                return self.hasher.md5(entry.path)
            except OSError as e:
                logger.debug(f"Skipping unhashable file {entry.path}: {e}")
                return None

        for batch in self._batches(to_hash):
            hashes = await self._run_batch(digest, batch)
            for entry, file_hash in zip(batch, hashes):
                if file_hash is not None:
                    groups[file_hash].append(entry)
        return groups

    def _duplicate_group(
        self, key: str, members: list[WalkEntry], mode: CompareMode
    ) -> DuplicateGroup:
        members = sorted(members, key=lambda e: (e.modified, e.relative))
        size = members[0].size
        wasted = size * (len(members) - 1)
        return DuplicateGroup(
            files=[
                DuplicateFile(
                    path=self.relative(entry.path),
                    modified=isoformat(entry.modified),
                    original=index == 0,
                )
                for index, entry in enumerate(members)
            ],
            count=len(members),
            size=size,
            size_formatted=format_size(size),
            hash=key if mode == CompareMode.HASH else None,
            key=key,
            total_wasted=wasted,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _enumerate(self, walker: GlobWalker, base: Path) -> list[WalkEntry]:
        """
        Raises:
            SearchError: If the search root cannot be read
        """
        try:
            with os.scandir(base):
                pass
        except OSError as e:
            logger.error(f"Cannot read search root {base}: {e}")
            raise SearchError(f"Search failed: cannot read {self.relative(base)}: {e}") from e
        return list(walker.walk(base))

    def _exclusions(self, caller_patterns: Optional[list[str]]) -> tuple[str, ...]:
        return tuple(self.config.search.skip_patterns) + tuple(caller_patterns or ())

    def _batches(self, items: list[T]) -> list[list[T]]:
        size = self.max_concurrency
        return [items[i : i + size] for i in range(0, len(items), size)]

    async def _run_batch(self, func: Callable[[T], R], batch: list[T]) -> list[R]:
        async def run(item: T) -> R:
            async with self._slots:
                return await asyncio.to_thread(func, item)

        return await asyncio.gather(*(run(item) for item in batch))

    def _cache_key(self, operation: str, params) -> Optional[str]:
        if not self.config.search.cache_enabled:
            return None
        return SearchCache.generate_key(
            operation, params.model_dump(mode="json", exclude={"agent"})
        )

    def _cached(self, key: Optional[str]):
        if key is None:
            return None
        cached = self.cache.get(key)
        return cached.model_copy(deep=True) if cached is not None else None

    def _store(self, key: Optional[str], result) -> None:
        if key is not None:
            self.cache.set(key, result.model_copy(deep=True))

    @staticmethod
    def _elapsed(started: float) -> float:
        return round((time.perf_counter() - started) * 1000.0, 3)
