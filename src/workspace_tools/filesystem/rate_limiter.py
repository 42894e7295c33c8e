"""
Per-agent sliding-window rate limiting.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from workspace_tools.settings.config import RateLimit, RateLimitsConfig

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check. Times are in milliseconds."""

    allowed: bool
    reason: Optional[str] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_in: Optional[float] = None


@dataclass
class RateUsage:
    """Current usage of one (operation, agent) pair."""

    count: int
    limit: Optional[int]
    reset_in: float


@dataclass
class RateWindow:
    """Request timestamps (seconds) for one (operation, agent) pair."""

    timestamps: deque = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def prune(self, cutoff: float) -> None:
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


class RateLimiter:
    """
    Sliding-window rate limiter keyed by (operation, agent).

    Each pair owns its own window and lock, so checks for unrelated agents
    never contend. The check-then-record step for one pair is a single
    critical section.

    Usage:
        limiter = RateLimiter(RateLimitsConfig(
            limits={"delete_file": RateLimit(max=20, window_ms=60_000)},
        ))

        result = limiter.check("delete_file", agent="agent-1")
        if not result.allowed:
            print(result.reason, result.reset_in)
    """

    def __init__(
        self,
        config: RateLimitsConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the rate limiter.

        Args:
            config: Rate limit configuration
            clock: Monotonic time source in seconds
        """
        self.enabled = config.enabled
        self._limits: dict[str, RateLimit] = dict(config.limits)
        self._windows: dict[tuple[str, str], RateWindow] = {}
        self._registry_lock = threading.Lock()
        self._clock = clock

    @property
    def limits(self) -> dict[str, RateLimit]:
        """Copy of the configured limits."""
        return dict(self._limits)

    def set_limit(self, operation: str, limit: RateLimit) -> None:
        """Set or replace the limit for an operation."""
        self._limits[operation] = limit

    def check(self, operation: str, agent: str) -> RateLimitResult:
        """
        Check whether an agent may perform an operation, recording it if so.

        Args:
            operation: Operation name
            agent: Agent identifier

        Returns:
            RateLimitResult
        """
        if not self.enabled:
            return RateLimitResult(allowed=True)

        limit = self._limits.get(operation)
        if limit is None:
            return RateLimitResult(allowed=True)

        window_seconds = limit.window_ms / 1000.0

        while True:
            window = self._window(operation, agent)
            with window.lock:
                # Removed by cleanup or reset since it was fetched
                if self._windows.get((operation, agent)) is not window:
                    continue
                return self._record(window, limit, window_seconds, operation, agent)

    def _record(
        self,
        window: RateWindow,
        limit: RateLimit,
        window_seconds: float,
        operation: str,
        agent: str,
    ) -> RateLimitResult:
        now = self._clock()
        window.prune(now - window_seconds)

        if len(window.timestamps) >= limit.max:
            reset_in = (window.timestamps[0] + window_seconds - now) * 1000.0
            logger.debug(f"Rate limit hit: agent={agent} operation={operation}")
            return RateLimitResult(
                allowed=False,
                reason=f"{limit.max} requests per {limit.window_ms}ms",
                limit=limit.max,
                remaining=0,
                reset_in=max(0.0, reset_in),
            )

        window.timestamps.append(now)
        reset_in = (window.timestamps[0] + window_seconds - now) * 1000.0
        return RateLimitResult(
            allowed=True,
            limit=limit.max,
            remaining=limit.max - len(window.timestamps),
            reset_in=max(0.0, reset_in),
        )

    def get_usage(self, operation: str, agent: str) -> RateUsage:
        """Report the current usage for an (operation, agent) pair without recording."""
        limit = self._limits.get(operation)
        if limit is None:
            return RateUsage(count=0, limit=None, reset_in=0.0)

        window_seconds = limit.window_ms / 1000.0
        with self._registry_lock:
            window = self._windows.get((operation, agent))
        if window is None:
            return RateUsage(count=0, limit=limit.max, reset_in=0.0)

        with window.lock:
            now = self._clock()
            window.prune(now - window_seconds)
            if not window.timestamps:
                return RateUsage(count=0, limit=limit.max, reset_in=0.0)
            reset_in = (window.timestamps[0] + window_seconds - now) * 1000.0
            return RateUsage(
                count=len(window.timestamps),
                limit=limit.max,
                reset_in=max(0.0, reset_in),
            )

    def reset(self, operation: Optional[str] = None, agent: Optional[str] = None) -> None:
        """
        Clear recorded usage.

        Args:
            operation: Limit the reset to this operation
            agent: Limit the reset to this agent

        With both arguments one pair is cleared; with one, every pair
        matching it; with none, everything.
        """
        with self._registry_lock:
            if operation is None and agent is None:
                self._windows.clear()
                return
            for key in list(self._windows):
                key_operation, key_agent = key
                if operation is not None and key_operation != operation:
                    continue
                if agent is not None and key_agent != agent:
                    continue
                del self._windows[key]

    def cleanup(self) -> int:
        """
        Drop windows with no timestamps inside the longest configured window.

        Returns:
            Number of windows removed
        """
        if not self._limits:
            removed = len(self._windows)
            self.reset()
            return removed

        longest = max(limit.window_ms for limit in self._limits.values()) / 1000.0
        cutoff = self._clock() - longest
        removed = 0

        with self._registry_lock:
            for key, window in list(self._windows.items()):
                with window.lock:
                    window.prune(cutoff)
                    if not window.timestamps:
                        del self._windows[key]
                        removed += 1

        if removed:
            logger.debug(f"Rate limiter cleanup removed {removed} idle windows")
        return removed

    def _window(self, operation: str, agent: str) -> RateWindow:
        key = (operation, agent)
        with self._registry_lock:
            window = self._windows.get(key)
            if window is None:
                window = RateWindow()
                self._windows[key] = window
            return window
