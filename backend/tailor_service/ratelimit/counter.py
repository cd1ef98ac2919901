"""
Sliding Window Counter

Per-key request/token log evaluated over several time windows at once.
Used both for per-caller throttling and for the shared upstream quota.

State is process-local: a restart loses every counter. All mutation is
synchronous and performs no I/O, so callers running on a single event loop
need no locking.
"""

import math
import time
import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .config import DAY_MS, MINUTE_MS

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class WindowSpec:
    """A named window with its ceiling."""

    name: str
    duration_ms: int
    limit: int


@dataclass
class WindowCount:
    """Usage observed for one window after the latest append."""

    name: str
    duration_ms: int
    limit: int
    count: int
    retry_after: int = 0

    @property
    def exceeded(self) -> bool:
        return self.count > self.limit


@dataclass
class CounterEntry:
    """Append-only request timestamps (ms) and their token weights."""

    requests: List[int] = field(default_factory=list)
    tokens: List[int] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.requests and not self.tokens


class SlidingWindowCounter:
    """
    In-memory sliding-log counter keyed by an arbitrary string.

    Windows are always evaluated smallest-to-largest so that the first
    exceeded window yields the soonest retry-after.
    """

    def __init__(
        self,
        cleanup_interval_ms: int = 5 * MINUTE_MS,
        retention_ms: int = DAY_MS,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Args:
            cleanup_interval_ms: Minimum time between two cleanup sweeps
            retention_ms: Entries older than this are dropped on cleanup
            clock: Callable returning the current time in ms since epoch
        """
        self.cleanup_interval_ms = cleanup_interval_ms
        self.retention_ms = retention_ms
        self._clock = clock or _now_ms
        self.entries: Dict[str, CounterEntry] = {}
        self._last_cleanup = self._clock()

    def now(self) -> int:
        return self._clock()

    def record(self, key: str, tokens: Optional[int] = None) -> CounterEntry:
        """Append one request (and its token weight) to ``key``."""
        self.cleanup()

        now = self.now()
        entry = self.entries.get(key)
        if entry is None:
            entry = CounterEntry()
            self.entries[key] = entry

        # Keep the log sorted even if the wall clock steps backwards
        if entry.requests and now < entry.requests[-1]:
            now = entry.requests[-1]

        entry.requests.append(now)
        entry.tokens.append(int(tokens or 0))
        return entry

    def count(self, key: str, windows: Sequence[WindowSpec]) -> List[WindowCount]:
        """Count requests per window without recording anything.

        A window of duration ``d`` covers ``(now - d, now]``: an entry exactly
        ``d`` old has already left it.
        """
        entry = self.entries.get(key)
        now = self.now()
        counts = []

        for window in sorted(windows, key=lambda w: w.duration_ms):
            if entry is None:
                counts.append(WindowCount(window.name, window.duration_ms, window.limit, 0))
                continue

            start_idx = bisect_right(entry.requests, now - window.duration_ms)
            in_window = len(entry.requests) - start_idx
            retry_after = 0
            if in_window > window.limit:
                oldest = entry.requests[start_idx]
                retry_after = max(0, math.ceil((oldest + window.duration_ms - now) / 1000))

            counts.append(
                WindowCount(window.name, window.duration_ms, window.limit, in_window, retry_after)
            )

        return counts

    def record_and_count(
        self,
        key: str,
        windows: Sequence[WindowSpec],
        tokens: Optional[int] = None,
    ) -> List[WindowCount]:
        """Record a request, then count it against every window."""
        self.record(key, tokens)
        return self.count(key, windows)

    def count_in_window(self, key: str, duration_ms: int) -> int:
        """Number of requests recorded for ``key`` within the window."""
        entry = self.entries.get(key)
        if entry is None:
            return 0

        return len(entry.requests) - bisect_right(entry.requests, self.now() - duration_ms)

    def sum_tokens(self, key: str, duration_ms: int) -> int:
        """Total token weight recorded for ``key`` within the window."""
        entry = self.entries.get(key)
        if entry is None:
            return 0

        start_idx = bisect_right(entry.requests, self.now() - duration_ms)
        return sum(entry.tokens[start_idx:])

    def total(self, key: str) -> int:
        entry = self.entries.get(key)
        return len(entry.requests) if entry else 0

    @staticmethod
    def first_exceeded(counts: Sequence[WindowCount]) -> Optional[WindowCount]:
        """Return the smallest window whose ceiling was exceeded, if any."""
        for window_count in counts:
            if window_count.exceeded:
                return window_count
        return None

    def cleanup(self, force: bool = False) -> int:
        """
        Drop entries older than the retention window.

        Runs at most once per cleanup interval unless forced.

        Returns:
            Number of keys deleted
        """
        now = self.now()
        if not force and now - self._last_cleanup < self.cleanup_interval_ms:
            return 0

        self._last_cleanup = now
        cutoff = now - self.retention_ms
        removed = 0

        for key in list(self.entries.keys()):
            entry = self.entries[key]
            keep_from = bisect_right(entry.requests, cutoff)
            if keep_from:
                entry.requests = entry.requests[keep_from:]
                entry.tokens = entry.tokens[keep_from:]

            if entry.is_empty():
                del self.entries[key]
                removed += 1

        if removed:
            logger.debug(f"Counter cleanup removed {removed} idle keys")

        return removed

    def reset(self) -> None:
        """Forget all counters (useful for testing)."""
        self.entries.clear()
        self._last_cleanup = self.now()
