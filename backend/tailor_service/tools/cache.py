"""
Short-lived in-memory cache for enrichment tool results.
"""

import json
import time
import hashlib
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_ENTRIES = 256


@dataclass
class _CacheEntry:
    data: Any
    stored_at: float
    ttl: float


def generate_cache_key(prefix: str, data: Union[str, dict, list]) -> str:
    """Stable cache key from a prefix and the call's input."""
    raw = data if isinstance(data, str) else json.dumps(data, sort_keys=True, default=str)
    digest = hashlib.md5(raw.encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"


class ToolResultCache:
    """
    TTL cache holding at most ``max_entries`` results.

    Expired entries are dropped on read and swept on every write; past the
    bound the least recently used entry is evicted.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.default_ttl = default_ttl
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._clock() - entry.stored_at > entry.ttl:
            del self._entries[key]
            return None

        self._entries.move_to_end(key)
        return entry.data

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        self._sweep(now)
        self._entries[key] = _CacheEntry(data=data, stored_at=now, ttl=ttl or self.default_ttl)
        self._entries.move_to_end(key)

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Tool cache full, evicted {evicted}")

    def _sweep(self, now: float) -> None:
        for key in [k for k, e in self._entries.items() if now - e.stored_at > e.ttl]:
            del self._entries[key]

    def clear(self, prefix: Optional[str] = None) -> None:
        if prefix is None:
            self._entries.clear()
            return

        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
