"""Thread-safe in-memory cache of span records for one evaluation run.

Records are grouped by root span id so that every span of one case's
trace can be returned with a single lookup, before falling back to a
remote span store query.

Expiry is lazy. Every read and write first sweeps entries that have not
been accessed for ``ttl`` seconds; nothing runs in the background. When a
new root would exceed ``max_entries``, the least recently accessed root is
evicted.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

SpanRecord = Dict[str, Any]


class _Entry:
    __slots__ = ("records", "accessed_at")

    def __init__(self, accessed_at: float) -> None:
        self.records: Dict[str, SpanRecord] = {}
        self.accessed_at = accessed_at


class SpanCache:
    """Bounded, TTL-expiring cache of span records keyed by root span id.

    Args:
        ttl: Seconds an entry may go unaccessed before it expires.
        max_entries: Maximum number of root span ids held at once.
        clock: Monotonic time source, injectable for tests.
    """

    DEFAULT_TTL = 300.0
    DEFAULT_MAX_ENTRIES = 1000

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        # Ordered from least to most recently accessed.
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def write(self, root_span_id: str, span_id: str, data: SpanRecord) -> None:
        """Merge ``data`` into the record for ``(root_span_id, span_id)``.

        Fields whose value is ``None`` never overwrite an existing value.
        """
        with self._lock:
            now = self._clock()
            self._evict_expired(now)

            entry = self._entries.get(root_span_id)
            if entry is None:
                if len(self._entries) >= self._max_entries:
                    self._evict_lru()
                entry = _Entry(now)
                self._entries[root_span_id] = entry

            record = entry.records.setdefault(span_id, {})
            record.update({k: v for k, v in data.items() if v is not None})
            self._touch(root_span_id, entry, now)

    def get(self, root_span_id: str) -> Optional[List[SpanRecord]]:
        """Return copies of all records for a root, or None if absent or expired."""
        with self._lock:
            now = self._clock()
            self._evict_expired(now)

            entry = self._entries.get(root_span_id)
            if entry is None:
                return None
            self._touch(root_span_id, entry, now)
            return [dict(record) for record in entry.records.values()]

    def has(self, root_span_id: str) -> bool:
        with self._lock:
            self._evict_expired(self._clock())
            return root_span_id in self._entries

    def clear(self, root_span_id: Optional[str] = None) -> None:
        """Drop one root's records, or everything when no id is given."""
        with self._lock:
            if root_span_id is None:
                self._entries.clear()
            else:
                self._entries.pop(root_span_id, None)

    def __contains__(self, root_span_id: object) -> bool:
        return isinstance(root_span_id, str) and self.has(root_span_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _touch(self, root_span_id: str, entry: _Entry, now: float) -> None:
        entry.accessed_at = now
        self._entries.move_to_end(root_span_id)

    def _evict_expired(self, now: float) -> None:
        # Access order equals timestamp order, so stop at the first live entry.
        while self._entries:
            root_span_id, entry = next(iter(self._entries.items()))
            if now - entry.accessed_at <= self._ttl:
                break
            del self._entries[root_span_id]
            logger.debug("Expired cached spans for root %s", root_span_id)

    def _evict_lru(self) -> None:
        root_span_id, _ = self._entries.popitem(last=False)
        logger.debug("Evicted least recently used root %s", root_span_id)
