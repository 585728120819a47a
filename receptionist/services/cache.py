"""Thread-safe in-memory LRU cache with a byte-size ceiling and optional TTL.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction and promotion.
• **Size tracking** via ``json.dumps`` byte length — accurate for the JSON-
  serialisable rows returned by the record store and for dumped sessions.
• **Per-entry TTL** checked lazily on read; expired entries are dropped the
  first time they are looked up.
• **threading.Lock** for thread safety (FastAPI can handle concurrent
  requests on the same process).
• **Prefix-based invalidation** so a single admin write can clear all
  related entries (e.g. every ``services:<business_id>`` key).
• Purely ephemeral — data is lost on process restart.

Usage
─────
>>> cache = LRUCache(max_bytes=20 * 1024 * 1024)  # 20 MB
>>> cache.put("business:acme", row, ttl=300)
>>> cache.get("business:acme")
{...}
>>> cache.invalidate_prefix("services:acme")
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

# Default ceiling: 20 MB
DEFAULT_MAX_BYTES = 20 * 1024 * 1024


class LRUCache:
    """Least-Recently-Used cache bounded by total estimated byte size."""

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        default_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_bytes = max_bytes
        self._default_ttl = default_ttl
        self._clock = clock
        self._current_bytes = 0
        # key → (value, estimated_size_bytes, expires_at or None)
        self._store: OrderedDict[str, tuple[Any, int, float | None]] = OrderedDict()
        self._lock = threading.Lock()

    # ── Size estimation ──────────────────────────────────────────────

    @staticmethod
    def _estimate_bytes(value: Any) -> int:
        """Return the estimated in-memory size of *value* in bytes.

        Uses ``json.dumps`` length for JSON-serialisable objects and falls
        back to ``str()`` length for anything else.  This is a lower-bound
        estimate but good enough for cache-sizing purposes.
        """
        try:
            return len(json.dumps(value, default=str).encode("utf-8"))
        except (TypeError, ValueError, OverflowError):
            return len(str(value).encode("utf-8"))

    # ── Core operations ──────────────────────────────────────────────

    def _drop(self, key: str) -> None:
        """Remove *key* and release its bytes.  Caller holds the lock."""
        _, size, _ = self._store.pop(key)
        self._current_bytes -= size

    def _expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    def get(self, key: str) -> Any | None:
        """Return the cached value (promoting it to MRU) or ``None``."""
        with self._lock:
            if key not in self._store:
                return None
            value, _, expires_at = self._store[key]
            if self._expired(expires_at):
                self._drop(key)
                logger.debug("Cache: expired %s", key)
                return None
            # Promote to most-recently-used
            self._store.move_to_end(key)
            return value

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Insert or overwrite *key*.  Evicts LRU entries if needed.

        *ttl* (seconds) overrides the cache's default TTL for this entry.
        """
        size = self._estimate_bytes(value)

        # Don't cache if a single entry exceeds the limit
        if size > self._max_bytes:
            logger.debug(
                "Cache: skipping key %s (size %d > max %d)",
                key, size, self._max_bytes,
            )
            return

        ttl = self._default_ttl if ttl is None else ttl
        expires_at = self._clock() + ttl if ttl else None

        with self._lock:
            if key in self._store:
                self._drop(key)

            # Evict LRU entries until there is room
            while self._current_bytes + size > self._max_bytes and self._store:
                evicted_key, (_, evicted_size, _) = self._store.popitem(last=False)
                self._current_bytes -= evicted_size
                logger.debug("Cache: evicted %s (%d bytes)", evicted_key, evicted_size)

            self._store[key] = (value, size, expires_at)
            self._current_bytes += size

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            if key not in self._store:
                return False
            self._drop(key)
            return True

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key that starts with *prefix*.  Returns count removed."""
        with self._lock:
            keys = [k for k in self._store if k.startswith(prefix)]
            for key in keys:
                self._drop(key)
            return len(keys)

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._store.clear()
            self._current_bytes = 0

    # ── Introspection ────────────────────────────────────────────────

    @property
    def current_bytes(self) -> int:
        """Total estimated bytes currently stored."""
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        """Number of entries currently stored (expired ones included until read)."""
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check if a live key is present *without* promoting it."""
        with self._lock:
            entry = self._store.get(key)
            return entry is not None and not self._expired(entry[2])
