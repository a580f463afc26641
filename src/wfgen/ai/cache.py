"""Content-addressed cache for generation responses.

Keys are a pure function of the prompt and sampling parameters, so two calls
that would ask the model the same question share one entry. The cache is an
explicitly constructed object: pipelines share one by passing it around, and
tests get an isolated instance with a controllable clock.
"""

import hashlib
import json
import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_TTL_SECONDS = 30 * 60.0

_WHITESPACE = re.compile(r"\s+")


def normalize_prompt(prompt: str) -> str:
    """Trim and collapse whitespace runs; case is significant."""
    return _WHITESPACE.sub(" ", prompt).strip()


def make_cache_key(prompt: str, model: str, temperature: float, top_p: float, max_tokens: int) -> str:
    """Build the cache key for one generation call.

    Floats are rounded to three decimals so that 0.3 and 0.30000000000000004
    hash alike.
    """
    payload = {
        "prompt": normalize_prompt(prompt),
        "model": model,
        "temperature": round(float(temperature), 3),
        "top_p": round(float(top_p), 3),
        "max_tokens": int(max_tokens),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    key: str
    value: str
    created_at: float
    last_accessed: float
    expires_at: float


class PromptCache:
    """Thread-safe TTL cache with least-recently-used eviction.

    All reads and writes happen under one lock, so a concurrent reader never
    observes a half-applied update and each eviction happens exactly once.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def get(self, key: str) -> Optional[str]:
        """Return the cached text, or None on a miss.

        Expired and corrupt entries are dropped and reported as misses.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self._clock()
            if now >= entry.expires_at:
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None

            if not isinstance(entry.value, str):
                logger.warning("Dropping corrupt cache entry", extra={"key": key[:16]})
                del self._entries[key]
                self._misses += 1
                return None

            entry.last_accessed = now
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def put(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds (default TTL when None)."""
        if not isinstance(value, str):
            raise TypeError("cache values must be strings")
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return

        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(
                key=key, value=value, created_at=now, last_accessed=now, expires_at=now + ttl
            )
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("Evicted least recently used cache entry", extra={"key": evicted[:16]})

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)
            return len(expired)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
