"""
In-memory caches for generated answers.

Provides:
- ResponseCache: answers keyed by (query, assembled context), with a 24 hour
  lifetime and a word-overlap lookup used only when fresh generation fails
- TTLCache: per-owner answers to repeated questions, checked before retrieval

Both are process-local and guarded by a lock so concurrent callers see
consistent state.
"""

import re
import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Set, Tuple
from threading import Lock

logger = logging.getLogger(__name__)

CACHE_DURATION = 60 * 60 * 24  # 24 hours

_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"\W+")


@dataclass(frozen=True)
class CacheEntry:
    """A cached answer."""
    response: str
    created_at: float
    token_count: int


def make_response_key(query: str, context: str) -> str:
    """
    Build the response cache key.

    All whitespace is removed, so query/context pairs that differ only in
    whitespace share a key.
    """
    return _WHITESPACE.sub("", f"{query}:{context}")


def word_set(text: str) -> Set[str]:
    """Lowercase words of text split on non-word characters."""
    return {w for w in _NON_WORD.split(text.lower()) if w}


class ResponseCache:
    """
    Exact-match answer cache with a near-duplicate fallback.

    Entries are valid while ``now - created_at < ttl``. Expired entries are
    dropped when looked up and by a sweep that runs from get/set once a full
    ttl interval has passed since the previous sweep.

    Attributes:
        ttl: Entry lifetime in seconds
    """

    def __init__(self, ttl: float = CACHE_DURATION, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = Lock()
        self._last_sweep = clock()
        self._hits = 0
        self._misses = 0

    def get(self, query: str, context: str) -> Optional[CacheEntry]:
        """
        Look up the answer for (query, context).

        Returns:
            The entry, or None if missing or expired.
        """
        key = make_response_key(query, context)
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)

            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if now - entry.created_at >= self.ttl:
                del self._entries[key]
                self._misses += 1
                return None

            self._hits += 1
            return entry

    def set(self, query: str, context: str, response: str, token_count: int) -> None:
        """Store an answer, replacing any existing entry for the key."""
        key = make_response_key(query, context)
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            self._entries[key] = CacheEntry(
                response=response,
                created_at=now,
                token_count=token_count,
            )

    def find_similar(self, query: str, min_overlap: int = 2) -> Optional[str]:
        """
        Find a cached answer whose key shares the most words with query.

        Keys are compared as lowercase word sets. The key with the strictly
        largest overlap wins, so among equal overlaps the earliest stored key
        is kept. Expired entries are ignored.

        Args:
            query: The user's question
            min_overlap: Minimum number of shared words to accept a match

        Returns:
            The cached response text, or None if nothing overlaps enough.
        """
        query_words = word_set(query)
        if not query_words:
            return None

        with self._lock:
            now = self._clock()
            best_key: Optional[str] = None
            best_overlap = 0

            for key, entry in self._entries.items():
                if now - entry.created_at >= self.ttl:
                    continue
                overlap = len(query_words & word_set(key))
                if overlap > best_overlap:
                    best_overlap = overlap
                    best_key = key

            if best_key is not None and best_overlap >= min_overlap:
                logger.debug(f"Similar cached response found (overlap={best_overlap})")
                return self._entries[best_key].response

        return None

    def sweep(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            return self._sweep(self._clock())

    def _maybe_sweep(self, now: float) -> None:
        """Sweep if a full ttl has passed since the last sweep. Must be called with lock held."""
        if now - self._last_sweep >= self.ttl:
            self._sweep(now)

    def _sweep(self, now: float) -> int:
        """Evict all expired entries. Must be called with lock held."""
        expired = [k for k, e in self._entries.items() if now - e.created_at > self.ttl]
        for k in expired:
            del self._entries[k]
        self._last_sweep = now
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> int:
        """
        Clear all entries from the cache.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    @property
    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            hit_rate = self._hits / total if total > 0 else 0.0
            return {
                "size": len(self._entries),
                "ttl": self.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": hit_rate
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class TTLCache:
    """
    Answers keyed per owner, each kept for `ttl` seconds.

    Expired entries are dropped when read. Once `maxsize` entries are held,
    expired ones are purged before the least recently stored is evicted.
    """

    def __init__(self, ttl: float = 3600.0, maxsize: int = 1000, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.maxsize = maxsize
        self._clock = clock
        self._cache: Dict[Hashable, Tuple[float, str]] = {}
        self._lock = Lock()

    def get(self, key: Hashable) -> Tuple[bool, Optional[str]]:
        """
        Returns:
            Tuple of (found, answer). A missing or expired key gives (False, None).
        """
        with self._lock:
            item = self._cache.get(key)
            if item is None:
                return False, None

            stored_at, answer = item
            if self._clock() - stored_at > self.ttl:
                del self._cache[key]
                return False, None

            return True, answer

    def set(self, key: Hashable, answer: str) -> None:
        with self._lock:
            now = self._clock()
            if len(self._cache) >= self.maxsize and key not in self._cache:
                expired = [k for k, (ts, _) in self._cache.items() if now - ts > self.ttl]
                for k in expired:
                    del self._cache[k]
                if len(self._cache) >= self.maxsize:
                    oldest = min(self._cache, key=lambda k: self._cache[k][0])
                    del self._cache[oldest]

            self._cache[key] = (now, answer)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


def make_cache_key(owner_id: str, query: str) -> Tuple[str, str]:
    """Answer cache key; the query is matched exactly, whitespace included."""
    return (str(owner_id), query)
