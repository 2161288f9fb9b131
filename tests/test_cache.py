"""Tests for the response cache and the TTL cache."""

import threading

from knowledge_query.cache import (
    CACHE_DURATION,
    ResponseCache,
    TTLCache,
    make_cache_key,
    make_response_key,
    word_set,
)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestResponseKey:
    """Test key construction."""

    def test_whitespace_is_removed(self):
        assert make_response_key("What is X?", "doc: a b") == "WhatisX?:doc:ab"

    def test_whitespace_only_differences_collide(self):
        """Accepted approximation: whitespace variants share one key."""
        assert make_response_key("What is X?", "ctx") == make_response_key("WhatisX?", "c t x")

    def test_word_set_splits_on_non_word_characters(self):
        assert word_set("Python's GIL, explained!") == {"python", "s", "gil", "explained"}


class TestResponseCacheGetSet:
    """Test exact-match lookups and expiry."""

    def test_set_then_get_returns_stored_value(self):
        cache = ResponseCache()
        cache.set("What is X?", "document: X is Y", "X is Y.", 4)

        entry = cache.get("What is X?", "document: X is Y")
        assert entry is not None
        assert entry.response == "X is Y."
        assert entry.token_count == 4

    def test_missing_key_returns_none(self):
        cache = ResponseCache()
        assert cache.get("nothing", "here") is None

    def test_set_overwrites(self):
        cache = ResponseCache()
        cache.set("q", "c", "first", 1)
        cache.set("q", "c", "second", 1)
        assert cache.get("q", "c").response == "second"
        assert len(cache) == 1

    def test_entry_valid_just_before_expiry(self):
        clock = FakeClock()
        cache = ResponseCache(clock=clock)
        cache.set("q", "c", "answer", 1)

        clock.advance(CACHE_DURATION - 1)
        assert cache.get("q", "c").response == "answer"

    def test_entry_expires_without_explicit_delete(self):
        clock = FakeClock()
        cache = ResponseCache(clock=clock)
        cache.set("q", "c", "answer", 1)

        clock.advance(CACHE_DURATION)
        assert cache.get("q", "c") is None
        assert len(cache) == 0

    def test_stats_track_hits_and_misses(self):
        cache = ResponseCache()
        cache.set("q", "c", "answer", 1)
        cache.get("q", "c")
        cache.get("other", "c")

        stats = cache.stats
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5


class TestResponseCacheSweep:
    """Test removal of expired entries."""

    def test_sweep_removes_only_expired(self):
        clock = FakeClock()
        cache = ResponseCache(ttl=100, clock=clock)
        cache.set("old", "c", "old answer", 1)
        clock.advance(60)
        cache.set("new", "c", "new answer", 1)
        clock.advance(60)

        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.get("new", "c").response == "new answer"

    def test_periodic_sweep_runs_from_set(self):
        """Entries nobody looks up again are still reclaimed."""
        clock = FakeClock()
        cache = ResponseCache(ttl=100, clock=clock)
        for i in range(5):
            cache.set(f"query {i}", "c", "answer", 1)

        clock.advance(150)
        cache.set("fresh", "c", "answer", 1)
        assert len(cache) == 1

    def test_clear(self):
        cache = ResponseCache()
        cache.set("a", "c", "1", 1)
        cache.set("b", "c", "2", 1)
        assert cache.clear() == 2
        assert len(cache) == 0


class TestFindSimilar:
    """Test the near-duplicate fallback."""

    def test_match_with_two_shared_words(self):
        cache = ResponseCache()
        cache.set("What is python's GIL?", "document: notes", "The GIL is a lock.", 5)

        assert cache.find_similar("Explain python's GIL") == "The GIL is a lock."

    def test_single_shared_word_is_not_enough(self):
        cache = ResponseCache()
        cache.set("GIL-notes", "ctx", "answer", 1)
        assert cache.find_similar("GIL") is None

    def test_empty_cache_returns_none(self):
        assert ResponseCache().find_similar("anything at all here") is None

    def test_largest_overlap_wins(self):
        cache = ResponseCache()
        cache.set("rust-borrow-checker", "ctx", "small overlap", 1)
        cache.set("rust-borrow-checker-lifetimes-explained", "ctx", "big overlap", 1)

        assert cache.find_similar("rust borrow checker lifetimes") == "big overlap"

    def test_ties_resolved_by_first_stored_key(self):
        cache = ResponseCache()
        cache.set("alpha-beta", "one", "first", 1)
        cache.set("alpha-beta", "two", "second", 1)

        assert cache.find_similar("alpha beta") == "first"

    def test_expired_entries_are_ignored(self):
        clock = FakeClock()
        cache = ResponseCache(ttl=10, clock=clock)
        cache.set("alpha-beta", "ctx", "stale", 1)
        clock.advance(11)

        assert cache.find_similar("alpha beta") is None

    def test_custom_minimum_overlap(self):
        cache = ResponseCache()
        cache.set("alpha-beta", "ctx", "answer", 1)
        assert cache.find_similar("alpha beta", min_overlap=3) is None
        assert cache.find_similar("alpha", min_overlap=1) == "answer"


class TestResponseCacheConcurrency:
    """Test that concurrent writers do not corrupt the map."""

    def test_concurrent_set(self):
        cache = ResponseCache()

        def writer(offset: int):
            for i in range(200):
                cache.set(f"q{offset}-{i}", "c", "answer", 1)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 1000


class TestTTLCache:
    """Test the per-owner answer cache."""

    def test_set_and_get(self):
        cache = TTLCache(ttl=10)
        cache.set("key", "value")
        assert cache.get("key") == (True, "value")

    def test_expired_value_is_missing(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("key", "value")
        clock.advance(11)
        assert cache.get("key") == (False, None)

    def test_oldest_evicted_at_capacity(self):
        clock = FakeClock()
        cache = TTLCache(ttl=100, maxsize=2, clock=clock)
        cache.set("a", "1")
        clock.advance(1)
        cache.set("b", "2")
        clock.advance(1)
        cache.set("c", "3")

        assert cache.get("a") == (False, None)
        assert cache.get("c") == (True, "3")
        assert len(cache) == 2

    def test_overwrite_at_capacity_keeps_others(self):
        clock = FakeClock()
        cache = TTLCache(ttl=100, maxsize=2, clock=clock)
        cache.set("a", "1")
        cache.set("b", "2")
        cache.set("a", "3")

        assert cache.get("a") == (True, "3")
        assert cache.get("b") == (True, "2")

    def test_expired_entries_purged_before_eviction(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, maxsize=2, clock=clock)
        cache.set("old", "1")
        clock.advance(5)
        cache.set("recent", "2")
        clock.advance(6)
        cache.set("new", "3")

        assert cache.get("recent") == (True, "2")
        assert cache.get("new") == (True, "3")
        assert len(cache) == 2

    def test_make_cache_key_scopes_by_owner(self):
        assert make_cache_key("alice", "What is X?") == make_cache_key("alice", "What is X?")
        assert make_cache_key("alice", "What is X?") != make_cache_key("bob", "What is X?")
