"""Tests for BoundedTTLCache and DedupGuard."""

from pathlib import Path

import pytest

from transcript_relay.dedup import BoundedTTLCache, DedupGuard
from transcript_relay.monitoring.checkpoint_store import CheckpointStore


class TestBoundedTTLCache:
    """Tests for the in-memory cache."""

    def test_evicts_oldest_on_overflow(self, clock) -> None:
        cache = BoundedTTLCache(max_entries=3, clock=clock)
        for key in "abcd":
            cache.add(key)

        assert len(cache) == 3
        assert "a" not in cache
        assert cache.keys() == ["b", "c", "d"]

    def test_readd_moves_to_newest(self, clock) -> None:
        """Test that re-adding refreshes eviction order."""
        cache = BoundedTTLCache(max_entries=2, clock=clock)
        cache.add("a")
        cache.add("b")
        cache.add("a")
        cache.add("c")

        assert cache.keys() == ["a", "c"]

    def test_ttl(self, clock) -> None:
        cache = BoundedTTLCache(ttl_seconds=10, clock=clock)
        cache.add("a")
        clock.advance(10)
        assert "a" in cache
        clock.advance(0.5)
        assert "a" not in cache
        assert len(cache) == 0

    def test_remove_expired(self, clock) -> None:
        cache = BoundedTTLCache(ttl_seconds=10, clock=clock)
        cache.add("old")
        clock.advance(8)
        cache.add("new")
        clock.advance(5)

        assert cache.remove_expired() == 1
        assert cache.keys() == ["new"]

    def test_non_string_keys(self, clock) -> None:
        cache = BoundedTTLCache(clock=clock)
        assert 42 not in cache

    def test_rejects_zero_capacity(self) -> None:
        with pytest.raises(ValueError):
            BoundedTTLCache(max_entries=0)


class TestDedupGuard:
    """Tests for the two-layer guard."""

    @pytest.fixture
    def guard(self, store: CheckpointStore, clock) -> DedupGuard:
        return DedupGuard(store, cache=BoundedTTLCache(ttl_seconds=3600, clock=clock))

    def test_seen_until_ttl_then_reinserted(self, guard: DedupGuard, clock) -> None:
        """Test the full lifecycle of one id: seen, expired, seen again."""
        assert guard.seen("u1") is False
        guard.mark_seen("u1")
        assert guard.seen("u1") is True

        clock.advance(3600)
        assert guard.seen("u1") is True
        clock.advance(1)
        assert guard.seen("u1") is False

        guard.mark_seen("u1")
        assert guard.seen("u1") is True

    def test_mark_seen_writes_both_layers(self, guard: DedupGuard, store: CheckpointStore) -> None:
        guard.mark_seen("u1")
        assert "u1" in guard.cache
        assert store.has_uuid("u1")

    def test_store_answers_after_cache_cleared(self, guard: DedupGuard) -> None:
        """Test the durable fallback once the fast path is gone."""
        guard.mark_seen("u1")
        assert guard.clear_cache() == 1
        assert guard.seen("u1") is True

    def test_survives_restart(self, guard: DedupGuard, store: CheckpointStore, state_file: Path, clock) -> None:
        """Test that a new guard over a reloaded store still knows the id."""
        guard.mark_seen("u1")
        store.close()

        reloaded = DedupGuard(CheckpointStore(state_file, clock=clock))
        assert reloaded.seen("u1") is True

    def test_cleanup(self, guard: DedupGuard, store: CheckpointStore, clock) -> None:
        guard.mark_seen("u1")
        clock.advance(3601)

        assert guard.cleanup() == 2
        assert store.uuid_count == 0
        assert len(guard.cache) == 0

    def test_default_cache_shares_store_ttl(self, state_file: Path, clock) -> None:
        store = CheckpointStore(state_file, uuid_ttl_seconds=60, clock=clock)
        assert DedupGuard(store).cache.ttl_seconds == 60
