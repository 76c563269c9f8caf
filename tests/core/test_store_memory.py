"""Tests for InMemoryCounterStore."""

from throttled.core.store import InMemoryCounterStore


class TestReserve:
    """Concurrency slot reservation."""

    def test_reserves_up_to_limit(self, store):
        assert store.reserve("k", "a", 2, 900) is True
        assert store.reserve("k", "b", 2, 900) is True
        assert store.reserve("k", "c", 2, 900) is False
        assert store.occupancy("k") == 2

    def test_reserve_is_idempotent(self, store):
        assert store.reserve("k", "a", 1, 900) is True
        assert store.reserve("k", "a", 1, 900) is True
        assert store.occupancy("k") == 1

    def test_release_frees_slot(self, store):
        store.reserve("k", "a", 1, 900)
        store.release("k", "a")
        assert store.reserve("k", "b", 1, 900) is True

    def test_release_unknown_member_is_noop(self, store):
        store.release("k", "ghost")
        store.reserve("k", "a", 1, 900)
        store.release("k", "ghost")
        assert store.occupancy("k") == 1

    def test_slots_expire_after_ttl(self, store, clock):
        store.reserve("k", "a", 1, 10)
        clock.advance(9)
        assert store.reserve("k", "b", 1, 10) is False
        clock.advance(1)
        assert store.occupancy("k") == 0
        assert store.reserve("k", "b", 1, 10) is True

    def test_keys_are_independent(self, store):
        store.reserve("k1", "a", 1, 900)
        assert store.reserve("k2", "a", 1, 900) is True


class TestIncrementWindow:
    """Fixed-window counting."""

    def test_counts_up_to_limit(self, store):
        assert [store.increment_window("w", 3, 10) for _ in range(4)] == [True, True, True, False]

    def test_rejected_increment_is_not_counted(self, store):
        for _ in range(10):
            store.increment_window("w", 3, 10)
        assert store.window_count("w") == 3

    def test_window_expires_after_period(self, store, clock):
        for _ in range(3):
            store.increment_window("w", 3, 10)
        clock.advance(10)
        assert store.window_count("w") == 0
        assert store.increment_window("w", 3, 10) is True

    def test_expiry_measured_from_first_increment(self, store, clock):
        store.increment_window("w", 5, 10)
        clock.advance(6)
        store.increment_window("w", 5, 10)
        clock.advance(4)
        assert store.window_count("w") == 0

    def test_missing_window_counts_zero(self, store):
        assert store.window_count("nope") == 0


class TestBoundedState:
    """Expired state is dropped, not retained forever."""

    def test_past_windows_are_swept(self, store, clock):
        for window in range(1000):
            store.increment_window(f"w:{window}", 5, 1)
            clock.advance(1)
        assert len(store._windows) <= 1

    def test_live_windows_survive_sweep(self, store, clock):
        store.increment_window("short", 5, 1)
        store.increment_window("long", 5, 100)
        clock.advance(2)
        store.increment_window("next", 5, 1)
        assert "short" not in store._windows
        assert store.window_count("long") == 1

    def test_released_slot_key_is_dropped(self, store):
        store.reserve("k", "a", 1, 900)
        store.release("k", "a")
        assert "k" not in store._slots

    def test_reading_empty_key_leaves_nothing(self, store):
        for n in range(100):
            store.occupancy(f"k:{n}")
        assert store._slots == {}

    def test_expired_slots_drop_key(self, store, clock):
        store.reserve("k", "a", 1, 10)
        clock.advance(10)
        assert store.occupancy("k") == 0
        assert "k" not in store._slots


def test_clear_drops_all_state():
    store = InMemoryCounterStore()
    store.reserve("k", "a", 1, 900)
    store.increment_window("w", 1, 10)
    store.clear()
    assert store.occupancy("k") == 0
    assert store.window_count("w") == 0
