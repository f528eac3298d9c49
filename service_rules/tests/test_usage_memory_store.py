"""
Unit tests for the in-memory usage store.
"""

import pytest
import threading
from datetime import datetime, timedelta, timezone

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_rules.app.usage.memory import InMemoryUsageStore


NOW = datetime(2024, 3, 13, 10, 30, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class TestInMemoryUsageStore:
    """Test cases for InMemoryUsageStore."""

    @pytest.fixture
    def clock(self):
        """Create a fixed clock."""
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        """Create an empty store."""
        return InMemoryUsageStore(clock=clock)

    def test_get_missing(self, store):
        """Test a counter never incremented is absent."""
        assert store.get("user-1", "rule-1", "api_calls") is None

    def test_increment_creates_record(self, store):
        """Test the first increment creates the counter."""
        store.increment("user-1", "rule-1", "api_calls")

        record = store.get("user-1", "rule-1", "api_calls")
        assert record.count == 1
        assert record.last_used == NOW
        assert record.reset_time == NOW + timedelta(hours=1)

    def test_increment_uses_given_reset_time_on_create(self, store):
        """Test the reset time is fixed by the first increment."""
        first_reset = NOW + timedelta(minutes=30)
        store.increment("user-1", "rule-1", "api_calls", reset_time=first_reset)
        store.increment("user-1", "rule-1", "api_calls", delta=2, reset_time=NOW + timedelta(days=1))

        record = store.get("user-1", "rule-1", "api_calls")
        assert record.count == 3
        assert record.reset_time == first_reset

    def test_increment_restarts_expired_counter(self, store, clock):
        """Test incrementing past the reset time starts a new window."""
        store.increment("user-1", "rule-1", "api_calls", delta=4, reset_time=NOW + timedelta(minutes=30))
        clock.advance(minutes=31)
        next_reset = datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)

        store.increment("user-1", "rule-1", "api_calls", reset_time=next_reset)

        record = store.get("user-1", "rule-1", "api_calls")
        assert record.count == 1
        assert record.reset_time == next_reset
        assert record.last_used == clock.now

    def test_increment_at_reset_time_keeps_counter(self, store, clock):
        """Test a counter is still live at exactly its reset time."""
        store.increment("user-1", "rule-1", "api_calls", reset_time=NOW + timedelta(minutes=30))
        clock.advance(minutes=30)

        store.increment("user-1", "rule-1", "api_calls", reset_time=NOW + timedelta(hours=2))

        record = store.get("user-1", "rule-1", "api_calls")
        assert record.count == 2
        assert record.reset_time == NOW + timedelta(minutes=30)

    def test_get_returns_snapshot(self, store):
        """Test mutating a returned record does not touch the store."""
        store.increment("user-1", "rule-1", "api_calls")
        snapshot = store.get("user-1", "rule-1", "api_calls")
        snapshot.count = 99

        assert store.get("user-1", "rule-1", "api_calls").count == 1

    def test_reset(self, store, clock):
        """Test reset zeroes the counter and moves the reset time."""
        store.increment("user-1", "rule-1", "api_calls", delta=4)
        clock.advance(hours=2)
        store.reset("user-1", "rule-1", "api_calls", clock.now + timedelta(hours=1))

        record = store.get("user-1", "rule-1", "api_calls")
        assert record.count == 0
        assert record.reset_time == clock.now + timedelta(hours=1)

    def test_reset_missing_is_noop(self, store):
        """Test resetting a missing counter creates nothing."""
        store.reset("user-1", "rule-1", "api_calls", NOW)

        assert store.get("user-1", "rule-1", "api_calls") is None
        assert len(store) == 0

    def test_counters_are_independent(self, store):
        """Test counters are keyed on user, rule and resource."""
        store.increment("user-1", "rule-1", "api_calls")
        store.increment("user-2", "rule-1", "api_calls")
        store.increment("user-1", "rule-2", "api_calls")

        assert len(store) == 3
        assert [r.user_id for r in store.list_for_rule("rule-1")] == ["user-1", "user-2"]
        assert len(store.list_for_user("user-1")) == 2

    def test_list_for_user_since(self, store, clock):
        """Test activity can be limited to recent use."""
        store.increment("user-1", "rule-1", "api_calls")
        clock.advance(days=10)
        store.increment("user-1", "rule-2", "bug_reports")

        recent = store.list_for_user("user-1", since=clock.now - timedelta(days=1))

        assert [r.rule_id for r in recent] == ["rule-2"]

    def test_delete_for_rule(self, store):
        """Test every counter of a rule is removed."""
        store.increment("user-1", "rule-1", "api_calls")
        store.increment("user-2", "rule-1", "api_calls")
        store.increment("user-1", "rule-2", "api_calls")

        assert store.delete_for_rule("rule-1") == 2
        assert store.list_for_rule("rule-1") == []
        assert len(store) == 1

    def test_delete_expired(self, store, clock):
        """Test only counters past their reset time are removed."""
        store.increment("user-1", "rule-1", "api_calls", reset_time=NOW + timedelta(minutes=10))
        store.increment("user-2", "rule-1", "api_calls", reset_time=NOW + timedelta(hours=5))

        assert store.delete_expired(NOW + timedelta(hours=1)) == 1
        assert store.get("user-1", "rule-1", "api_calls") is None
        assert store.get("user-2", "rule-1", "api_calls") is not None

    def test_concurrent_increments_not_lost(self, store):
        """Test concurrent increments of one counter are all applied."""
        def worker():
            for _ in range(100):
                store.increment("user-1", "rule-1", "api_calls")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.get("user-1", "rule-1", "api_calls").count == 800
