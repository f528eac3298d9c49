"""
Unit tests for the Redis usage store.
"""

import pytest
from unittest.mock import MagicMock
from datetime import datetime, timedelta, timezone

import redis

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_rules.app.usage.redis_store import INCREMENT_LUA, RedisUsageStore
from shared.config import RulesConfig


NOW = datetime(2024, 3, 13, 10, 30, tzinfo=timezone.utc)
KEY = "rule_usage:record:user-1:rule-1:api_calls"


def stored_hash(count=3, reset_time=NOW + timedelta(minutes=30), user_id="user-1"):
    return {
        "user_id": user_id,
        "rule_id": "rule-1",
        "resource": "api_calls",
        "count": str(count),
        "last_used": NOW.isoformat(),
        "reset_time": reset_time.isoformat(),
    }


class TestRedisUsageStore:
    """Test cases for RedisUsageStore."""

    @pytest.fixture
    def mock_redis(self):
        """Mock Redis client."""
        client = MagicMock()
        client.hgetall.return_value = {}
        client.smembers.return_value = set()
        client.eval.return_value = 0
        return client

    @pytest.fixture
    def pipeline(self, mock_redis):
        """Mock Redis pipeline shared by every pipeline() call."""
        return mock_redis.pipeline.return_value

    @pytest.fixture
    def store(self, mock_redis):
        """Create a store over the mock client."""
        config = RulesConfig(usage_key_prefix="rule_usage", default_usage_window_seconds=3600)
        return RedisUsageStore(client=mock_redis, config=config, clock=lambda: NOW)

    def test_get_missing(self, store, mock_redis):
        """Test an absent hash reads as no record."""
        assert store.get("user-1", "rule-1", "api_calls") is None
        mock_redis.hgetall.assert_called_once_with(KEY)

    def test_get_parses_hash(self, store, mock_redis):
        """Test a stored hash is decoded into a usage record."""
        mock_redis.hgetall.return_value = stored_hash(count=3)

        record = store.get("user-1", "rule-1", "api_calls")

        assert record.count == 3
        assert record.last_used == NOW
        assert record.reset_time == NOW + timedelta(minutes=30)

    def test_increment_runs_one_script(self, store, mock_redis):
        """Test increment is a single atomic script call over the counter and its indexes."""
        reset_time = NOW + timedelta(minutes=30)

        store.increment("user-1", "rule-1", "api_calls", delta=2, reset_time=reset_time)

        mock_redis.eval.assert_called_once_with(
            INCREMENT_LUA,
            4,
            KEY,
            "rule_usage:by_rule:rule-1",
            "rule_usage:by_user:user-1",
            "rule_usage:records",
            "user-1",
            "rule-1",
            "api_calls",
            2,
            NOW.isoformat(),
            NOW.timestamp(),
            reset_time.isoformat(),
            reset_time.timestamp()
        )
        mock_redis.pipeline.assert_not_called()
        mock_redis.hgetall.assert_not_called()

    def test_increment_default_reset_time(self, store, mock_redis):
        """Test a counter without a reset time gets the default window."""
        store.increment("user-1", "rule-1", "api_calls")

        expected = NOW + timedelta(seconds=3600)
        args = mock_redis.eval.call_args.args
        assert args[-2:] == (expected.isoformat(), expected.timestamp())

    def test_increment_script_restarts_expired_counter(self):
        """Test the script zeroes an expired counter before adding to it."""
        expiry_check = INCREMENT_LUA.index("tonumber(ARGV[6]) > reset_epoch")
        restart = INCREMENT_LUA.index("'count', 0")
        add = INCREMENT_LUA.index("HINCRBY")

        assert expiry_check < restart < add

    def test_reset_missing_is_noop(self, store, mock_redis):
        """Test resetting a missing counter writes nothing."""
        mock_redis.exists.return_value = 0

        store.reset("user-1", "rule-1", "api_calls", NOW + timedelta(hours=1))

        mock_redis.hset.assert_not_called()

    def test_reset_existing(self, store, mock_redis):
        """Test reset zeroes the count and moves the reset time."""
        mock_redis.exists.return_value = 1
        new_reset = NOW + timedelta(hours=1)

        store.reset("user-1", "rule-1", "api_calls", new_reset)

        mock_redis.hset.assert_called_once_with(KEY, mapping={
            "count": 0,
            "reset_time": new_reset.isoformat(),
            "reset_epoch": new_reset.timestamp(),
            "last_used": NOW.isoformat(),
        })

    def test_list_for_rule_skips_dangling_index_entries(self, store, mock_redis, pipeline):
        """Test index members whose hash is gone are ignored."""
        mock_redis.smembers.return_value = {KEY, "rule_usage:record:user-2:rule-1:api_calls"}
        pipeline.execute.return_value = [stored_hash(), {}]

        records = store.list_for_rule("rule-1")

        mock_redis.smembers.assert_called_once_with("rule_usage:by_rule:rule-1")
        mock_redis.pipeline.assert_called_once_with(transaction=False)
        assert [r.user_id for r in records] == ["user-1"]

    def test_list_for_user_since(self, store, mock_redis, pipeline):
        """Test user activity is filtered on last use."""
        mock_redis.smembers.return_value = {KEY}
        pipeline.execute.return_value = [stored_hash()]

        assert len(store.list_for_user("user-1", since=NOW - timedelta(days=1))) == 1
        assert store.list_for_user("user-1", since=NOW + timedelta(days=1)) == []

    def test_delete_for_rule(self, store, mock_redis, pipeline):
        """Test deleting a rule's counters removes hashes and index entries."""
        mock_redis.smembers.return_value = {KEY}
        pipeline.execute.side_effect = [[stored_hash()], [1, 1, 1, 1]]

        assert store.delete_for_rule("rule-1") == 1

        pipeline.delete.assert_called_once_with(KEY)
        pipeline.srem.assert_any_call("rule_usage:by_user:user-1", KEY)
        mock_redis.delete.assert_called_once_with("rule_usage:by_rule:rule-1")

    def test_delete_expired(self, store, mock_redis, pipeline):
        """Test only expired counters are deleted."""
        fresh_key = "rule_usage:record:user-2:rule-1:api_calls"
        mock_redis.smembers.return_value = {KEY, fresh_key}
        pipeline.execute.side_effect = [
            [stored_hash(reset_time=NOW - timedelta(minutes=1)), stored_hash(user_id="user-2")],
            [1, 1, 1, 1],
        ]

        assert store.delete_expired(NOW) == 1
        pipeline.delete.assert_called_once_with(KEY)

    def test_delete_expired_nothing_to_do(self, store, mock_redis):
        """Test no pipeline is opened when there are no counters."""
        assert store.delete_expired(NOW) == 0
        mock_redis.pipeline.assert_not_called()

    def test_health_check(self, store, mock_redis):
        """Test health reflects PING."""
        mock_redis.ping.return_value = True
        assert store.health_check() is True

        mock_redis.ping.side_effect = redis.ConnectionError("down")
        assert store.health_check() is False

    def test_close(self, store, mock_redis):
        """Test closing releases the client."""
        store.close()

        mock_redis.close.assert_called_once()
