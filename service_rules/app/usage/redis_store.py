"""
Redis-backed usage store.

Each counter is a hash. Increments run as one Lua script, so the expiry
check, the restart and ``HINCRBY`` are atomic across processes. Set
indexes per rule and per user back the management queries.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import redis

from shared.config import RulesConfig, get_config
from shared.logging import get_logger
from ..rules.models import UsageRecord, as_utc, utcnow
from .store import UsageStore

# KEYS: record, rule index, user index, all-records index
# ARGV: user_id, rule_id, resource, delta, now iso, now epoch, window end iso, window end epoch
# Returns 1 when an expired counter was restarted.
INCREMENT_LUA = """
local rolled_over = 0
local reset_epoch = tonumber(redis.call('HGET', KEYS[1], 'reset_epoch'))
if reset_epoch and tonumber(ARGV[6]) > reset_epoch then
    redis.call('HSET', KEYS[1], 'count', 0, 'reset_time', ARGV[7], 'reset_epoch', ARGV[8])
    rolled_over = 1
end
redis.call('HSETNX', KEYS[1], 'user_id', ARGV[1])
redis.call('HSETNX', KEYS[1], 'rule_id', ARGV[2])
redis.call('HSETNX', KEYS[1], 'resource', ARGV[3])
redis.call('HSETNX', KEYS[1], 'reset_time', ARGV[7])
redis.call('HSETNX', KEYS[1], 'reset_epoch', ARGV[8])
redis.call('HINCRBY', KEYS[1], 'count', ARGV[4])
redis.call('HSET', KEYS[1], 'last_used', ARGV[5])
redis.call('SADD', KEYS[2], KEYS[1])
redis.call('SADD', KEYS[3], KEYS[1])
redis.call('SADD', KEYS[4], KEYS[1])
return rolled_over
"""


class RedisUsageStore(UsageStore):
    """Usage counters in Redis hashes."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        config: Optional[RulesConfig] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.config = config or get_config()
        self.logger = get_logger("rules.usage.redis")
        self.clock = clock
        self.prefix = self.config.usage_key_prefix
        self.default_window = timedelta(seconds=self.config.default_usage_window_seconds)
        self.client = client if client is not None else self._connect()

    def _connect(self) -> redis.Redis:
        client = redis.Redis.from_url(
            self.config.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.config.redis_socket_timeout,
            socket_timeout=self.config.redis_socket_timeout,
            retry_on_timeout=True,
            health_check_interval=30
        )
        self.logger.info("Redis usage store configured", redis_url=self.config.redis_url)
        return client

    def close(self):
        self.client.close()
        self.logger.info("Redis usage store closed")

    def health_check(self) -> bool:
        """Check Redis health."""
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            self.logger.warning("Redis health check failed", error=str(e))
            return False

    # Keys

    def _record_key(self, user_id: str, rule_id: str, resource: str) -> str:
        return f"{self.prefix}:record:{user_id}:{rule_id}:{resource}"

    def _rule_index(self, rule_id: str) -> str:
        return f"{self.prefix}:by_rule:{rule_id}"

    def _user_index(self, user_id: str) -> str:
        return f"{self.prefix}:by_user:{user_id}"

    def _all_index(self) -> str:
        return f"{self.prefix}:records"

    # Serialization

    @staticmethod
    def _to_record(data: Dict[str, Any]) -> Optional[UsageRecord]:
        if not data:
            return None
        last_used = data.get("last_used")
        return UsageRecord(
            user_id=data["user_id"],
            rule_id=data["rule_id"],
            resource=data["resource"],
            count=int(data.get("count", 0)),
            last_used=as_utc(datetime.fromisoformat(last_used)) if last_used else None,
            reset_time=as_utc(datetime.fromisoformat(data["reset_time"]))
        )

    def _fetch_many(self, keys: List[str]) -> List[UsageRecord]:
        if not keys:
            return []
        pipe = self.client.pipeline(transaction=False)
        for key in keys:
            pipe.hgetall(key)
        records = [self._to_record(data) for data in pipe.execute()]
        # Index members can outlive a record deleted elsewhere
        return [record for record in records if record is not None]

    def _delete_records(self, records: List[UsageRecord]) -> int:
        if not records:
            return 0
        pipe = self.client.pipeline(transaction=True)
        for record in records:
            key = self._record_key(record.user_id, record.rule_id, record.resource)
            pipe.delete(key)
            pipe.srem(self._rule_index(record.rule_id), key)
            pipe.srem(self._user_index(record.user_id), key)
            pipe.srem(self._all_index(), key)
        pipe.execute()
        return len(records)

    # Contract

    def get(self, user_id: str, rule_id: str, resource: str) -> Optional[UsageRecord]:
        return self._to_record(self.client.hgetall(self._record_key(user_id, rule_id, resource)))

    def increment(
        self,
        user_id: str,
        rule_id: str,
        resource: str,
        delta: int = 1,
        reset_time: Optional[datetime] = None
    ) -> None:
        now = self.clock()
        key = self._record_key(user_id, rule_id, resource)
        window_end = as_utc(reset_time) if reset_time else now + self.default_window

        rolled_over = self.client.eval(
            INCREMENT_LUA,
            4,
            key,
            self._rule_index(rule_id),
            self._user_index(user_id),
            self._all_index(),
            user_id,
            rule_id,
            resource,
            delta,
            now.isoformat(),
            now.timestamp(),
            window_end.isoformat(),
            window_end.timestamp()
        )
        if rolled_over:
            self.logger.debug("Usage window rolled over", user_id=user_id, rule_id=rule_id, resource=resource)

    def reset(self, user_id: str, rule_id: str, resource: str, new_reset_time: datetime) -> None:
        key = self._record_key(user_id, rule_id, resource)
        if not self.client.exists(key):
            return
        new_reset_time = as_utc(new_reset_time)
        self.client.hset(key, mapping={
            "count": 0,
            "reset_time": new_reset_time.isoformat(),
            "reset_epoch": new_reset_time.timestamp(),
            "last_used": self.clock().isoformat(),
        })

    def list_for_rule(self, rule_id: str) -> List[UsageRecord]:
        return self._fetch_many(sorted(self.client.smembers(self._rule_index(rule_id))))

    def list_for_user(self, user_id: str, since: Optional[datetime] = None) -> List[UsageRecord]:
        records = self._fetch_many(sorted(self.client.smembers(self._user_index(user_id))))
        if since is None:
            return records
        since = as_utc(since)
        return [r for r in records if r.last_used is not None and r.last_used >= since]

    def delete_for_rule(self, rule_id: str) -> int:
        records = self.list_for_rule(rule_id)
        deleted = self._delete_records(records)
        self.client.delete(self._rule_index(rule_id))
        self.logger.info("Usage deleted for rule", rule_id=rule_id, count=deleted)
        return deleted

    def delete_expired(self, now: datetime) -> int:
        records = self._fetch_many(sorted(self.client.smembers(self._all_index())))
        expired = [record for record in records if record.is_expired(now)]
        deleted = self._delete_records(expired)
        if deleted:
            self.logger.info("Expired usage records deleted", count=deleted)
        return deleted
