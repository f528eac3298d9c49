"""
In-process usage store for tests and single-process deployments.
"""

import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from shared.logging import get_logger
from ..rules.models import UsageRecord, as_utc, utcnow
from .store import UsageStore

UsageKey = Tuple[str, str, str]


class InMemoryUsageStore(UsageStore):
    """Dictionary-backed usage store guarded by a single lock."""

    def __init__(
        self,
        default_window: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utcnow
    ):
        self.logger = get_logger("rules.usage.memory")
        self.default_window = default_window
        self.clock = clock
        self._records: Dict[UsageKey, UsageRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def get(self, user_id: str, rule_id: str, resource: str) -> Optional[UsageRecord]:
        with self._lock:
            record = self._records.get((user_id, rule_id, resource))
            # Callers get a snapshot, never the live record
            return replace(record) if record else None

    def increment(
        self,
        user_id: str,
        rule_id: str,
        resource: str,
        delta: int = 1,
        reset_time: Optional[datetime] = None
    ) -> None:
        now = self.clock()
        key = (user_id, rule_id, resource)
        window_end = as_utc(reset_time) if reset_time else now + self.default_window
        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = UsageRecord(
                    user_id=user_id,
                    rule_id=rule_id,
                    resource=resource,
                    count=0,
                    reset_time=window_end
                )
                self._records[key] = record
            elif record.is_expired(now):
                record.count = 0
                record.reset_time = window_end
                self.logger.debug("Usage window rolled over", user_id=user_id, rule_id=rule_id, resource=resource)
            record.count += delta
            record.last_used = now

    def reset(self, user_id: str, rule_id: str, resource: str, new_reset_time: datetime) -> None:
        now = self.clock()
        with self._lock:
            record = self._records.get((user_id, rule_id, resource))
            if record is None:
                return
            record.count = 0
            record.reset_time = as_utc(new_reset_time)
            record.last_used = now

    def list_for_rule(self, rule_id: str) -> List[UsageRecord]:
        with self._lock:
            return [replace(r) for r in self._records.values() if r.rule_id == rule_id]

    def list_for_user(self, user_id: str, since: Optional[datetime] = None) -> List[UsageRecord]:
        with self._lock:
            return [
                replace(r) for r in self._records.values()
                if r.user_id == user_id
                and (since is None or (r.last_used is not None and r.last_used >= as_utc(since)))
            ]

    def delete_for_rule(self, rule_id: str) -> int:
        with self._lock:
            keys = [key for key in self._records if key[1] == rule_id]
            for key in keys:
                del self._records[key]
        self.logger.debug("Usage deleted for rule", rule_id=rule_id, count=len(keys))
        return len(keys)

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            keys = [key for key, record in self._records.items() if record.is_expired(now)]
            for key in keys:
                del self._records[key]
        return len(keys)
