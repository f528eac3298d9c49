"""
Usage store contract consumed by the enforcement coordinator.

Implementations own per-counter atomicity: concurrent increments of the same
(user, rule, resource) counter must never lose updates. No cross-counter
transaction is required.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..rules.models import UsageRecord


class UsageStore(ABC):
    """Reads and writes consumption counters per (user, rule, resource)."""

    @abstractmethod
    def get(self, user_id: str, rule_id: str, resource: str) -> Optional[UsageRecord]:
        """Return the counter, or None when it was never incremented."""

    @abstractmethod
    def increment(
        self,
        user_id: str,
        rule_id: str,
        resource: str,
        delta: int = 1,
        reset_time: Optional[datetime] = None
    ) -> None:
        """
        Add ``delta`` to the counter in one atomic step.

        An absent counter is created, and a counter whose reset time has
        passed is zeroed first. Both take ``reset_time`` as their new reset
        time, or now plus the store's default window without it. A live
        counter keeps its reset time.
        """

    @abstractmethod
    def reset(self, user_id: str, rule_id: str, resource: str, new_reset_time: datetime) -> None:
        """Zero an existing counter and move its reset time. Missing counters are left alone."""

    # Management extension

    @abstractmethod
    def list_for_rule(self, rule_id: str) -> List[UsageRecord]:
        """All counters belonging to a rule."""

    @abstractmethod
    def list_for_user(self, user_id: str, since: Optional[datetime] = None) -> List[UsageRecord]:
        """Counters of a user, optionally only those used at or after ``since``."""

    @abstractmethod
    def delete_for_rule(self, rule_id: str) -> int:
        """Delete every counter of a rule; returns how many were removed."""

    @abstractmethod
    def delete_expired(self, now: datetime) -> int:
        """Delete counters whose reset time has passed; returns how many were removed."""
