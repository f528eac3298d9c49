"""
Usage storage for rate and feature limit counters.
"""

from .store import UsageStore
from .memory import InMemoryUsageStore
from .redis_store import RedisUsageStore

__all__ = ["UsageStore", "InMemoryUsageStore", "RedisUsageStore"]
