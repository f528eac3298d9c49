"""
Rule enforcement service for the binder application.

Wires configuration, logging, metrics, the rule catalog, a usage store and
the coordinator into one object that host applications hold for the
lifetime of the process.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from shared.config import RulesConfig, get_config
from shared.logging import clear_context, configure_logging, get_logger, set_request_id, set_user_context
from shared.metrics import MetricsCollector, get_metrics_collector

from .management import RuleManager
from .rules.binder_checks import BinderLimits
from .rules.catalog import RuleCatalog
from .rules.coordinator import EnforcementCoordinator
from .rules.fallback import LocalFallbackPolicy
from .rules.models import CallerContext, EnforcementResult, RuleBase, utcnow
from .usage.memory import InMemoryUsageStore
from .usage.redis_store import RedisUsageStore
from .usage.store import UsageStore


class RulesService:
    """Rule enforcement service implementation."""

    def __init__(
        self,
        config: Optional[RulesConfig] = None,
        usage_store: Optional[UsageStore] = None,
        rules: Optional[Iterable[Union[RuleBase, Mapping[str, Any]]]] = None,
        metrics: Optional[MetricsCollector] = None,
        fallback: Optional[LocalFallbackPolicy] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.config = config or get_config()
        self.clock = clock
        configure_logging(self.config.service_name, self.config.log_level)
        self.logger = get_logger(f"{self.config.service_name}.service")

        self.metrics = metrics or get_metrics_collector(self.config.service_name)
        self.catalog = RuleCatalog(rules)
        self.usage_store = usage_store if usage_store is not None else self._create_usage_store()
        self.coordinator = EnforcementCoordinator(
            self.catalog,
            self.usage_store,
            fallback=fallback,
            metrics=self.metrics,
            clock=self.clock
        )
        self.binders = BinderLimits(self.coordinator)
        self.manager = RuleManager(self.catalog, self.usage_store, config=self.config, clock=self.clock)

        self.logger.info(
            "Rules service initialized",
            env=self.config.env,
            usage_backend=type(self.usage_store).__name__,
            rules=len(self.catalog)
        )

    def _create_usage_store(self) -> UsageStore:
        if self.config.usage_backend == "redis":
            return RedisUsageStore(config=self.config, clock=self.clock)
        return InMemoryUsageStore(
            default_window=timedelta(seconds=self.config.default_usage_window_seconds),
            clock=self.clock
        )

    def check(self, action: str, caller: Optional[CallerContext] = None,
              request_id: Optional[str] = None) -> EnforcementResult:
        """Check an action with request and user correlation in the logs."""
        set_request_id(request_id)
        set_user_context(caller.user_id if caller else None)
        try:
            return self.coordinator.check_action(action, caller)
        finally:
            clear_context()

    def track(self, action: str, caller: Optional[CallerContext] = None,
              delta: int = 1, request_id: Optional[str] = None) -> bool:
        """Record a completed action against its rate and feature limits."""
        set_request_id(request_id)
        set_user_context(caller.user_id if caller else None)
        try:
            return self.coordinator.track_action(action, caller, delta)
        finally:
            clear_context()

    def health_check(self) -> dict:
        """Report catalog and usage store status."""
        store_ok = True
        if isinstance(self.usage_store, RedisUsageStore):
            store_ok = self.usage_store.health_check()
        return {
            "service": self.config.service_name,
            "status": "ok" if store_ok else "degraded",
            "usage_store": type(self.usage_store).__name__,
            "catalog": self.catalog.stats(),
        }

    def close(self):
        if isinstance(self.usage_store, RedisUsageStore):
            self.usage_store.close()
        self.logger.info("Rules service closed")


def create_service(config: Optional[RulesConfig] = None, **kwargs) -> RulesService:
    """Create a rules service from configuration."""
    return RulesService(config=config, **kwargs)
