"""
Enforcement coordinator for the rule enforcement engine.

Resolves an action to the rules that govern it, dispatches each rule to its
evaluator and aggregates a single decision. Checks fail closed on usage store
errors; usage tracking fails open.
"""

import warnings
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from shared.errors import EnforcementError, UnmappedActionWarning
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .actions import ActionMapping, DEFAULT_ACTION_MAPPINGS, build_action_mappings
from .catalog import RuleCatalog
from .evaluators import evaluate, next_reset_time
from .fallback import LocalFallbackPolicy
from .models import (
    CallerContext, EnforcementResult, RuleBase, RuleType, UsageRecord,
    tracked_resource, utcnow
)
from ..usage.store import UsageStore

ENFORCEMENT_ERROR_REASON = "enforcement error"


class EnforcementCoordinator:
    """Decision and tracking entry point."""

    def __init__(
        self,
        catalog: RuleCatalog,
        usage_store: UsageStore,
        action_mappings: Optional[Mapping[str, Union[ActionMapping, Mapping[str, Any]]]] = None,
        fallback: Optional[LocalFallbackPolicy] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.logger = get_logger("rules.coordinator")
        self.catalog = catalog
        self.usage_store = usage_store
        self.action_mappings: Dict[str, ActionMapping] = build_action_mappings(
            DEFAULT_ACTION_MAPPINGS if action_mappings is None else action_mappings
        )
        self.fallback = fallback or LocalFallbackPolicy()
        self.metrics = metrics or get_metrics_collector("rules")
        self.clock = clock

    def resolve_action(self, action: str) -> Optional[ActionMapping]:
        return self.action_mappings.get(action)

    def check_action(self, action: str, caller: Optional[CallerContext] = None) -> EnforcementResult:
        """
        Decide whether ``caller`` may perform ``action`` right now.

        Unmapped actions are not policy controlled and are allowed. Callers
        without an identity are answered by the local fallback policy.
        """
        caller = caller or CallerContext()
        mapping = self.resolve_action(action)

        if mapping is None:
            self.logger.warning("No rule mapping found for action", action=action)
            warnings.warn(f"No rule mapping found for action: {action}", UnmappedActionWarning, stacklevel=2)
            self.metrics.record_unmapped_action()
            return EnforcementResult.allow()

        return self.enforce(mapping.type, mapping.resource, caller)

    def enforce(
        self,
        rule_type: Union[RuleType, str],
        resource: str,
        caller: Optional[CallerContext] = None
    ) -> EnforcementResult:
        """
        Evaluate every enabled rule of ``rule_type`` governing ``resource``.

        Rules run in catalog order and the first denial is returned with the
        rule that caused it. Never mutates usage.
        """
        rule_type = RuleType(rule_type)
        caller = caller or CallerContext()

        if not caller.is_authenticated:
            result = self.fallback.enforce(rule_type, resource, caller.data)
            self.metrics.record_decision(rule_type.value, result.allowed)
            return result

        with self.metrics.time_operation("rule_check_duration_seconds", rule_type=rule_type.value):
            result = self._evaluate_rules(rule_type, resource, caller)

        self.metrics.record_decision(rule_type.value, result.allowed)
        return result

    def _evaluate_rules(self, rule_type: RuleType, resource: str, caller: CallerContext) -> EnforcementResult:
        rules = self.catalog.matching(rule_type, resource)
        if not rules:
            return EnforcementResult.allow()

        now = self.clock()
        quota: Optional[EnforcementResult] = None
        for rule in rules:
            try:
                usage = self._read_usage(rule, resource, caller) if rule_type == RuleType.RATE_LIMIT else None
            except EnforcementError as e:
                self.logger.error(
                    "Rule enforcement failed",
                    rule_id=rule.id,
                    resource=resource,
                    user_id=caller.user_id,
                    error=str(e.__cause__ or e)
                )
                return EnforcementResult.deny(ENFORCEMENT_ERROR_REASON, rule=rule)

            result = evaluate(rule, caller, now, usage)
            if not result.allowed:
                self.logger.info(
                    "Action denied by rule",
                    rule_id=rule.id,
                    rule_type=rule.type,
                    resource=resource,
                    user_id=caller.user_id,
                    reason=result.reason
                )
                return result

            if result.remaining is not None and (quota is None or result.remaining < quota.remaining):
                quota = result

        # Rate limits report the tightest remaining quota
        return quota or EnforcementResult.allow()

    def _read_usage(self, rule: RuleBase, resource: str, caller: CallerContext) -> Optional[UsageRecord]:
        try:
            return self.usage_store.get(caller.user_id, rule.id, resource)
        except Exception as e:
            self.metrics.record_store_error("get")
            raise EnforcementError(
                "Usage read failed", rule_id=rule.id, resource=resource, user_id=caller.user_id
            ) from e

    def track_usage(
        self,
        rule_type: Union[RuleType, str],
        resource: str,
        caller: Optional[CallerContext] = None,
        delta: int = 1
    ) -> bool:
        """
        Record ``delta`` uses of ``resource`` against every enabled rule of
        ``rule_type`` that references it.

        The store restarts an expired counter at the next window boundary
        as part of the increment. Store failures are logged and swallowed;
        the return value is False when any increment was lost.
        """
        rule_type = RuleType(rule_type)
        caller = caller or CallerContext()
        if not caller.is_authenticated:
            return True

        rules = [
            rule for rule in self.catalog.list(rule_type=rule_type, enabled=True)
            if tracked_resource(rule) == resource
        ]

        now = self.clock()
        tracked = True
        for rule in rules:
            try:
                self._increment(rule, resource, caller.user_id, delta, now)
                self.metrics.record_increment(rule_type.value)
            except Exception as e:
                tracked = False
                self.metrics.record_store_error("increment")
                self.logger.error(
                    "Error tracking usage",
                    rule_id=rule.id,
                    resource=resource,
                    user_id=caller.user_id,
                    error=str(e)
                )
        return tracked

    def track_action(self, action: str, caller: Optional[CallerContext] = None, delta: int = 1) -> bool:
        """Track usage for a mapped action; unmapped actions track nothing."""
        mapping = self.resolve_action(action)
        if mapping is None:
            return True
        return self.track_usage(mapping.type, mapping.resource, caller, delta)

    def _increment(self, rule: RuleBase, resource: str, user_id: str, delta: int, now: datetime):
        window = getattr(rule.config, "window", None)
        boundary = next_reset_time(now, window) if window is not None else None
        self.usage_store.increment(user_id, rule.id, resource, delta, reset_time=boundary)

    def get_user_usage(self, caller: CallerContext, rule_id: str, resource: str) -> Optional[UsageRecord]:
        """Current counter for the caller, or None (also on store failure)."""
        if not caller.is_authenticated:
            return None
        try:
            return self.usage_store.get(caller.user_id, rule_id, resource)
        except Exception as e:
            self.metrics.record_store_error("get")
            self.logger.error("Error getting user usage", rule_id=rule_id, resource=resource, error=str(e))
            return None

    def rules_of_type(self, rule_type: Union[RuleType, str]) -> List[RuleBase]:
        return self.catalog.list(rule_type=rule_type, enabled=True)

    def has_active_rules(self) -> bool:
        return any(rule.enabled for rule in self.catalog)
