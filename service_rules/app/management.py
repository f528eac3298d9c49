"""
Administrative operations over the rule catalog and usage store.

Every operation requires the owner capability. Validation and permission
errors propagate to the caller; nothing invalid reaches the catalog.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from shared.config import RulesConfig, get_config
from shared.errors import InvalidRuleError, PermissionDeniedError, RuleNotFoundError
from shared.logging import get_logger
from .rules.catalog import RuleCatalog, create_rule_from_template, generate_rule_id, validate_rule
from .rules.models import CallerContext, RuleBase, RuleType, RuleUsageStats, UsageRecord, utcnow
from .rules.templates import CONTACT_TEMPLATE_KEYS, USER_TIER_RULES, get_template, tier_rules
from .usage.store import UsageStore

# Fields a caller may never overwrite through an update
_IMMUTABLE_FIELDS = {"id", "type", "created_at", "createdAt", "created_by", "createdBy"}
# Stamped from the clock and the caller on every write
_UPDATE_STAMP_FIELDS = {"updated_at", "updatedAt", "updated_by", "updatedBy"}


class RuleManager:
    """Owner-gated rule management."""

    def __init__(
        self,
        catalog: RuleCatalog,
        usage_store: UsageStore,
        config: Optional[RulesConfig] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.logger = get_logger("rules.management")
        self.catalog = catalog
        self.usage_store = usage_store
        self.config = config or get_config()
        self.clock = clock

    def _require_owner(self, caller: CallerContext, operation: str):
        if not caller.is_owner:
            self.logger.warning(
                "Rule management denied",
                operation=operation,
                user_id=caller.user_id,
                role=caller.role
            )
            raise PermissionDeniedError(
                f"Only owner can {operation}",
                details={"operation": operation, "user_id": caller.user_id}
            )

    def _get_or_raise(self, rule_id: str) -> RuleBase:
        rule = self.catalog.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    # Reads

    def list_rules(
        self,
        caller: CallerContext,
        rule_type: Optional[Union[RuleType, str]] = None,
        enabled: Optional[bool] = None
    ) -> List[RuleBase]:
        """Rules newest first, optionally filtered by type and enabled flag."""
        self._require_owner(caller, "list rules")
        rules = self.catalog.list(rule_type=rule_type, enabled=enabled)
        return sorted(rules, key=lambda r: r.created_at, reverse=True)

    def get_rule(self, caller: CallerContext, rule_id: str) -> Optional[RuleBase]:
        self._require_owner(caller, "view rules")
        return self.catalog.get(rule_id)

    # Writes

    def create_rule(self, caller: CallerContext, rule_data: Mapping[str, Any]) -> RuleBase:
        """Validate and add a new rule; id and provenance are assigned here."""
        self._require_owner(caller, "create rules")
        now = self.clock()
        payload = {
            key: value for key, value in dict(rule_data).items()
            if key not in (_IMMUTABLE_FIELDS - {"type"}) | _UPDATE_STAMP_FIELDS
        }
        payload.update({
            "id": generate_rule_id(),
            "created_at": now,
            "updated_at": now,
            "created_by": caller.user_id,
        })
        rule = self.catalog.add(validate_rule(payload))
        self.logger.info("Rule created", rule_id=rule.id, name=rule.name, created_by=caller.user_id)
        return rule

    def create_rule_from_template(
        self,
        caller: CallerContext,
        template_key: str,
        overrides: Optional[Dict[str, Any]] = None
    ) -> RuleBase:
        self._require_owner(caller, "create rules")
        overrides = dict(overrides or {})
        overrides["created_by"] = caller.user_id
        rule = self.catalog.add(create_rule_from_template(template_key, overrides, now=self.clock()))
        self.logger.info("Rule created from template", rule_id=rule.id, template=template_key)
        return rule

    def update_rule(self, caller: CallerContext, rule_id: str, updates: Mapping[str, Any]) -> RuleBase:
        """
        Apply ``updates`` to a rule and revalidate the result.

        ``type`` is fixed at creation; a ``config`` update replaces the
        whole config and must be complete for the rule's type.
        """
        self._require_owner(caller, "update rules")
        current = self._get_or_raise(rule_id)

        if "type" in updates and updates["type"] != current.type:
            raise InvalidRuleError("type", "Rule type cannot change after creation")

        merged = current.model_dump()
        merged.update({k: v for k, v in updates.items() if k not in _IMMUTABLE_FIELDS | _UPDATE_STAMP_FIELDS})
        merged["updated_at"] = self.clock()
        merged["updated_by"] = caller.user_id

        rule = self.catalog.replace(validate_rule(merged))
        self.logger.info("Rule updated", rule_id=rule_id, updated_by=caller.user_id, fields=sorted(updates))
        return rule

    def set_rule_enabled(self, caller: CallerContext, rule_id: str, enabled: bool = True) -> RuleBase:
        self._require_owner(caller, "toggle rules")
        return self.update_rule(caller, rule_id, {"enabled": enabled})

    def delete_rule(self, caller: CallerContext, rule_id: str) -> int:
        """
        Delete a rule together with its usage records.

        The rule leaves the catalog first so no increment can recreate its
        usage after the purge. A failing store puts the rule back at its
        old position. Returns the number of usage records removed.
        """
        self._require_owner(caller, "delete rules")
        self._get_or_raise(rule_id)
        position = [rule.id for rule in self.catalog].index(rule_id)
        rule = self.catalog.remove(rule_id)
        try:
            removed = self.usage_store.delete_for_rule(rule_id)
        except Exception:
            self.catalog.add(rule, position=position)
            self.logger.error("Rule deletion failed, rule restored", rule_id=rule_id)
            raise
        self.logger.info("Rule deleted", rule_id=rule_id, usage_records=removed, deleted_by=caller.user_id)
        return removed

    def bulk_update_rules(
        self,
        caller: CallerContext,
        rule_ids: Iterable[str],
        updates: Mapping[str, Any]
    ) -> List[RuleBase]:
        """Validate every update before applying any of them."""
        self._require_owner(caller, "update rules")
        now = self.clock()
        staged = []
        for rule_id in rule_ids:
            current = self._get_or_raise(rule_id)
            merged = current.model_dump()
            merged.update({k: v for k, v in updates.items() if k not in _IMMUTABLE_FIELDS | _UPDATE_STAMP_FIELDS})
            merged["updated_at"] = now
            merged["updated_by"] = caller.user_id
            staged.append(validate_rule(merged))

        updated = [self.catalog.replace(rule) for rule in staged]
        self.logger.info("Rules bulk updated", count=len(updated), fields=sorted(updates))
        return updated

    def bulk_delete_rules(self, caller: CallerContext, rule_ids: Iterable[str]) -> int:
        """Delete several rules; returns the number of usage records removed."""
        self._require_owner(caller, "delete rules")
        rule_ids = list(rule_ids)
        for rule_id in rule_ids:
            self._get_or_raise(rule_id)
        return sum(self.delete_rule(caller, rule_id) for rule_id in rule_ids)

    # Usage

    def get_rule_stats(self, caller: CallerContext, rule_id: str) -> RuleUsageStats:
        """Distinct users, summed counts, average and most recent activity for a rule."""
        self._require_owner(caller, "view rule stats")
        records = self.usage_store.list_for_rule(rule_id)

        stats = RuleUsageStats(rule_id=rule_id)
        if not records:
            return stats

        stats.total_users = len({record.user_id for record in records})
        stats.total_usage = sum(record.count for record in records)
        stats.average_usage = stats.total_usage / len(records)
        used = [record.last_used for record in records if record.last_used is not None]
        stats.last_activity = max(used) if used else None
        return stats

    def get_user_activity(self, caller: CallerContext, user_id: str, days: Optional[int] = None) -> List[UsageRecord]:
        """Usage records of ``user_id`` touched within the last ``days`` days."""
        self._require_owner(caller, "view user activity")
        days = days if days is not None else self.config.activity_lookback_days
        since = self.clock() - timedelta(days=days)
        return self.usage_store.list_for_user(user_id, since=since)

    def cleanup_expired_usage(self, caller: CallerContext) -> int:
        """Advisory sweep of expired counters."""
        self._require_owner(caller, "clean up usage")
        removed = self.usage_store.delete_expired(self.clock())
        if removed:
            self.logger.info("Cleaned up expired usage records", count=removed)
        return removed

    # Provisioning

    def apply_user_tier_rules(self, caller: CallerContext, tier: str = "free") -> List[Dict[str, Any]]:
        """
        Create the rule set of a user tier.

        Each rule is created independently; the result lists one entry per
        rule with either its id or the validation error.
        """
        self._require_owner(caller, "apply tier rules")
        if tier not in USER_TIER_RULES:
            raise InvalidRuleError("tier", f"Unknown user tier: {tier}")

        results = []
        for payload in tier_rules(tier):
            try:
                rule = self.create_rule(caller, payload)
                results.append({"success": True, "rule_id": rule.id, "rule_name": payload["name"]})
            except InvalidRuleError as e:
                self.logger.warning("Tier rule rejected", tier=tier, rule_name=payload["name"], error=e.message)
                results.append({"success": False, "error": e.message, "rule_name": payload["name"]})
        return results

    def install_templates(
        self,
        caller: CallerContext,
        template_keys: Iterable[str] = CONTACT_TEMPLATE_KEYS
    ) -> List[Dict[str, Any]]:
        """
        Create rules from templates unless a rule of the same type already
        governs the same resource.
        """
        self._require_owner(caller, "install templates")
        results = []
        for key in template_keys:
            template = get_template(key)
            candidate = create_rule_from_template(key, {"created_by": caller.user_id}, now=self.clock())
            existing = [
                rule for rule in self.catalog.list(rule_type=template["type"])
                if rule.target == candidate.target
            ]
            if existing:
                self.logger.info("Template already installed", template=key, resource=candidate.target)
                results.append({"template": key, "action": "skipped", "rule_id": existing[0].id})
                continue

            rule = self.catalog.add(candidate)
            results.append({"template": key, "action": "created", "rule_id": rule.id})
        return results
