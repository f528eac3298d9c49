"""
Rule catalog: validation, template instantiation and the ordered rule set.
"""

import threading
import uuid
from collections.abc import Mapping
from copy import deepcopy
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List, Iterable, Iterator, Tuple, Union

from pydantic import TypeAdapter, ValidationError

from shared.logging import get_logger
from shared.errors import InvalidRuleError, RuleNotFoundError
from .models import Rule, RuleBase, RuleType, utcnow
from .templates import ALL_TEMPLATES, get_template

logger = get_logger("rules.catalog")

_RULE_ADAPTER: TypeAdapter = TypeAdapter(Rule)
_RULE_TYPE_VALUES = {t.value for t in RuleType}


def generate_rule_id() -> str:
    return f"rule_{uuid.uuid4().hex[:16]}"


def _offending_field(error: Dict[str, Any]) -> str:
    """Dotted path of the field a pydantic error points at."""
    if error["type"] in ("union_tag_not_found", "union_tag_invalid"):
        return "type"
    loc = list(error["loc"])
    # Discriminated unions prefix the location with the tag
    if loc and loc[0] in _RULE_TYPE_VALUES:
        loc = loc[1:]
    return ".".join(str(part) for part in loc) or "rule"


def validate_rule(rule_data: Union[Mapping, RuleBase]) -> RuleBase:
    """
    Validate rule data against the schema for its type.

    Args:
        rule_data: A mapping (snake_case or camelCase keys) or an existing rule

    Returns:
        The validated, immutable rule

    Raises:
        InvalidRuleError: naming the first offending field
    """
    if isinstance(rule_data, RuleBase):
        rule_data = rule_data.model_dump()
    if not isinstance(rule_data, Mapping):
        raise InvalidRuleError("rule", "Rule data must be a mapping")

    data = dict(rule_data)
    if isinstance(data.get("type"), Enum):
        data["type"] = data["type"].value

    try:
        return _RULE_ADAPTER.validate_python(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = _offending_field(first)
        raise InvalidRuleError(
            field,
            first["msg"],
            details={"errors": len(e.errors()), "type": data.get("type")}
        ) from e


def create_rule_from_template(
    template_key: str,
    overrides: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None
) -> RuleBase:
    """
    Instantiate a rule from a built-in template.

    Top-level overrides replace template fields; a ``config`` override is
    merged key by key into the template config. A fresh id and timestamps are
    always assigned.
    """
    if template_key not in ALL_TEMPLATES:
        raise InvalidRuleError("template", f"Template {template_key} not found")

    overrides = deepcopy(overrides or {})
    rule_data = get_template(template_key)
    config_overrides = overrides.pop("config", None) or {}
    rule_data.update(overrides)
    rule_data["config"].update(config_overrides)

    if "created_by" not in rule_data and "createdBy" not in rule_data:
        rule_data["created_by"] = "system"

    timestamp = now or utcnow()
    for key in ("id", "created_at", "updated_at", "createdAt", "updatedAt"):
        rule_data.pop(key, None)
    rule_data["id"] = generate_rule_id()
    rule_data["created_at"] = timestamp
    rule_data["updated_at"] = timestamp

    return validate_rule(rule_data)


class RuleCatalog:
    """Ordered set of validated rules."""

    def __init__(self, rules: Optional[Iterable[Union[Mapping, RuleBase]]] = None):
        self.logger = logger
        self._rules: Dict[str, RuleBase] = {}
        self._match_cache: Dict[Tuple[RuleType, str], Tuple[RuleBase, ...]] = {}
        self._lock = threading.RLock()
        if rules:
            self.load(rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: str) -> bool:
        return rule_id in self._rules

    def __iter__(self) -> Iterator[RuleBase]:
        return iter(list(self._rules.values()))

    def add(self, rule: Union[Mapping, RuleBase], position: Optional[int] = None) -> RuleBase:
        """
        Validate and add a rule; an existing id is overwritten in place.

        ``position`` inserts a new rule at that index of the evaluation
        order instead of appending it.
        """
        rule = validate_rule(rule)
        with self._lock:
            if position is None or rule.id in self._rules:
                self._rules[rule.id] = rule
            else:
                items = list(self._rules.items())
                items.insert(position, (rule.id, rule))
                self._rules = dict(items)
            self._invalidate_cache()
        self.logger.info("Rule added", rule_id=rule.id, name=rule.name, rule_type=rule.type)
        return rule

    def replace(self, rule: Union[Mapping, RuleBase]) -> RuleBase:
        """Validate and replace an existing rule, keeping its catalog position."""
        rule = validate_rule(rule)
        with self._lock:
            if rule.id not in self._rules:
                raise RuleNotFoundError(rule.id)
            self._rules[rule.id] = rule
            self._invalidate_cache()
        self.logger.info("Rule updated", rule_id=rule.id, name=rule.name)
        return rule

    def remove(self, rule_id: str) -> RuleBase:
        """Remove a rule from the catalog."""
        with self._lock:
            rule = self._rules.pop(rule_id, None)
            if rule is None:
                raise RuleNotFoundError(rule_id)
            self._invalidate_cache()
        self.logger.info("Rule removed", rule_id=rule_id, name=rule.name)
        return rule

    def get(self, rule_id: str) -> Optional[RuleBase]:
        """Get a rule by ID."""
        return self._rules.get(rule_id)

    def list(
        self,
        rule_type: Optional[Union[RuleType, str]] = None,
        enabled: Optional[bool] = None
    ) -> List[RuleBase]:
        """List rules in catalog order, optionally filtered."""
        wanted = RuleType(rule_type) if rule_type is not None else None
        return [
            rule for rule in self._rules.values()
            if (wanted is None or RuleType(rule.type) == wanted)
            and (enabled is None or rule.enabled == enabled)
        ]

    def matching(self, rule_type: Union[RuleType, str], resource: str) -> List[RuleBase]:
        """
        Enabled rules of ``rule_type`` governing ``resource``, in catalog order.

        Each call returns a fresh list; the cache keeps an immutable copy.
        """
        key = (RuleType(rule_type), resource)
        cached = self._match_cache.get(key)
        if cached is not None:
            return list(cached)

        with self._lock:
            rules = tuple(
                rule for rule in self._rules.values()
                if rule.enabled and RuleType(rule.type) == key[0] and rule.target == resource
            )
            self._match_cache[key] = rules
        return list(rules)

    def load(self, rules: Iterable[Union[Mapping, RuleBase]]) -> int:
        """Validate and add many rules; nothing is added if any rule is invalid."""
        validated = [validate_rule(rule) for rule in rules]
        with self._lock:
            for rule in validated:
                self._rules[rule.id] = rule
            self._invalidate_cache()
        self.logger.info("Rules loaded", count=len(validated))
        return len(validated)

    def clear(self):
        """Clear all rules from the catalog."""
        with self._lock:
            self._rules.clear()
            self._invalidate_cache()
        self.logger.info("All rules cleared")

    def stats(self) -> Dict[str, Any]:
        """Catalog statistics."""
        by_type: Dict[str, int] = {}
        for rule in self._rules.values():
            by_type[rule.type] = by_type.get(rule.type, 0) + 1
        return {
            "total_rules": len(self._rules),
            "enabled_rules": len([r for r in self._rules.values() if r.enabled]),
            "rules_by_type": by_type,
            "cached_lookups": len(self._match_cache),
        }

    def _invalidate_cache(self):
        self._match_cache.clear()
