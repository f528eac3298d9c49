"""
Local fallback policy for callers without an established identity.

Bypasses the catalog and the usage store entirely. Ceilings are generous so
the surrounding application keeps working offline; only features that
genuinely need an account are refused.
"""

from typing import Any, Dict, Mapping, Optional, Union

from shared.logging import get_logger
from .models import EnforcementResult, RuleType

logger = get_logger("rules.fallback")

# Feature ceilings are inclusive: a count equal to the ceiling is still allowed
LOCAL_FEATURE_LIMITS: Dict[str, int] = {
    "binders": 10,
    "cards_per_binder": 500,
    "pages_per_binder": 50,
    "collaborators_per_binder": 0,
}

LOCAL_ACCESS: Dict[str, bool] = {
    "premium_grid_sizes": True,
    "binder_sharing": False,
}
# Rate limits and content limits always allow locally


class LocalFallbackPolicy:
    """Static, permissive decisions for unauthenticated callers."""

    def __init__(
        self,
        feature_limits: Optional[Mapping[str, int]] = None,
        access: Optional[Mapping[str, bool]] = None
    ):
        self.feature_limits = dict(LOCAL_FEATURE_LIMITS if feature_limits is None else feature_limits)
        self.access = dict(LOCAL_ACCESS if access is None else access)

    def enforce(
        self,
        rule_type: Union[RuleType, str],
        resource: str,
        data: Optional[Mapping[str, Any]] = None
    ) -> EnforcementResult:
        """Decide without consulting any rule or usage record."""
        rule_type = RuleType(rule_type)
        data = data or {}

        if rule_type == RuleType.FEATURE_LIMIT and resource in self.feature_limits:
            ceiling = self.feature_limits[resource]
            current_count = data.get("current_count", 0) or 0
            if current_count > ceiling:
                logger.debug("Local limit exceeded", resource=resource, ceiling=ceiling, current_count=current_count)
                return EnforcementResult.deny(f"Local limit exceeded: maximum {ceiling} allowed")
            return EnforcementResult.allow()

        if rule_type == RuleType.ACCESS_CONTROL and resource in self.access:
            if self.access[resource]:
                return EnforcementResult.allow()
            return EnforcementResult.deny("Feature requires authentication")

        return EnforcementResult.allow()
