"""
Rule data models for the rule enforcement engine.

Rules are a closed tagged union keyed on ``type``; each variant carries its
own ``config`` shape. Records are accepted with snake_case or camelCase keys.
"""

from typing import Dict, Any, Optional, List, Union, Literal, Annotated
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class RuleType(str, Enum):
    """Rule types."""
    RATE_LIMIT = "rate_limit"
    FEATURE_LIMIT = "feature_limit"
    ACCESS_CONTROL = "access_control"
    CONTENT_LIMIT = "content_limit"
    TIME_BASED = "time_based"


class RateWindow(str, Enum):
    """Rate limit windows."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class LimitScope(str, Enum):
    """Feature limit scopes."""
    USER = "user"
    GLOBAL = "global"


class Recurrence(str, Enum):
    """Time-based schedule recurrence."""
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ScheduleAction(str, Enum):
    """What a time-based rule does while its schedule is active."""
    DISABLE = "disable"
    ENABLE = "enable"
    RESTRICT = "restrict"


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str) -> tzinfo:
    """Resolve an IANA timezone name."""
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


class RecordModel(BaseModel):
    """Base for persisted records."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True
    )


# Per-type configs

class RateLimitConfig(RecordModel):
    limit: int = Field(..., ge=1, description="Allowed uses per window")
    window: RateWindow
    resource: str = Field(..., min_length=1, description="e.g. api_calls, pokemon_searches")


class FeatureLimitConfig(RecordModel):
    feature: str = Field(..., min_length=1, description="e.g. collections, cards_per_binder")
    limit: int = Field(..., ge=0)
    scope: LimitScope = LimitScope.USER


class AccessControlConfig(RecordModel):
    feature: str = Field(..., min_length=1, description="e.g. admin_panel, binder_sharing")
    allowed_roles: List[str] = Field(default_factory=lambda: ["user"])
    required_permissions: List[str] = Field(default_factory=list)
    blocked_users: List[str] = Field(default_factory=list)


class ContentLimitConfig(RecordModel):
    content_type: str = Field(..., min_length=1, description="e.g. file_upload, text_input")
    max_size: Optional[int] = Field(None, ge=0, description="Bytes for files, characters for text")
    allowed_types: Optional[List[str]] = None
    max_count: Optional[int] = Field(None, ge=0)


class Schedule(RecordModel):
    start_time: datetime
    end_time: datetime
    timezone: str = "UTC"
    recurring: Recurrence = Recurrence.NONE

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            resolve_timezone(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone {value!r}") from e
        return value

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.timezone)


class TimeBasedConfig(RecordModel):
    feature: str = Field(..., min_length=1)
    schedule: Schedule
    action: ScheduleAction


# Rules

class RuleBase(RecordModel):
    """Fields shared by every rule type."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    enabled: bool = True
    created_at: datetime
    updated_at: datetime
    created_by: str = Field(..., min_length=1)
    updated_by: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return as_utc(value)


class RateLimitRule(RuleBase):
    type: Literal["rate_limit"] = "rate_limit"
    config: RateLimitConfig

    @property
    def target(self) -> str:
        return self.config.resource


class FeatureLimitRule(RuleBase):
    type: Literal["feature_limit"] = "feature_limit"
    config: FeatureLimitConfig

    @property
    def target(self) -> str:
        return self.config.feature


class AccessControlRule(RuleBase):
    type: Literal["access_control"] = "access_control"
    config: AccessControlConfig

    @property
    def target(self) -> str:
        return self.config.feature


class ContentLimitRule(RuleBase):
    type: Literal["content_limit"] = "content_limit"
    config: ContentLimitConfig

    @property
    def target(self) -> str:
        return self.config.content_type


class TimeBasedRule(RuleBase):
    type: Literal["time_based"] = "time_based"
    config: TimeBasedConfig

    @property
    def target(self) -> str:
        return self.config.feature


Rule = Annotated[
    Union[RateLimitRule, FeatureLimitRule, AccessControlRule, ContentLimitRule, TimeBasedRule],
    Field(discriminator="type")
]

RULE_CLASSES = {
    RuleType.RATE_LIMIT: RateLimitRule,
    RuleType.FEATURE_LIMIT: FeatureLimitRule,
    RuleType.ACCESS_CONTROL: AccessControlRule,
    RuleType.CONTENT_LIMIT: ContentLimitRule,
    RuleType.TIME_BASED: TimeBasedRule,
}


def tracked_resource(rule: RuleBase) -> Optional[str]:
    """Resource a usage increment is recorded against (resource or feature field)."""
    return getattr(rule.config, "resource", None) or getattr(rule.config, "feature", None)


# Runtime records

@dataclass
class UsageRecord:
    """Per-(user, rule, resource) consumption counter."""
    user_id: str
    rule_id: str
    resource: str
    count: int = 0
    last_used: Optional[datetime] = None
    reset_time: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return as_utc(now) > as_utc(self.reset_time)


@dataclass
class CallerContext:
    """Identity and action data supplied by the caller."""
    user_id: Optional[str] = None
    role: str = "user"
    permissions: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def is_owner(self) -> bool:
        return self.is_authenticated and self.role == "owner"


@dataclass
class EnforcementResult:
    """Decision returned to the caller."""
    allowed: bool
    reason: Optional[str] = None
    remaining: Optional[int] = None
    reset_time: Optional[datetime] = None
    rule: Optional[RuleBase] = None

    @classmethod
    def allow(cls, **kwargs) -> "EnforcementResult":
        return cls(allowed=True, **kwargs)

    @classmethod
    def deny(cls, reason: str, **kwargs) -> "EnforcementResult":
        return cls(allowed=False, reason=reason, **kwargs)


@dataclass
class RuleUsageStats:
    """Aggregate usage for one rule."""
    rule_id: str
    total_users: int = 0
    total_usage: int = 0
    average_usage: float = 0.0
    last_activity: Optional[datetime] = None
