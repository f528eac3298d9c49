"""
Policy evaluators, one pure function per rule type.

Evaluators never touch storage: usage, caller identity and the current time
are passed in.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from .models import (
    AccessControlRule, CallerContext, ContentLimitRule, EnforcementResult,
    FeatureLimitRule, RateLimitRule, RateWindow, Recurrence, RuleBase,
    RuleType, ScheduleAction, TimeBasedRule, UsageRecord, as_utc
)


def day_index(moment: datetime) -> int:
    """Day of week with Sunday as 0."""
    return (moment.weekday() + 1) % 7


def next_reset_time(now: datetime, window: RateWindow) -> datetime:
    """Start of the window following ``now``, in ``now``'s timezone."""
    window = RateWindow(window)
    midnight = {"hour": 0, "minute": 0, "second": 0, "microsecond": 0}

    if window == RateWindow.HOUR:
        return (now + timedelta(hours=1)).replace(minute=0, second=0, microsecond=0)
    if window == RateWindow.DAY:
        return (now + timedelta(days=1)).replace(**midnight)
    if window == RateWindow.WEEK:
        # On a Sunday the next boundary is a full week away
        return (now + timedelta(days=7 - day_index(now))).replace(**midnight)
    if window == RateWindow.MONTH:
        if now.month == 12:
            return now.replace(year=now.year + 1, month=1, day=1, **midnight)
        return now.replace(month=now.month + 1, day=1, **midnight)
    raise ValueError(f"Unknown window: {window}")


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    exponent = 0
    while value >= 1024 and exponent < len(units) - 1:
        value /= 1024
        exponent += 1
    return f"{round(value, 2):g} {units[exponent]}"


def check_rate_limit(rule: RateLimitRule, usage: Optional[UsageRecord], now: datetime) -> EnforcementResult:
    """Windowed counter check; an expired or missing counter counts as zero."""
    limit = rule.config.limit
    window = RateWindow(rule.config.window)

    if usage is None or usage.is_expired(now):
        return EnforcementResult.allow(
            remaining=limit - 1,
            reset_time=next_reset_time(now, window)
        )

    allowed = usage.count < limit
    remaining = max(0, limit - usage.count - (1 if allowed else 0))
    if allowed:
        return EnforcementResult.allow(remaining=remaining, reset_time=as_utc(usage.reset_time))
    return EnforcementResult.deny(
        f"Rate limit exceeded. Limit: {limit} per {window.value}",
        remaining=remaining,
        reset_time=as_utc(usage.reset_time)
    )


def check_feature_limit(rule: FeatureLimitRule, current_count: int) -> EnforcementResult:
    """Point-in-time check against a caller-reported count."""
    if current_count < rule.config.limit:
        return EnforcementResult.allow()
    return EnforcementResult.deny(f"Feature limit exceeded. Maximum: {rule.config.limit}")


def check_access_control(rule: AccessControlRule, caller: CallerContext) -> EnforcementResult:
    config = rule.config

    if caller.user_id and caller.user_id in config.blocked_users:
        return EnforcementResult.deny("User is blocked from accessing this feature")

    if config.allowed_roles and caller.role not in config.allowed_roles:
        return EnforcementResult.deny("Insufficient role permissions")

    missing = [perm for perm in config.required_permissions if perm not in caller.permissions]
    if missing:
        return EnforcementResult.deny("Missing required permissions")

    return EnforcementResult.allow()


def check_content_limit(rule: ContentLimitRule, data: Mapping[str, Any]) -> EnforcementResult:
    """Size, then type, then count; the first violation wins."""
    config = rule.config
    size = data.get("size")
    content_type = data.get("type")
    count = data.get("count")

    if config.max_size is not None and size is not None and size > config.max_size:
        return EnforcementResult.deny(f"File size exceeds limit of {format_file_size(config.max_size)}")

    if config.allowed_types is not None and content_type not in config.allowed_types:
        return EnforcementResult.deny(f"File type {content_type} is not allowed")

    if config.max_count is not None and count is not None and count >= config.max_count:
        return EnforcementResult.deny(f"Maximum count of {config.max_count} exceeded")

    return EnforcementResult.allow()


def is_in_schedule(rule: TimeBasedRule, now: datetime) -> bool:
    """
    Whether ``now`` falls inside the rule's schedule.

    Recurring schedules read hours (and days, for weekly) in the schedule's
    timezone. Weekly schedules test the day range and the hour range
    independently rather than as one contiguous window.
    """
    schedule = rule.config.schedule
    recurring = Recurrence(schedule.recurring)

    if recurring == Recurrence.NONE:
        return schedule.start_time <= as_utc(now) <= schedule.end_time

    tz = schedule.tz
    local_now = as_utc(now).astimezone(tz)
    start = schedule.start_time.astimezone(tz)
    end = schedule.end_time.astimezone(tz)
    in_hours = start.hour <= local_now.hour <= end.hour

    if recurring == Recurrence.DAILY:
        return in_hours
    if recurring == Recurrence.WEEKLY:
        return day_index(start) <= day_index(local_now) <= day_index(end) and in_hours
    # Monthly schedules never match
    return False


_SCHEDULE_DENIALS = {
    ScheduleAction.ENABLE: "Feature is only available during scheduled time",
    ScheduleAction.DISABLE: "Feature is disabled during scheduled time",
    ScheduleAction.RESTRICT: "Feature is restricted during scheduled time",
}


def check_time_based(rule: TimeBasedRule, now: datetime) -> EnforcementResult:
    action = ScheduleAction(rule.config.action)
    in_schedule = is_in_schedule(rule, now)
    allowed = in_schedule if action == ScheduleAction.ENABLE else not in_schedule
    if allowed:
        return EnforcementResult.allow()
    return EnforcementResult.deny(_SCHEDULE_DENIALS[action])


Evaluator = Callable[[RuleBase, CallerContext, Optional[UsageRecord], datetime], EnforcementResult]

EVALUATORS: Dict[RuleType, Evaluator] = {
    RuleType.RATE_LIMIT: lambda rule, caller, usage, now: check_rate_limit(rule, usage, now),
    RuleType.FEATURE_LIMIT: lambda rule, caller, usage, now: check_feature_limit(
        rule, caller.data.get("current_count", 0) or 0
    ),
    RuleType.ACCESS_CONTROL: lambda rule, caller, usage, now: check_access_control(rule, caller),
    RuleType.CONTENT_LIMIT: lambda rule, caller, usage, now: check_content_limit(rule, caller.data),
    RuleType.TIME_BASED: lambda rule, caller, usage, now: check_time_based(rule, now),
}

_unhandled = set(RuleType) - set(EVALUATORS)
if _unhandled:
    raise RuntimeError(f"No evaluator for rule types: {sorted(t.value for t in _unhandled)}")


def evaluate(
    rule: RuleBase,
    caller: CallerContext,
    now: datetime,
    usage: Optional[UsageRecord] = None
) -> EnforcementResult:
    """Dispatch to the evaluator for ``rule.type``; denials carry the rule."""
    result = EVALUATORS[RuleType(rule.type)](rule, caller, usage, now)
    if not result.allowed:
        result.rule = rule
    return result
