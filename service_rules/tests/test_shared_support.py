"""
Unit tests for configuration, errors and logging context.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from pydantic import ValidationError

from shared.config import RulesConfig, get_config
from shared.errors import (
    EnforcementError, InvalidRuleError, PermissionDeniedError, RuleNotFoundError, RulesEngineException
)
from shared.logging import (
    add_correlation_context, add_service_context, clear_context, set_request_id, set_user_context
)


class TestRulesConfig:
    """Test cases for RulesConfig."""

    def test_defaults(self, monkeypatch):
        """Test default settings."""
        monkeypatch.delenv("RULES_USAGE_BACKEND", raising=False)
        config = RulesConfig(_env_file=None)

        assert config.usage_backend == "memory"
        assert config.default_usage_window_seconds == 3600
        assert config.activity_lookback_days == 30
        assert config.usage_key_prefix == "rule_usage"

    def test_environment_prefix(self, monkeypatch):
        """Test settings are read from RULES_ variables."""
        monkeypatch.setenv("RULES_REDIS_URL", "redis://cache:6379/2")
        monkeypatch.setenv("RULES_ACTIVITY_LOOKBACK_DAYS", "7")

        config = RulesConfig(_env_file=None)

        assert config.redis_url == "redis://cache:6379/2"
        assert config.activity_lookback_days == 7

    def test_unknown_backend_rejected(self):
        """Test the usage backend is a closed set."""
        with pytest.raises(ValidationError):
            RulesConfig(_env_file=None, usage_backend="postgres")

    def test_get_config_is_cached(self):
        """Test the process-wide configuration is shared."""
        assert get_config() is get_config()


class TestErrors:
    """Test cases for engine errors."""

    def test_hierarchy(self):
        """Test every engine error shares the base class."""
        for error in (
            InvalidRuleError("config.limit"),
            PermissionDeniedError(),
            RuleNotFoundError("rule-1"),
            EnforcementError(rule_id="rule-1"),
        ):
            assert isinstance(error, RulesEngineException)

    def test_invalid_rule_message(self):
        """Test invalid rule errors name the field."""
        error = InvalidRuleError("config.limit", "must be at least 1")

        assert error.field == "config.limit"
        assert error.message == "Invalid rule: config.limit: must be at least 1"
        assert error.to_response().details == {"field": "config.limit"}

    def test_permission_denied(self):
        """Test permission errors are builtin permission errors too."""
        error = PermissionDeniedError()

        assert isinstance(error, PermissionError)
        assert error.code == "PERMISSION_DENIED"
        assert str(error) == "Only owner can manage rules"

    def test_enforcement_error_details(self):
        """Test enforcement errors carry the decision context."""
        error = EnforcementError("Usage read failed", rule_id="rule-1", resource="api_calls", user_id="user-1")

        assert error.to_response().details == {
            "rule_id": "rule-1",
            "resource": "api_calls",
            "user_id": "user-1",
        }


class TestLoggingContext:
    """Test cases for log correlation processors."""

    def teardown_method(self):
        clear_context()

    def test_correlation_ids_added(self):
        """Test request and user ids are attached to events."""
        request_id = set_request_id()
        set_user_context("user-1")

        event = add_correlation_context(None, "info", {"event": "checked"})

        assert event["request_id"] == request_id
        assert event["user_id"] == "user-1"

    def test_explicit_user_id_kept(self):
        """Test an event's own user id is not overwritten."""
        set_user_context("user-1")

        event = add_correlation_context(None, "info", {"event": "checked", "user_id": "user-2"})

        assert event["user_id"] == "user-2"

    def test_cleared_context(self):
        """Test cleared context adds nothing."""
        set_request_id("req-1")
        clear_context()

        assert add_correlation_context(None, "info", {"event": "checked"}) == {"event": "checked"}

    def test_service_from_logger_name(self):
        """Test the service is derived from the logger name."""
        event = add_service_context(None, "info", {"event": "checked", "logger": "rules.coordinator"})

        assert event["service"] == "rules"
