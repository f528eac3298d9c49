"""
Shared error handling for the rule enforcement engine.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class RulesEngineException(Exception):
    """Base exception for the rule enforcement engine."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class InvalidRuleError(RulesEngineException):
    """Rule data failed schema validation."""

    def __init__(self, field: str, message: str = "Invalid rule", details: Optional[Dict[str, Any]] = None):
        self.field = field
        details = dict(details or {})
        details.setdefault("field", field)
        super().__init__("INVALID_RULE", f"Invalid rule: {field}: {message}", details)


class PermissionDeniedError(RulesEngineException, PermissionError):
    """Management operation attempted without the owner capability."""

    def __init__(self, message: str = "Only owner can manage rules", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERMISSION_DENIED", message, details)


class RuleNotFoundError(RulesEngineException):
    """Referenced rule does not exist in the catalog."""

    def __init__(self, rule_id: str, details: Optional[Dict[str, Any]] = None):
        self.rule_id = rule_id
        super().__init__("RULE_NOT_FOUND", f"Rule not found: {rule_id}", details)


class EnforcementError(RulesEngineException):
    """Usage store failure during a decision or tracking call."""

    def __init__(
        self,
        message: str = "Usage store failure",
        rule_id: Optional[str] = None,
        resource: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        details.update({"rule_id": rule_id, "resource": resource, "user_id": user_id})
        super().__init__("ENFORCEMENT_ERROR", message, details)


class UnmappedActionWarning(UserWarning):
    """An action with no policy mapping was checked and allowed."""
