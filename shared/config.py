"""
Shared configuration management for the rule enforcement engine.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RulesConfig(BaseSettings):
    """Engine configuration, read from RULES_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RULES_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    service_name: str = Field(default="rules")

    # Usage store
    usage_backend: str = Field(default="memory", pattern="^(memory|redis)$")
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_socket_timeout: float = Field(default=5.0, gt=0)
    usage_key_prefix: str = Field(default="rule_usage")
    default_usage_window_seconds: int = Field(default=3600, ge=1)

    # Management
    activity_lookback_days: int = Field(default=30, ge=1)


@lru_cache()
def get_config() -> RulesConfig:
    """Get the process-wide engine configuration."""
    return RulesConfig()
