"""
Configuration management for evalguard.
Uses pydantic-settings for environment-based configuration.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Database
    database_url: str = "sqlite:///./evalguard.db"

    # Logging
    log_level: str = "INFO"

    # Background jobs: total attempts and exponential backoff
    job_max_attempts: int = 3
    job_initial_interval: float = 1.0
    job_backoff_factor: float = 2.0

    # Moderation thresholds (highest category score)
    moderation_threshold_critical: float = 0.9
    moderation_threshold_high: float = 0.7
    moderation_threshold_review: float = 0.5
    moderation_max_session_chars: int = 10_000

    # "package.module:factory" returning a ModerationClient
    moderation_client: Optional[str] = None

    # "package.module:factory" returning an AgentExecutor for dataset runs
    agent_executor: Optional[str] = None

    # Scheduler selections look back this far by default
    enqueue_lookback_minutes: int = 60

    # Rule guardrail thresholds
    guardrail_trace_cost: float = 0.10
    guardrail_session_cost: float = 0.50
    guardrail_latency_ms: float = 30_000
    guardrail_tokens: int = 10_000
    guardrail_max_traces: int = 20

    # Application
    app_name: str = "evalguard"

    class Config:
        env_file = ".env"
        env_prefix = "EVALGUARD_"
        case_sensitive = False


settings = Settings()
