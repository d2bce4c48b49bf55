"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")
    dev_mode: bool = Field(default=True, description="Development mode")

    # Ensemble
    ensemble_weighting_strategy: str = Field(
        default="dynamic",
        description="static | confidence_based | performance_based | dynamic",
    )
    ensemble_confidence_threshold: float = Field(
        default=0.6, ge=0.0, le=1.0, description="Minimum provider confidence"
    )
    ensemble_history_size: int = Field(
        default=10, ge=1, description="Rolling accuracy scores kept per model"
    )

    # Provider calls
    provider_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Per-provider call timeout"
    )
    retry_max_attempts: int = Field(default=3, ge=0, description="Retries after the first attempt")
    retry_base_delay_seconds: float = Field(default=1.0, ge=0, description="Initial backoff delay")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Backoff multiplier")
    retry_max_delay_seconds: float = Field(default=10.0, ge=0, description="Backoff delay cap")
    retry_max_jitter_seconds: float = Field(default=1.0, ge=0, description="Random jitter added to backoff")

    # Processing queue
    queue_max_concurrent_jobs: int = Field(default=5, ge=1, description="Global worker slots")
    queue_tick_interval_seconds: float = Field(
        default=2.0, gt=0, description="Scheduler tick interval"
    )
    queue_max_retries: int = Field(default=3, ge=0, description="Job-level retries for retryable failures")
    queue_retry_delay_seconds: float = Field(default=5.0, ge=0, description="Delay before a retried job is eligible")
    queue_job_timeout_seconds: float = Field(default=1800.0, gt=0, description="Job timeout (30 min)")

    # Cache
    cache_ttl_seconds: int = Field(default=86400, ge=1, description="Result TTL (24h)")
    cache_max_entries: int = Field(default=10000, ge=1, description="Maximum cached results")
    cache_smart_caching: bool = Field(default=True, description="Route valuable requests to async processing")
    cache_value_threshold: float = Field(default=50.0, ge=0, description="Cache value above which work is async")

    # Risk detection
    risk_performance_dip_threshold: float = Field(default=0.15, ge=0.0, description="Relative decline for a dip")
    risk_audience_fatigue_threshold: float = Field(default=0.12, ge=0.0, description="Engagement decline for fatigue")
    risk_competitor_threat_threshold: float = Field(default=0.25, ge=0.0, description="Competitor slope threshold")
    risk_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0, description="Alert confidence cutoff")
    risk_lookback_days: int = Field(default=14, ge=1, description="Trend lookback window")

    # Recommendations
    recommendation_max_count: int = Field(default=5, ge=1, description="Recommendations returned")
    recommendation_min_impact: float = Field(default=0.05, ge=0.0, description="Minimum expected improvement")
    recommendation_min_confidence: float = Field(default=0.6, ge=0.0, le=1.0, description="Minimum confidence")
    recommendation_prioritize_impact: bool = Field(default=True, description="Rank by impact before priority")
    recommendation_include_previews: bool = Field(default=False, description="Build preview trajectories")

    # Circuit breaker
    circuit_error_threshold: int = Field(default=5, ge=1, description="Errors that open the circuit")
    circuit_window_seconds: float = Field(default=300.0, gt=0, description="Trailing error window (5 min)")

    @field_validator("ensemble_weighting_strategy")
    @classmethod
    def check_strategy(cls, v: str) -> str:
        """Reject unknown weighting strategies early."""
        allowed = {"static", "confidence_based", "performance_based", "dynamic"}
        if v not in allowed:
            raise ValueError(f"weighting strategy must be one of {sorted(allowed)}")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
