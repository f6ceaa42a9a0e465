"""Application configuration using pydantic-settings."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OpenAI-compatible provider configuration
    openai_api_base: str = "https://openrouter.ai/api/v1"
    openai_api_key: str = ""
    primary_model: str = "anthropic/claude-3.5-haiku"
    secondary_model: str = "openai/gpt-4o-mini"
    provider_temperature: float = 0.2

    # Gateway routing: provider names registered at startup
    default_provider: str = "primary"
    fallback_providers: list[str] = ["secondary"]

    # Application Settings
    log_level: str = "INFO"
    environment: str = "development"

    # Session store
    session_ttl_seconds: float = 3600
    max_sessions: int = 1000
    session_sweep_interval_seconds: float = 300
    # Sessions touched within this window count as "active" in stats
    session_idle_threshold_seconds: float = 600

    # Gateway retry policy (backoff = base * 2^attempt, capped at max)
    max_retries: int = 2
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 8.0

    # Circuit breaker
    breaker_failure_threshold: int = 3
    breaker_base_cooldown_seconds: float = 30.0
    breaker_max_cooldown_seconds: float = 600.0

    # Extraction stop conditions
    max_iterations: int = 5
    ready_threshold: int = 80
    confirmation_threshold: int = 60

    # SOAP note
    soap_max_section_length: int = 5000

    # Decision kinds dispatched in parallel once a session escalates
    planning_kinds: list[str] = ["documentation", "diagnosis", "triage", "treatment"]

    @field_validator("ready_threshold", "confirmation_threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        """Thresholds are completeness percentages."""
        if not 0 <= v <= 100:
            raise ValueError(f"Threshold must be within 0-100 (got {v})")
        return v

    @field_validator("max_retries", "max_iterations", "breaker_failure_threshold")
    @classmethod
    def validate_counts(cls, v: int, info) -> int:
        minimum = 0 if info.field_name == "max_retries" else 1
        if v < minimum:
            raise ValueError(f"{info.field_name} must be >= {minimum} (got {v})")
        return v

    @field_validator("planning_kinds")
    @classmethod
    def validate_planning_kinds(cls, v: list[str]) -> list[str]:
        """Only generation kinds can be planned; extraction runs every turn."""
        valid_kinds = ["diagnosis", "triage", "validation", "treatment", "documentation"]
        for kind in v:
            if kind not in valid_kinds:
                raise ValueError(
                    f"Invalid planning kind: '{kind}'. "
                    f"Must be one of: {', '.join(valid_kinds)}"
                )
        return v


# Global settings instance
settings = Settings()
