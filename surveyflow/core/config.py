"""Application configuration."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    app_name: str = "SurveyFlow"
    debug: bool = False

    # Persistence
    database_url: str = "sqlite:///data/surveyflow.db"

    # Rule engine
    rule_cache_ttl_seconds: int = 300
    max_rules_per_survey: int = 50
    max_condition_depth: int = 10

    # Respondent sessions
    session_timeout_hours: int = 24
    session_token_bytes: int = 32

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_prefix="SURVEYFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
