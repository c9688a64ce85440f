"""Application configuration using pydantic-settings."""
import logging
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Remote store - REST API backing the bookmark collection
    api_url: str = Field(default="http://localhost:8000", validation_alias="API_URL")
    api_token: str = Field(default="", validation_alias="API_TOKEN")
    request_timeout: float = Field(default=30.0, validation_alias="REQUEST_TIMEOUT")

    # Classifier - the categorization service (see api.main)
    classifier_url: str = Field(
        default="http://localhost:8000",
        validation_alias="CLASSIFIER_URL",
    )
    classifier_timeout: float = Field(default=8.0, validation_alias="CLASSIFIER_TIMEOUT")

    # Change feed reconnect policy (seconds)
    feed_reconnect_delay: float = Field(default=1.0, validation_alias="FEED_RECONNECT_DELAY")
    feed_max_reconnect_delay: float = Field(
        default=30.0,
        validation_alias="FEED_MAX_RECONNECT_DELAY",
    )

    # Engine timing (seconds)
    undo_grace_seconds: float = Field(default=5.0, validation_alias="UNDO_GRACE_SECONDS")
    echo_ttl_seconds: float = Field(default=30.0, validation_alias="ECHO_TTL_SECONDS")

    # Field length limits
    max_title_length: int = Field(default=500, validation_alias="MAX_TITLE_LENGTH")

    # Categorization service
    metadata_fetch_timeout: float = Field(
        default=6.0,
        validation_alias="METADATA_FETCH_TIMEOUT",
    )
    llm_api_key: str = Field(default="", validation_alias="LLM_API_KEY")
    llm_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai/",
        validation_alias="LLM_BASE_URL",
    )
    llm_model: str = Field(default="gemini-2.0-flash", validation_alias="LLM_MODEL")

    # CORS - comma-separated list of allowed origins (stored as string, parsed via property)
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        validation_alias="CORS_ORIGINS",
    )

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @field_validator(
        "request_timeout",
        "classifier_timeout",
        "feed_reconnect_delay",
        "feed_max_reconnect_delay",
        "undo_grace_seconds",
        "echo_ttl_seconds",
        "metadata_fetch_timeout",
    )
    @classmethod
    def check_positive(cls, v: float) -> float:
        """Timeouts and windows must be positive."""
        if v <= 0:
            raise ValueError(f"Must be greater than 0 (got {v})")
        return v

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        """Validate and normalize the log level name."""
        level = v.upper().strip()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: '{v}'")
        return level

    @property
    def cors_origins(self) -> list[str]:
        """Parse comma-separated CORS origins string into a list."""
        if not self.cors_origins_str:
            return []
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    @property
    def llm_enabled(self) -> bool:
        """Whether an LLM key is configured for categorization."""
        return bool(self.llm_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Configure root logging for entry points."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
