"""Application configuration loaded from environment variables and .env file."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.sheet.rules import DEFAULT_RULES, RuleConfig


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from environment variables first,
    then from a .env file in the project root as fallback.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    DATABASE_URL: str = "sqlite:///./dev.db"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Rule settings
    MAX_LEVEL: int = 20

    # Default display settings for newly created characters
    METRIC_WEIGHT_UNITS: bool = False
    DISABLE_EXPERIENCE_TRACKING: bool = False
    DISABLE_ADVANCEMENTS: bool = False

    def rule_config(self) -> RuleConfig:
        """Immutable rule constants passed into pipeline calls."""
        return DEFAULT_RULES.with_max_level(self.MAX_LEVEL)


settings = Settings()
