"""
relaybot/core/config.py

Purpose: Application configuration

- Loads environment variables
- Centralizes config values (bot token, admin group, DB URI, captcha keys)
- Validates configuration on startup
- Environment-specific settings
"""

import re
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, Literal, List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Validates all required configs on startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    # Telegram
    BOT_TOKEN: str = Field(
        default="",
        description="Bot API token issued by BotFather"
    )
    TELEGRAM_API_BASE: str = Field(
        default="https://api.telegram.org",
        description="Bot API base URL"
    )
    TELEGRAM_TIMEOUT: float = Field(
        default=15.0,
        description="Bot API request timeout in seconds"
    )
    ADMIN_GROUP_ID: str = Field(
        default="",
        description="Forum supergroup where user topics are created"
    )
    ADMIN_IDS: str = Field(
        default="",
        description="Comma-separated Telegram ids of owner admins"
    )
    WEBHOOK_SECRET: Optional[str] = Field(
        default=None,
        description="Expected X-Telegram-Bot-Api-Secret-Token header value"
    )
    PUBLIC_URL: str = Field(
        default="",
        description="Public base URL of this service (verification web app)"
    )

    # Captcha providers
    TURNSTILE_SITE_KEY: Optional[str] = None
    TURNSTILE_SECRET_KEY: Optional[str] = None
    RECAPTCHA_SITE_KEY: Optional[str] = None
    RECAPTCHA_SECRET_KEY: Optional[str] = None

    # Environment fallbacks for runtime config keys
    WELCOME_MESSAGE: Optional[str] = None
    VERIF_QUESTION: Optional[str] = None
    VERIF_ANSWER: Optional[str] = None

    # MongoDB
    MONGODB_URL: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI"
    )
    MONGODB_DB_NAME: str = Field(
        default="relaybot",
        description="MongoDB database name"
    )

    # Runtime config cache
    CONFIG_CACHE_TTL_SECONDS: float = Field(
        default=60.0,
        description="Lifetime of the in-process config snapshot"
    )
    DISPLAY_TIMEZONE: str = Field(
        default="Asia/Shanghai",
        description="Timezone used for timestamps on profile cards"
    )

    # Application
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    API_PREFIX: str = Field(
        default="",
        description="API route prefix for the webhook endpoint"
    )
    CORS_ORIGINS: list = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    @field_validator("PUBLIC_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def admin_ids(self) -> List[str]:
        """Owner admin ids, split on ASCII or full-width commas."""
        ids = [part.strip() for part in re.split(r"[,，]", self.ADMIN_IDS)]
        return list(dict.fromkeys(i for i in ids if i))

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"


# Global settings instance
settings = Settings()


def validate_settings():
    """
    Validates critical settings on application startup.
    Raises ValueError if any required setting is missing or invalid.
    """
    errors = []

    if not settings.BOT_TOKEN:
        errors.append("BOT_TOKEN is required")

    if not settings.ADMIN_GROUP_ID:
        errors.append("ADMIN_GROUP_ID is required")

    if not settings.MONGODB_URL:
        errors.append("MONGODB_URL is required")

    # Production-specific validations
    if settings.is_production:
        if not settings.WEBHOOK_SECRET:
            errors.append("WEBHOOK_SECRET is required in production")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
