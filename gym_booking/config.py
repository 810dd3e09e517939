"""
Type-safe configuration using Pydantic Settings
Validates environment variables and provides sensible defaults
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class BookingConfig(BaseSettings):
    """
    Booking service configuration with validation
    Automatically loads from environment variables and .env file
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Database settings
    database_url: str = Field(
        "sqlite:///gym_booking.db", description="SQLAlchemy database URL"
    )

    # Studio settings
    timezone: str = Field(
        "Europe/Rome", description="Local timezone of the studio calendar"
    )

    # Telegram settings (only needed by the bot entry point)
    telegram_bot_token: Optional[str] = Field(
        None, description="Telegram Bot API token from @BotFather"
    )

    # Real-time broadcast settings
    broadcast_enabled: bool = Field(False, description="Publish live notifications")
    broadcast_url: str = Field(
        "http://localhost:6001/publish", description="Broadcaster HTTP endpoint"
    )
    broadcast_token: Optional[str] = Field(
        None, description="Bearer token for the broadcaster"
    )
    broadcast_timeout: float = Field(
        5.0, gt=0, le=60, description="Broadcast request timeout in seconds"
    )

    # Email settings
    email_enabled: bool = Field(False, description="Send booking emails")
    smtp_host: str = Field("localhost", description="SMTP server host")
    smtp_port: int = Field(587, ge=1, le=65535, description="SMTP server port")
    smtp_username: Optional[str] = Field(None, description="SMTP login")
    smtp_password: Optional[str] = Field(None, description="SMTP password")
    email_from: str = Field(
        "bookings@localhost", description="Sender address for booking emails"
    )
    operations_email: str = Field(
        "operations@localhost", description="Operator inbox notified of bookings"
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate timezone name against the IANA database"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"TIMEZONE '{v}' is not a valid IANA timezone name")
        return v

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def require_bot_token(self) -> str:
        """Return the bot token, failing fast when it is not configured"""
        if not self.telegram_bot_token or ":" not in self.telegram_bot_token:
            raise ValueError(
                "TELEGRAM_BOT_TOKEN must be set to a valid token from @BotFather"
            )
        return self.telegram_bot_token


# Singleton instance
_config: Optional[BookingConfig] = None


def get_config() -> BookingConfig:
    """
    Get or create the global configuration instance

    Returns:
        BookingConfig: Validated configuration

    Raises:
        ValidationError: If configuration is invalid
    """
    global _config
    if _config is None:
        _config = BookingConfig()
    return _config
