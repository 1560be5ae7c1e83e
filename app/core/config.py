"""
Application configuration management using Pydantic Settings
Handles provider credentials and notification settings
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from functools import lru_cache


class Settings(BaseSettings):
    """Main application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application Settings
    APP_NAME: str = "Wingside Notifications"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    SITE_URL: str = "https://wingside.ng"

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./notifications.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_ECHO: bool = False

    # Security Settings
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Outbound provider calls
    PROVIDER_TIMEOUT_SECONDS: float = 10.0

    # Email
    EMAIL_TRANSPORT: str = "resend"  # resend, smtp
    EMAIL_FROM: str = "Wingside <notifications@wingside.ng>"
    EMAIL_REPLY_TO: str = "support@wingside.ng"
    EMAIL_ESCAPE_HTML_VARIABLES: bool = True
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None

    # Web Push (VAPID)
    VAPID_PUBLIC_KEY: Optional[str] = None
    VAPID_PRIVATE_KEY: Optional[str] = None
    VAPID_SUBJECT: str = "mailto:admin@wingside.ng"
    PUSH_TTL_SECONDS: int = 86400

    # SMS Service
    SMS_PROVIDER: Optional[str] = None  # termii, africastalking, twilio
    SMS_DEFAULT_REGION: str = "NG"
    SMS_MAX_LENGTH: int = 918
    SMS_SENDER_ID: str = "Wingside"
    TERMII_API_KEY: Optional[str] = None
    TERMII_SENDER_ID: Optional[str] = None
    TERMII_API_URL: str = "https://v3.api.termii.com/api/sms/send"
    AFRICASTALKING_USERNAME: Optional[str] = None
    AFRICASTALKING_API_KEY: Optional[str] = None
    AFRICASTALKING_API_URL: str = "https://api.africastalking.com/version1/messaging"
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None

    # Audience segments
    SEGMENT_ACTIVE_DAYS: int = 30
    SEGMENT_NEW_DAYS: int = 7
    SEGMENT_VIP_POINTS: int = 500

    # Loyalty
    REWARD_POINTS_RATE: float = 0.01
    PICKUP_ADDRESS: str = "123 Wingside Street, Lagos, Nigeria"

    @property
    def database_url_async(self) -> str:
        """Convert sync database URL to async"""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://")
        return self.DATABASE_URL


@lru_cache()
def get_settings() -> Settings:
    """
    Create cached settings instance
    This ensures settings are loaded only once
    """
    return Settings()

# Global settings instance
settings = get_settings()
