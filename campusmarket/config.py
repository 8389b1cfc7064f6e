"""
Application configuration for CampusMarket.
Reads environment variables and global settings.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings (Pydantic Settings v2)."""

    # Database (REQUIRED - must be in .env)
    DATABASE_URL: str

    # Security (REQUIRED - must be in .env)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Application
    APP_NAME: str = "CampusMarket API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # File Upload
    UPLOAD_DIR: str = "./uploads"
    MAX_FILE_SIZE: int = 5242880  # 5MB

    # API Base URL (used to build URLs for locally stored files)
    API_BASE_URL: str = "http://localhost:8000"

    # Cloudflare R2 Storage
    R2_ENABLED: bool = False  # False = local storage, True = Cloudflare R2
    R2_ACCOUNT_ID: str = ""
    R2_ACCESS_KEY_ID: str = ""
    R2_SECRET_ACCESS_KEY: str = ""
    R2_BUCKET_NAME: str = ""
    R2_PUBLIC_URL: str = ""

    # Paystack
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_TIMEOUT_SECONDS: float = 15.0
    # Public base URL used for the payment callback
    APP_BASE_URL: str = "http://localhost:8000"

    # Requests
    REQUEST_DAILY_LIMIT: int = 10

    # Payouts
    PAYOUT_DELAY_SECONDS: int = 3
    PAYOUT_POLL_INTERVAL_SECONDS: int = 5
    PAYOUT_MAX_ATTEMPTS: int = 3
    PAYOUT_WORKER_ENABLED: bool = True

    # Computed properties
    @property
    def allowed_origins_list(self) -> List[str]:
        """Split ALLOWED_ORIGINS into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Singleton settings instance
_settings_instance = None


def get_settings() -> Settings:
    """
    Return the Settings singleton.
    Loaded once and reused afterwards.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


# Global settings instance (Singleton)
settings = get_settings()
