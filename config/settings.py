"""
Configuration settings for the application
"""
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    
    # Core authentication and security
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")
    
    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_price_id: Optional[str] = Field(default=None, alias="STRIPE_PRICE_ID")
    
    # Infrastructure configuration
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")
    
    # Object storage (local media directory served under MEDIA_URL_PREFIX)
    media_dir: str = Field(default="./media", alias="MEDIA_DIR")
    media_url_prefix: str = Field(default="/media/", alias="MEDIA_URL_PREFIX")
    
    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:5173", alias="FRONTEND_URL")
    
    # Account lifecycle
    trial_days: int = Field(default=30, alias="TRIAL_DAYS")
    deletion_grace_days: int = Field(default=30, alias="DELETION_GRACE_DAYS")
    deletion_batch_size: int = Field(default=500, alias="DELETION_BATCH_SIZE")
    deletion_timeout_seconds: float = Field(default=300.0, alias="DELETION_TIMEOUT_SECONDS")
    deletion_sweep_hour: int = Field(default=3, alias="DELETION_SWEEP_HOUR")
    deletion_sweep_timezone: str = Field(default="America/New_York", alias="DELETION_SWEEP_TIMEZONE")
    enable_scheduler: bool = Field(default=True, alias="ENABLE_SCHEDULER")
    
    # Seconds a cached account record may be served before re-reading the database
    account_cache_ttl_seconds: int = Field(default=5, alias="ACCOUNT_CACHE_TTL_SECONDS")
    
    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )


# Instantiate settings object
settings = Settings()

MEDIA_DIR = Path(settings.media_dir)

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.env and settings.env.lower() == "production")
