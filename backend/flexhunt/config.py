"""Configuration settings for the FlexHunt backend."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase (document store)
    supabase_url: str
    supabase_secret_key: str | None = None  # Backend/admin access
    supabase_service_role_key: str | None = None  # Legacy key, used if secret key is unset

    # Identity tokens
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = "authenticated"
    jwt_expire_minutes: int = 60

    # PayPal
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_environment: Literal["sandbox", "live"] = "sandbox"
    paypal_timeout_seconds: float = 30.0

    # Checkout
    brand_name: str = "FlexHunt"
    frontend_url: str = "https://www.flexhunt.co"
    escrow_hold_days: int = 7
    dispute_window_days: int = 14

    # App
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool = False
    # Proxies allowed to set X-Forwarded-For (comma-separated CIDRs)
    trusted_proxy_cidrs: str = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.0/8,::1/128"
    # CORS: canonical origins; www. variants are accepted via normalization
    cors_origins: list[str] = [
        "https://flexhunt.co",
        "https://flexhunt.onrender.com",
        "http://localhost:5173",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
