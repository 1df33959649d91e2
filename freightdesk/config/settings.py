# freightdesk/config/settings.py
from pydantic_settings import BaseSettings
from typing import Optional
import os

class Settings(BaseSettings):
    # App Info
    app_name: str = "FreightDesk API"
    version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "postgresql://localhost:5432/freightdesk")

    # Security - tokens are issued by the external auth service, we only verify them
    secret_key: str = os.getenv("SECRET_KEY", "change-in-production")
    algorithm: str = "HS256"

    # External price estimator (OpenAI-compatible chat completions endpoint)
    ai_pricing_enabled: bool = True
    ai_base_url: str = os.getenv("AI_BASE_URL", "https://api.openai.com/v1")
    ai_api_key: Optional[str] = os.getenv("AI_API_KEY")
    ai_model: str = os.getenv("AI_MODEL", "gpt-4o-mini")
    ai_timeout_seconds: float = float(os.getenv("AI_TIMEOUT_SECONDS", "20"))

    # Pricing cache
    pricing_cache_ttl_hours: int = 12

    # Notifications (best-effort webhook, None = log only)
    notification_webhook_url: Optional[str] = None
    notification_timeout_seconds: float = 5.0

    # Legacy offer path
    commission_percentage: int = 10

    # Server
    host: str = "0.0.0.0"
    port: int = int(os.getenv("PORT", 10000))

    @property
    def database_url_with_ssl(self) -> str:
        """Require SSL on hosted PostgreSQL instances"""
        if self.database_url and "render" in self.database_url:
            if "?sslmode=" not in self.database_url:
                return f"{self.database_url}?sslmode=require"
        return self.database_url

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = 'ignore'

settings = Settings()
