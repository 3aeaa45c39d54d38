"""Configuration settings for StakeIt backend."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # Runtime
    environment: str = "development"  # development | test | production
    store_backend: str = "memory"  # memory | supabase
    log_level: str = "INFO"
    json_logs: bool = False
    base_url: str = "http://localhost:3000"
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_key: str = ""
    
    # Payment gateway
    payment_api_url: str = "https://api.omise.co"
    payment_secret_key: str = ""
    payment_currency: str = "thb"
    
    # Proof verifier
    proof_verifier_url: str = ""
    notification_webhook_url: str = ""
    reclaim_app_id: str = ""
    reclaim_app_secret: str = ""
    
    # Business Logic
    max_active_goals_per_group: int = 3
    settlement_max_retries: int = 5
    period_length_days: int = 7
    currency_symbol: str = "฿"
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
