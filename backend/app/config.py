"""Application configuration using Pydantic Settings."""
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Device-local store
    local_store_url: str = "sqlite+aiosqlite:///./jotbox_local.db"
    storage_namespace: str = "guest"
    auto_create_tables: bool = True

    # Supabase (hosted records backend + auth)
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_jwt_audience: str = "authenticated"
    jwks_ttl_seconds: float = 3600.0
    records_timeout_seconds: float = 10.0

    # Legacy JWT (HS256) sessions, used when Supabase is not configured
    allow_legacy_jwt: bool = True
    secret_key: str = "change-this-in-production"
    algorithm: str = "HS256"

    # Retry policy
    store_write_attempts: int = 2  # write, verify, retry once
    replay_item_attempts: int = 3
    replay_retry_wait_seconds: float = 0.5
    replay_retry_max_wait_seconds: float = 4.0

    # Waiting for the session user after an OAuth redirect
    session_wait_attempts: int = 5
    session_wait_seconds: float = 1.0

    # App Settings
    debug: bool = True
    allowed_origins: str = "http://localhost:8081,exp://localhost:8081"

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def records_rest_url(self) -> str:
        """Base URL of the PostgREST endpoint for backend records."""
        return f"{self.supabase_url.rstrip('/')}/rest/v1"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
