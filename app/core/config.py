"""Application configuration loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = Field(default="sqlite:///./radar.db", alias="DATABASE_URL")
    rawg_api_key: str | None = Field(default=None, alias="RAWG_API_KEY")
    rawg_base_url: str = Field(default="https://api.rawg.io/api")
    rawg_timeout: float = Field(default=10.0)
    rawg_page_size: int = Field(default=20)
    catalog_scan_window: int = Field(default=200, ge=1)
    catalog_list_limit: int = Field(default=50, ge=1)
    catalog_recent_limit: int = Field(default=20, ge=1)
    recent_window_days: int = Field(default=30, ge=0)
    upcoming_window_days: int = Field(default=365, ge=0)
    supabase_jwt_secret: str | None = Field(default=None, alias="SUPABASE_JWT_SECRET")
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    dev_owner: str = Field(default="developer-user-123")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()
