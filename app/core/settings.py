from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Reelbalance Ingestion API"
    environment: Literal["dev", "test", "prod"] = "dev"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./data/movies.db"
    database_echo: bool = False

    tmdb_api_key: str | None = None
    tmdb_base_url: str = "https://api.themoviedb.org/3"
    tmdb_image_base_url: str = "https://image.tmdb.org/t/p/w500"
    tmdb_timeout_seconds: float = 20.0

    imdb_base_url: str = "https://www.imdb.com"
    imdb_timeout_seconds: float = 20.0
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

    cast_limit: int = Field(default=20, ge=1, le=200)

    # run defaults, each can be overridden per request
    years_back: int = Field(default=5, ge=1, le=50)
    max_pages_per_year: int = Field(default=5, ge=1, le=500)
    worker_count: int = Field(default=10, ge=1, le=64)
    batch_size: int = Field(default=50, ge=1, le=1000)
    min_delay_ms: int = Field(default=1500, ge=0)
    listing_delay_ms: int = Field(default=2000, ge=0)
    year_delay_ms: int = Field(default=5000, ge=0)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    retry_max_delay_ms: int = Field(default=30000, ge=0)
    rate_limit_cooldown_multiplier: float = Field(default=10.0, ge=1.0)

    ingest_rate_limit_per_minute: int = 6


@lru_cache
def get_settings() -> Settings:
    return Settings()
