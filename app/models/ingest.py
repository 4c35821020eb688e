from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.settings import Settings


class IngestionConfig(BaseModel):
    years_back: int = Field(default=5, ge=1, le=50)
    max_pages_per_year: int = Field(default=5, ge=1, le=500)
    worker_count: int = Field(default=10, ge=1, le=64)
    batch_size: int = Field(default=50, ge=1, le=1000)
    min_delay_ms: int = Field(default=1500, ge=0, description="pause after every detail fetch, per worker")
    max_retries: int = Field(default=3, ge=0, le=10, description="extra attempts after a transient failure")
    listing_delay_ms: int = Field(default=2000, ge=0, description="pause after every listing page")
    year_delay_ms: int = Field(default=5000, ge=0, description="pause between listing years")
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    retry_max_delay_ms: int = Field(default=30000, ge=0)
    rate_limit_cooldown_multiplier: float = Field(default=10.0, ge=1.0)

    @model_validator(mode="after")
    def check_retry_window(self) -> "IngestionConfig":
        if self.retry_max_delay_ms < self.retry_base_delay_ms:
            raise ValueError("retry_max_delay_ms must be >= retry_base_delay_ms")
        return self

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: object) -> "IngestionConfig":
        values = {name: getattr(settings, name) for name in cls.model_fields if hasattr(settings, name)}
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


class IngestRequest(BaseModel):
    years_back: int | None = Field(default=None, ge=1, le=50)
    max_pages_per_year: int | None = Field(default=None, ge=1, le=500)
    worker_count: int | None = Field(default=None, ge=1, le=64)
    batch_size: int | None = Field(default=None, ge=1, le=1000)
    min_delay_ms: int | None = Field(default=None, ge=0)
    max_retries: int | None = Field(default=None, ge=0, le=10)


class IngestIdsRequest(BaseModel):
    imdb_ids: list[str] = Field(min_length=1, max_length=5000)
    worker_count: int | None = Field(default=None, ge=1, le=64)
    batch_size: int | None = Field(default=None, ge=1, le=1000)


class ItemOutcome(str, Enum):
    SAVED = "saved"
    SKIPPED = "skipped"
    ERRORED = "errored"


class IngestionRun(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str | None = None
    requested: int
    found: int
    saved: int
    skipped: int
    errored: int
    started_at: datetime
    finished_at: datetime
    cancelled: bool = False
    pages_fetched: int = 0
    pages_failed: int = 0

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


class ProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    processed_count: int
    total_count: int
    saved_count: int
    errored_count: int
    skipped_count: int
    finished: bool = False
    # set on the finished event only
    run: IngestionRun | None = None


class MovieCountFilter(BaseModel):
    has_poster: bool | None = None
    has_description: bool | None = None
    has_cast: bool | None = None


class MovieCountResponse(BaseModel):
    total: int
    with_poster: int
    with_description: int
    with_cast: int
