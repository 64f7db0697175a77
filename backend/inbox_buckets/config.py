"""Application configuration. All sensitive config from .env."""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


DEFAULT_BUCKET_NAMES = [
    "Urgent & Important",
    "Read Later",
    "News & Subscriptions",
    "Marketing & Offers",
    "Notifications",
    "Receipts",
    "Other",
]


class Settings(BaseSettings):
    """App settings from environment."""

    # Database - default SQLite for easy local dev; use DATABASE_URL for PostgreSQL
    database_url: str = "sqlite:///./inbox_buckets.db"

    # SQLAlchemy pooling (Postgres only).
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout_s: int = 30
    db_pool_recycle_s: int = 1800

    # SQLite concurrency tuning (used when DATABASE_URL starts with sqlite://)
    sqlite_busy_timeout_ms: int = 5000

    # Gmail - paths relative to backend/ or set absolute
    token_path: str = "token.pickle"
    # If set, store per-user Gmail tokens at TOKEN_DIR/token_<user_id>.pickle (recommended for multi-user).
    token_dir: Optional[str] = None
    # Threads listed per sync and parallel metadata fetches
    gmail_fetch_max_results: int = Field(default=200, ge=1, le=500)
    gmail_fetch_workers: int = Field(default=8, ge=1)

    # AI - any OpenAI-compatible endpoint (set OPENAI_BASE_URL for OpenRouter)
    openai_api_key: str = ""
    openai_base_url: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.0

    # Classification: emails per structured-generation call
    classification_batch_size: int = Field(default=15, ge=1)
    # Admission control: batches allowed to *start* per rolling window
    classification_start_rate: int = Field(default=3, ge=1)
    classification_rate_window_s: float = Field(default=1.0, gt=0)
    # Per-batch deadline, measured from the moment the batch starts
    classification_batch_timeout_s: float = Field(default=60.0, gt=0)
    # Safety cap on emails submitted in one run; the rest are deferred
    classification_max_working_set: int = Field(default=500, ge=1)
    # Worker threads available for in-flight batches
    classification_max_concurrency: int = Field(default=8, ge=1)

    default_bucket_names: list[str] = Field(default_factory=lambda: list(DEFAULT_BUCKET_NAMES))

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Redis (for Celery)
    redis_url: str = "redis://localhost:6379/0"

    # Celery
    celery_broker_url: Optional[str] = None  # defaults to redis_url if not set

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def celery_broker(self) -> str:
        return self.celery_broker_url or self.redis_url


settings = Settings()
