"""Centralized configuration via pydantic-settings.

All timing constants, storage keys, endpoint paths, and server knobs live here.
Override any value via environment variable (e.g., ``FLUSH_DELAY_SECONDS=5``).
"""

from functools import lru_cache

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Remote endpoints ---
    API_BASE_URL: str = "http://localhost:8080"
    EXPERIMENTS_PATH: str = "/api/experiments/active"
    ANALYTICS_BATCH_PATH: str = "/api/analytics/batch"
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # --- Experiments ---
    CATALOG_CACHE_TTL_SECONDS: int = 300  # 5 minutes between catalog fetches
    ASSIGNMENTS_KEY: str = "pagelab_ab_variants"

    # --- Identity ---
    VISITOR_ID_KEY: str = "pagelab_visitor_id"
    SESSION_ID_KEY: str = "pagelab_session_id"
    SESSION_TTL_SECONDS: int = 1800

    # --- Telemetry ---
    FLUSH_DELAY_SECONDS: float = 2.0  # debounce window for batched sends
    MAX_REQUEUE_SIZE: int = 100  # events retained after failed flushes
    SCROLL_MILESTONES: list[int] = [25, 50, 75, 100]
    TIME_ON_PAGE_MILESTONES: list[int] = [30, 60, 120, 300]

    # --- Durable storage ---
    STATE_BACKEND: str = "memory"  # "memory" | "redis"
    REDIS_URL: str = ""

    # --- Server ---
    API_KEY: SecretStr = SecretStr("")  # When set, /api/admin/* requires X-API-Key header
    ALLOWED_ORIGINS: list[str] = ["http://localhost:5173"]
    RATE_LIMIT_ANALYTICS: int = 120  # requests per minute per client IP
    MAX_REQUEST_BODY_SIZE: int = 262144  # 256 KB max request body
    MAX_BATCH_EVENTS: int = 500

    # --- Observability ---
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    VERSION: str = "0.1.0"

    model_config = {"env_prefix": "", "case_sensitive": True}

    @model_validator(mode="after")
    def validate_telemetry_config(self) -> "Settings":
        """Reject flush/re-queue values that would disable batching."""
        if self.FLUSH_DELAY_SECONDS <= 0:
            raise ValueError(
                f"FLUSH_DELAY_SECONDS must be positive, got {self.FLUSH_DELAY_SECONDS}"
            )
        if self.MAX_REQUEUE_SIZE < 1:
            raise ValueError(
                f"MAX_REQUEUE_SIZE must be at least 1, got {self.MAX_REQUEUE_SIZE}"
            )
        if self.MAX_BATCH_EVENTS < 1:
            raise ValueError(
                f"MAX_BATCH_EVENTS must be at least 1, got {self.MAX_BATCH_EVENTS}"
            )
        return self

    @model_validator(mode="after")
    def validate_milestones(self) -> "Settings":
        """Milestone lists must be strictly increasing."""
        for name in ("SCROLL_MILESTONES", "TIME_ON_PAGE_MILESTONES"):
            values = getattr(self, name)
            if any(b <= a for a, b in zip(values, values[1:])):
                raise ValueError(f"{name} must be strictly increasing, got {values}")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
