"""
Tastemate — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Tastemate service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Gemini LLM (compatibility explanations)
    # ------------------------------------------------------------------ #
    GEMINI_API_KEY: str
    GEMINI_MODEL_PRIMARY: str = "gemini-2.5-pro"
    GEMINI_MODEL_FALLBACK: str = "gemini-2.5-flash"
    GEMINI_MODEL_STABLE: str = "gemini-2.0-flash"
    GEMINI_MAX_ATTEMPTS: int = 5

    # ------------------------------------------------------------------ #
    # Qloo taste graph (enrichment)
    # ------------------------------------------------------------------ #
    QLOO_API_KEY: str = ""
    QLOO_BASE_URL: str = "https://hackathon.api.qloo.com"
    QLOO_TIMEOUT_SECONDS: float = 10.0
    QLOO_INSIGHT_FILTER_TYPE: str = "brand"
    QLOO_INSIGHT_TAKE: int = 5

    # ------------------------------------------------------------------ #
    # Database – PostgreSQL via asyncpg
    # ------------------------------------------------------------------ #
    DATABASE_URL: str

    # ------------------------------------------------------------------ #
    # Redis – explanation cache (optional)
    # ------------------------------------------------------------------ #
    REDIS_URL: str = ""
    EXPLANATION_CACHE_TTL_SECONDS: int = 7 * 24 * 3600

    # ------------------------------------------------------------------ #
    # Ranking
    # ------------------------------------------------------------------ #
    MAX_MATCHES: int = 10
    NEAR_TIE_EPSILON: float = 0.05

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: float = 70.0

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def gemini_model_chain(self) -> list[str]:
        return [
            self.GEMINI_MODEL_PRIMARY,
            self.GEMINI_MODEL_FALLBACK,
            self.GEMINI_MODEL_STABLE,
        ]

    @field_validator("NEAR_TIE_EPSILON")
    @classmethod
    def _epsilon_must_be_between_0_and_1(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"NEAR_TIE_EPSILON must be between 0 and 1, got {v}")
        return v

    @field_validator("MAX_MATCHES", "GEMINI_MAX_ATTEMPTS", "QLOO_INSIGHT_TAKE")
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Value must be at least 1, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from app.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]
