"""Application configuration.

This module defines a ``Settings`` class that reads configuration
values from environment variables and provides sensible defaults.
``.env`` support is implemented by loading files from the repository
root in a defined order.  You can override any value via environment
variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv, find_dotenv

# -----------------------------------------------------------------------------
# .env loading
#
# Prefer a .env in the repository root but allow fallback to whatever
# python-dotenv discovers from the current working directory.  Files are
# loaded in order without overriding already-set variables.

_THIS_FILE = Path(__file__).resolve()
_PACKAGE_DIR = _THIS_FILE.parents[1]
_REPO_ROOT = _THIS_FILE.parents[3]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)

DEFAULT_PROMPT_PATH = str(_PACKAGE_DIR / "prompts" / "receipt_extraction.txt")


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from the environment with sensible defaults.  Any
    attribute defined here can be overridden by setting the corresponding
    environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=tuple(_candidate_envs) if _candidate_envs else (".env",),
        case_sensitive=True,
        extra="ignore",
    )

    # API Settings
    PROJECT_NAME: str = "Receiptly"
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")

    # Database
    DATABASE_URL: Optional[str] = Field(default=None)
    # Dev DB fallback (fail fast by default)
    DB_DEV_FALLBACK_SQLITE: bool = Field(default=False)

    # OpenAI extraction
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    EXTRACTION_MODEL: str = Field(default="gpt-4o-mini")
    EXTRACTION_MAX_TOKENS: int = Field(default=1000)
    EXTRACTION_TEMPERATURE: float = Field(default=0.2)
    EXTRACTION_MAX_RETRIES: int = Field(default=3)
    EXTRACTION_PROMPT_PATH: str = Field(default=DEFAULT_PROMPT_PATH)
    EXTRACTION_DEBUG: bool = Field(default=False)

    # Storage
    STORAGE_BACKEND: str = Field(default="minio")
    MINIO_ENDPOINT: str = Field(default="localhost:9000")
    MINIO_ACCESS_KEY: str = Field(default="minioadmin")
    MINIO_SECRET_KEY: str = Field(default="minioadmin")
    MINIO_USE_SSL: bool = Field(default=False)
    STORAGE_DIRECTORY: str = Field(default="./storage")
    # Comma separated list of buckets the gateway may touch
    STORAGE_BUCKETS: str = Field(default="receipts")
    RECEIPTS_BUCKET: str = Field(default="receipts")
    SIGNED_URL_TTL_SECONDS: int = Field(default=3600)

    # File Upload
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB
    ALLOWED_MIME_TYPES: list[str] = Field(default=["image/jpeg", "image/png"])
    STORAGE_ALLOWED_MIME_TYPES: list[str] = Field(
        default=["image/jpeg", "image/png", "image/webp"],
    )

    # Auth
    # Disable auth bypass by default.  Override in .env only when running locally.
    DEV_AUTH_BYPASS: bool = Field(default=False)
    CLERK_JWKS_URL: Optional[str] = Field(default=None)
    CLERK_JWT_AUDIENCE: Optional[str] = Field(default=None)
    CLERK_JWT_ISSUER: Optional[str] = Field(default=None)

    # Redis (chart cache); caching is disabled when unset
    REDIS_URL: Optional[str] = Field(default=None)
    CHART_CACHE_TTL: int = Field(default=60)

    # CORS
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # Used to sign filesystem storage download links
    SECRET_KEY: str = Field(default="changeme")

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_PROFILES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)

    @property
    def allowed_buckets(self) -> list[str]:
        """Return the configured bucket allow-list."""
        return [b.strip() for b in (self.STORAGE_BUCKETS or "").split(",") if b.strip()]

    @property
    def is_development(self) -> bool:
        return (self.ENVIRONMENT or "development").lower() == "development"


# Instantiate global settings
settings = Settings()


def resolve_database_url(cfg: Settings | None = None) -> str:
    """Return the async database URL for the given settings.

    ``DATABASE_URL`` wins; without it a local SQLite database is used when
    ``DB_DEV_FALLBACK_SQLITE`` is enabled, otherwise startup fails fast.
    """
    cfg = cfg or settings
    url = cfg.DATABASE_URL or os.getenv("DATABASE_URL")
    if url:
        return url
    if not cfg.DB_DEV_FALLBACK_SQLITE:
        raise RuntimeError(
            "No database URL provided via DATABASE_URL; with "
            "DB_DEV_FALLBACK_SQLITE=false a Postgres URL is required."
        )
    return "sqlite+aiosqlite:///./receiptly.db"
