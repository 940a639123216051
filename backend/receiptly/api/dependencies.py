"""Common dependencies for FastAPI routes.

Long-lived clients (database engine, storage, OpenAI, Redis, the JWT
verifier) are built once by :func:`build_services` when the application
starts and kept on ``app.state.services``.  Route handlers get them
through the small ``get_*`` dependencies below, which tests can replace
with ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from receiptly.core.config import Settings, resolve_database_url
from receiptly.core.database import build_engine, build_sessionmaker, get_db
from receiptly.core.security import ClerkJWTVerifier, get_current_user_id
from receiptly.services.cache import ChartCache
from receiptly.services.extraction_service import ExtractionClient
from receiptly.services.receipt_pipeline import ReceiptPipeline
from receiptly.services.receipt_repository import ReceiptRepository
from receiptly.services.storage_service import StorageService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]
    storage: StorageService
    extractor: ExtractionClient
    repository: ReceiptRepository
    pipeline: ReceiptPipeline
    auth: ClerkJWTVerifier
    cache: Optional[ChartCache] = None

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
        await self.engine.dispose()


def build_services(cfg: Settings) -> Services:
    """Construct every process-lifetime client from ``cfg``."""
    engine = build_engine(resolve_database_url(cfg))
    cache = ChartCache.from_url(cfg.REDIS_URL, ttl=cfg.CHART_CACHE_TTL) if cfg.REDIS_URL else None
    if cache is None:
        logger.info("REDIS_URL not set; chart cache disabled")
    storage = StorageService.from_settings(cfg)
    extractor = ExtractionClient.from_settings(cfg)
    repository = ReceiptRepository(cache=cache)
    return Services(
        settings=cfg,
        engine=engine,
        sessionmaker=build_sessionmaker(engine),
        storage=storage,
        extractor=extractor,
        repository=repository,
        pipeline=ReceiptPipeline(storage, extractor, repository, cfg),
        auth=ClerkJWTVerifier.from_settings(cfg),
        cache=cache,
    )


def _services(request: Request) -> Services:
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    return _services(request).settings


def get_storage(request: Request) -> StorageService:
    return _services(request).storage


def get_repository(request: Request) -> ReceiptRepository:
    return _services(request).repository


def get_pipeline(request: Request) -> ReceiptPipeline:
    return _services(request).pipeline


def get_cache(request: Request) -> Optional[ChartCache]:
    return _services(request).cache


__all__ = [
    "Services",
    "build_services",
    "get_db",
    "get_current_user_id",
    "get_settings",
    "get_storage",
    "get_repository",
    "get_pipeline",
    "get_cache",
]
