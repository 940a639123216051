"""Entry point for the FastAPI application.

:func:`create_app` constructs the FastAPI app, includes all routers and
installs the lifespan that builds the long-lived clients (see
``receiptly.api.dependencies.build_services``).  Run with::

    uvicorn receiptly.api.main:app
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from receiptly.api.dependencies import Services, build_services
from receiptly.api.error_handlers import register_exception_handlers
from receiptly.api.routes.process import router as process_router
from receiptly.api.routes.receipts import router as receipts_router
from receiptly.api.routes.storage import router as storage_router
from receiptly.core.config import Settings, settings as default_settings
from receiptly.core.database import get_db_debug_info, init_db
from receiptly.core.observability import init_sentry

logger = logging.getLogger(__name__)


def _cors_origins(cfg: Settings) -> list[str]:
    """In development allow all; otherwise BACKEND_CORS_ORIGINS, deduplicated."""
    if cfg.is_development:
        return ["*"]
    seen: set[str] = set()
    return [o for o in (cfg.BACKEND_CORS_ORIGINS or []) if not (o in seen or seen.add(o))]


def create_app(cfg: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the application.

    ``services`` lets tests hand in pre-built collaborators; otherwise they
    are constructed from ``cfg`` at startup.
    """
    cfg = cfg or default_settings
    logging.basicConfig(level=getattr(logging, (cfg.LOG_LEVEL or "INFO").upper(), logging.INFO))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        logger.info("Starting up...")
        if init_sentry(cfg, "api"):
            logger.info("Sentry SDK initialized (api)")
        svc = services or build_services(cfg)
        await init_db(svc.engine)
        await svc.storage.ensure_buckets()
        app.state.services = svc
        app.state.sessionmaker = svc.sessionmaker
        app.state.auth = svc.auth
        try:
            yield
        finally:
            logger.info("Shutting down...")
            if services is None:
                await svc.close()

    app = FastAPI(title=f"{cfg.PROJECT_NAME} API", version="1.0.0", lifespan=lifespan)

    # Enrich Sentry scope with lightweight request info
    @app.middleware("http")
    async def sentry_context_middleware(request: Request, call_next):
        if sentry_sdk.is_initialized():
            sentry_sdk.set_tag("path", request.url.path)
            sentry_sdk.set_tag("method", request.method)
        return await call_next(request)

    allow_origins = _cors_origins(cfg)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials="*" not in allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(process_router)
    app.include_router(receipts_router)
    app.include_router(storage_router)

    @app.api_route("/health", methods=["GET", "HEAD"])
    async def health_check():
        """Health check endpoint (supports GET & HEAD)."""
        return {"status": "healthy"}

    if cfg.is_development:
        @app.get("/debug/db", include_in_schema=False)
        async def db_debug(request: Request):
            """Return non-sensitive DB diagnostics (for development)."""
            return get_db_debug_info(request.app.state.services.engine)

    return app


app = create_app()
