"""Observability helpers (Sentry init & common scrubbing).

Centralises Sentry initialisation so configuration does not drift.
Initialisation is a no-op when no DSN is configured, and the helpers
below then do nothing.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from receiptly.core.config import Settings

logger = logging.getLogger(__name__)

_SCRUBBED_HEADERS = ("authorization", "cookie", "set-cookie", "x-api-key")


def _before_send(event: Dict[str, Any], hint: Dict[str, Any] | None = None) -> Dict[str, Any]:
    """Scrub obvious PII / secrets before sending to Sentry.

    - Drop Authorization & Cookie headers
    - Remove request data/body (keep method + URL); bodies may hold images
    """
    req = event.get("request") or {}
    headers = req.get("headers") or {}
    for k in list(headers.keys()):
        if k.lower() in _SCRUBBED_HEADERS:
            headers.pop(k, None)
    req.pop("data", None)
    event["request"] = req
    return event


def init_sentry(cfg: Settings, service: str = "api") -> bool:
    """Initialise Sentry once for this process.

    Returns True if Sentry was initialised; False otherwise.
    """
    if not cfg.SENTRY_DSN:
        return False
    if sentry_sdk.is_initialized():
        return True
    sentry_sdk.init(
        dsn=cfg.SENTRY_DSN,
        integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        traces_sample_rate=float(cfg.SENTRY_TRACES_SAMPLE_RATE or 0),
        profiles_sample_rate=float(cfg.SENTRY_PROFILES_SAMPLE_RATE or 0),
        environment=cfg.ENVIRONMENT,
        release=cfg.SENTRY_RELEASE,
        before_send=_before_send,
    )
    sentry_sdk.set_tag("service", service)
    logger.info("Sentry initialised environment=%s", cfg.ENVIRONMENT)
    return True


def sentry_set_tags(tags: Dict[str, Any]) -> None:
    """Set tags on the current scope (values coerced to short strings)."""
    if not sentry_sdk.is_initialized():
        return
    for k, v in (tags or {}).items():
        sentry_sdk.set_tag(str(k), str(v)[:128] if v is not None else "")


def sentry_breadcrumb(category: str, message: str, level: str = "info", data: Optional[Dict[str, Any]] = None) -> None:
    """Add a breadcrumb for important lifecycle steps."""
    if not sentry_sdk.is_initialized():
        return
    sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data or {})


def capture_exception(exc: BaseException) -> None:
    if sentry_sdk.is_initialized():
        sentry_sdk.capture_exception(exc)


__all__ = ["init_sentry", "sentry_set_tags", "sentry_breadcrumb", "capture_exception"]
