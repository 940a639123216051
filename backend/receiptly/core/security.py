"""Authentication utilities for Clerk integration.

Incoming requests carry a Clerk-issued JWT as a Bearer token.  The token
is verified against the JWKS published at ``CLERK_JWKS_URL`` and its
``sub`` claim is the user id every receipt is scoped to.  When
``CLERK_JWT_AUDIENCE`` / ``CLERK_JWT_ISSUER`` are set the corresponding
claims are checked as well.

The verifier (and its JWKS cache) is built once by the application
lifespan and stored on ``app.state.auth``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from fastapi import Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from receiptly.core.config import Settings

logger = logging.getLogger(__name__)

DEV_USER_ID = "user_dev123"

auth_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class ClerkJWTVerifier:
    """Verifies Clerk JWTs, caching the JWKS in memory."""

    def __init__(
        self,
        jwks_url: Optional[str],
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        dev_bypass: bool = False,
    ) -> None:
        self.jwks_url = jwks_url
        self.audience = audience
        self.issuer = issuer
        self.dev_bypass = dev_bypass
        self._jwks: Optional[Dict[str, Any]] = None

    @classmethod
    def from_settings(cls, cfg: Settings) -> "ClerkJWTVerifier":
        if cfg.DEV_AUTH_BYPASS:
            logger.warning("DEV_AUTH_BYPASS is enabled; every request runs as %s", DEV_USER_ID)
        return cls(
            cfg.CLERK_JWKS_URL,
            audience=cfg.CLERK_JWT_AUDIENCE,
            issuer=cfg.CLERK_JWT_ISSUER,
            dev_bypass=cfg.DEV_AUTH_BYPASS,
        )

    def get_jwks(self, refresh: bool = False) -> Dict[str, Any]:
        """Fetch and cache the JWKS used to verify Clerk tokens."""
        if self._jwks is not None and not refresh:
            return self._jwks
        if not self.jwks_url:
            raise _unauthorized("Authentication is not configured")
        try:
            resp = requests.get(self.jwks_url, timeout=5)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Failed to fetch JWKS url=%s err=%s", self.jwks_url, exc)
            raise _unauthorized("Unable to verify token") from exc
        # basic shape check
        if not isinstance(data, dict) or "keys" not in data:
            raise _unauthorized("Unable to verify token")
        self._jwks = data
        return data

    def _find_key(self, kid: str, refresh: bool = False) -> Optional[Dict[str, Any]]:
        jwks = self.get_jwks(refresh=refresh)
        return next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)

    def decode(self, token: str) -> Dict[str, Any]:
        """Decode and verify a Clerk JWT, returning its claims."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise _unauthorized("Invalid token header") from exc
        kid = header.get("kid")
        if not kid:
            raise _unauthorized("Invalid token: missing kid header")
        key = self._find_key(kid)
        if key is None:
            # Refresh once (key rotation)
            key = self._find_key(kid, refresh=True)
            if key is None:
                raise _unauthorized("Unknown signing key")

        decode_kwargs: Dict[str, Any] = {"algorithms": ["RS256"], "options": {}}
        if self.audience:
            decode_kwargs["audience"] = self.audience
        else:
            decode_kwargs["options"]["verify_aud"] = False
        if self.issuer:
            decode_kwargs["issuer"] = self.issuer
        try:
            return jwt.decode(token, key, **decode_kwargs)
        except JWTError as exc:
            raise _unauthorized("Invalid token") from exc

    async def user_id_for(self, credentials: Optional[HTTPAuthorizationCredentials]) -> str:
        if self.dev_bypass:
            return DEV_USER_ID
        if credentials is None or not credentials.credentials:
            raise _unauthorized("Not authenticated")
        payload = await run_in_threadpool(self.decode, credentials.credentials)
        sub = payload.get("sub")
        if not sub:
            raise _unauthorized("Invalid token: no sub claim")
        return str(sub)


async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> str:
    """Resolve the authenticated user's id (the token's ``sub`` claim)."""
    verifier: ClerkJWTVerifier = request.app.state.auth
    return await verifier.user_id_for(credentials)
