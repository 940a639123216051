import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from receiptly.core.security import DEV_USER_ID, ClerkJWTVerifier


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


@pytest.mark.asyncio
async def test_dev_bypass_returns_dev_user():
    verifier = ClerkJWTVerifier(None, dev_bypass=True)
    assert await verifier.user_id_for(None) == DEV_USER_ID


@pytest.mark.asyncio
async def test_missing_credentials_are_rejected():
    verifier = ClerkJWTVerifier("https://example.invalid/jwks.json")
    with pytest.raises(HTTPException) as exc_info:
        await verifier.user_id_for(None)
    assert exc_info.value.status_code == 401
    assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}


@pytest.mark.asyncio
async def test_garbage_token_is_rejected():
    verifier = ClerkJWTVerifier("https://example.invalid/jwks.json")
    with pytest.raises(HTTPException) as exc_info:
        await verifier.user_id_for(_bearer("not-a-jwt"))
    assert exc_info.value.detail == "Invalid token header"


@pytest.mark.asyncio
async def test_sub_claim_becomes_user_id(monkeypatch):
    verifier = ClerkJWTVerifier("https://example.invalid/jwks.json")
    monkeypatch.setattr(verifier, "decode", lambda token: {"sub": "user_42"})
    assert await verifier.user_id_for(_bearer("token")) == "user_42"

    monkeypatch.setattr(verifier, "decode", lambda token: {})
    with pytest.raises(HTTPException) as exc_info:
        await verifier.user_id_for(_bearer("token"))
    assert exc_info.value.detail == "Invalid token: no sub claim"


def test_unknown_kid_refreshes_jwks_once(monkeypatch):
    verifier = ClerkJWTVerifier("https://example.invalid/jwks.json")
    refreshes = []

    def fake_get_jwks(refresh=False):
        refreshes.append(refresh)
        return {"keys": [{"kid": "other"}]}

    monkeypatch.setattr(verifier, "get_jwks", fake_get_jwks)
    monkeypatch.setattr("receiptly.core.security.jwt.get_unverified_header", lambda token: {"kid": "rotated"})
    with pytest.raises(HTTPException) as exc_info:
        verifier.decode("token")
    assert exc_info.value.detail == "Unknown signing key"
    assert refreshes == [False, True]


def test_unconfigured_jwks_is_unauthorized():
    with pytest.raises(HTTPException) as exc_info:
        ClerkJWTVerifier(None).get_jwks()
    assert exc_info.value.status_code == 401
