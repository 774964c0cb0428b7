from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, AsyncGenerator
from fastapi import Header, HTTPException, status
import logging
import time
import uuid
import httpx
import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .core.config import get_settings
from .services.notify import NatsNotificationSink, NotificationSink

logger = logging.getLogger(__name__)
settings = get_settings()

_JWKS: Dict[str, Any] | None = None
_JWKS_TS: float = 0.0
_JWKS_TTL: int = 3600

async def fetch_jwks() -> Dict[str, Any]:
    global _JWKS, _JWKS_TS
    now = time.time()
    if _JWKS is None or (now - _JWKS_TS) > _JWKS_TTL:
        async with httpx.AsyncClient() as client:
            r = await client.get(settings.auth_jwks_url, timeout=5.0)
            r.raise_for_status()
            _JWKS = r.json()
            _JWKS_TS = now
    return _JWKS

async def get_signing_key(kid: str | None = None):
    from jwt.algorithms import RSAAlgorithm
    jwks = await fetch_jwks()
    keys = jwks.get("keys", [])
    key = next((k for k in keys if kid and k.get("kid") == kid), keys[0] if keys else None)
    if key is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No signing key")
    return RSAAlgorithm.from_jwk(key)

async def get_claims(authorization: str | None = Header(default=None)) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    try:
        key = await get_signing_key(kid)
    except httpx.HTTPError:
        logger.exception("JWKS fetch failed")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auth provider unavailable")
    try:
        payload = jwt.decode(token, key=key, algorithms=["RS256"], options={"verify_aud": False})
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if "sub" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    try:
        uuid.UUID(str(payload["sub"]))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    payload.setdefault("role", "participant")
    return payload

def subject_id(claims: Dict[str, Any]) -> uuid.UUID:
    return uuid.UUID(str(claims["sub"]))

def is_service(claims: Dict[str, Any]) -> bool:
    return claims.get("role") == "service"

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for s in get_session():
        yield s

def get_now() -> datetime:
    return datetime.now(timezone.utc)

_sink = NatsNotificationSink()

def get_notifier() -> NotificationSink:
    return _sink
